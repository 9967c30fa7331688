"""
AWS integrations layer.
"""
from app.aws.secrets import get_db_credentials, get_secret

__all__ = [
    "get_db_credentials",
    "get_secret",
]
