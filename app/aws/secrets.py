"""
AWS Secrets Manager: database credentials for the chat store.

The secret is a JSON document with ``host``, ``database``, ``username``,
``password`` and an optional ``port``.
"""
import json
import logging
from typing import Any, Dict

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

REQUIRED_DB_KEYS = ("host", "database", "username", "password")


def _secrets_client(region_name: str):
    session = boto3.session.Session()
    return session.client(service_name="secretsmanager", region_name=region_name)


def get_secret(secret_name: str, region_name: str = "us-east-1") -> Dict[str, Any]:
    """
    Fetch a secret and parse it as JSON.

    Raises:
        ClientError: If the secret cannot be read (missing, no permission, ...)
    """
    client = _secrets_client(region_name)
    try:
        response = client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "Unknown")
        logger.error(f"Could not read secret {secret_name}: {code}")
        raise
    logger.info(f"Secret {secret_name} retrieved")
    return json.loads(response["SecretString"])


def get_db_credentials(secret_name: str, region_name: str = "us-east-1") -> Dict[str, Any]:
    """Map the secret onto ``Settings`` field names (DB_HOST, DB_PORT, ...)."""
    secret = get_secret(secret_name, region_name=region_name)
    missing = [key for key in REQUIRED_DB_KEYS if not secret.get(key)]
    if missing:
        raise ValueError(f"Secret {secret_name} is missing: {', '.join(missing)}")
    return {
        "DB_HOST": secret["host"],
        "DB_PORT": int(secret.get("port", 5432)),
        "DB_NAME": secret["database"],
        "DB_USER": secret["username"],
        "DB_PASS": secret["password"],
    }
