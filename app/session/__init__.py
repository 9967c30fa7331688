from .session_layer import (
    init_redis,
    close_redis,
    get_session,
    create_anonymous_binding,
    get_anonymous_binding,
    extract_token,
)

__all__ = [
    "init_redis",
    "close_redis",
    "get_session",
    "create_anonymous_binding",
    "get_anonymous_binding",
    "extract_token",
]
