"""
Session layer - Redis-based token store and validation.

Holds two kinds of entries:
    session:<token>  authenticated user data, written by the auth service
    anon:<token>     anonymous visitor bound to one chat room
"""
from typing import Optional, Dict, Any
import logging
import json
import secrets
import uuid
import redis

logger = logging.getLogger(__name__)

# Redis connection pool and client
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None
_anonymous_ttl: int = 2592000


def init_redis(host: str, port: int, db: int, anonymous_ttl: int = 2592000) -> None:
    """Initialize Redis connection pool. Call once at app startup."""
    global _redis_pool, _redis_client, _anonymous_ttl
    _redis_pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=10
    )
    _redis_client = redis.Redis(connection_pool=_redis_pool)
    _anonymous_ttl = anonymous_ttl
    logger.info(f"Redis initialized: {host}:{port}/{db}, anonymous TTL: {anonymous_ttl}s")


def _get_redis_client() -> redis.Redis:
    """Get Redis client. Raises if not initialized."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def get_session(token: str) -> Optional[Dict[str, Any]]:
    """Get user data from Redis session if token exists."""
    client = _get_redis_client()
    data = client.get(f"session:{token}")
    if data:
        return json.loads(data)
    return None


def create_anonymous_binding(room_id: uuid.UUID, anonymous_name: str) -> str:
    """Bind an anonymous visitor to a room; returns the opaque token the client keeps."""
    client = _get_redis_client()
    token = secrets.token_urlsafe(32)
    client.setex(
        f"anon:{token}",
        _anonymous_ttl,
        json.dumps({"room_id": str(room_id), "anonymous_name": anonymous_name}),
    )
    logger.info(f"Anonymous binding created for room {room_id}")
    return token


def get_anonymous_binding(token: str) -> Optional[Dict[str, Any]]:
    """Room binding for an anonymous token, refreshed on every use."""
    client = _get_redis_client()
    key = f"anon:{token}"
    data = client.get(key)
    if not data:
        return None
    client.expire(key, _anonymous_ttl)
    return json.loads(data)


def extract_token(auth_header: Optional[str]) -> Optional[str]:
    """Extract bearer token from Authorization header."""
    if not auth_header:
        return None

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]


def close_redis() -> None:
    """Release the connection pool. Call once at app shutdown."""
    global _redis_pool, _redis_client
    if _redis_pool is not None:
        _redis_pool.disconnect()
    _redis_pool = None
    _redis_client = None
