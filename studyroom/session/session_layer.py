"""
Session layer - Redis token store.

The identity provider writes ``<prefix>:<token>`` keys holding a JSON user
payload (at least ``user_id``). This service only reads them to resolve the
acting user; ``create_session`` exists for the provider side and for tooling.
"""
from typing import Optional, Dict, Any
import logging
import json
import uuid
import redis

logger = logging.getLogger(__name__)

_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None
_session_ttl: int = 86400
_key_prefix: str = "session"


def init_redis(
    host: str,
    port: int,
    db: int,
    session_ttl: int = 86400,
    key_prefix: str = "session",
) -> None:
    """Initialize Redis connection pool. Call once at app startup."""
    global _redis_pool, _redis_client, _session_ttl, _key_prefix
    _redis_pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=20,
    )
    _redis_client = redis.Redis(connection_pool=_redis_pool)
    _session_ttl = session_ttl
    _key_prefix = key_prefix
    logger.info("Redis initialized: %s:%s/%s, TTL: %ss", host, port, db, session_ttl)


def _get_redis_client() -> redis.Redis:
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def _key(token: str) -> str:
    return f"{_key_prefix}:{token}"


def create_session(token: str, user_data: Dict[str, Any]) -> None:
    """Store a token -> user payload with the configured TTL."""
    if "user_id" not in user_data:
        raise ValueError("user_data must contain user_id")
    _get_redis_client().setex(_key(token), _session_ttl, json.dumps(user_data))
    logger.info("Session created for user %s", user_data["user_id"])


def get_session(token: str) -> Optional[Dict[str, Any]]:
    """User payload for a token, or None if unknown/expired."""
    try:
        data = _get_redis_client().get(_key(token))
    except redis.RedisError as e:
        logger.error("Session lookup failed: %s", e)
        return None
    if not data:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed session payload")
        return None


def remove_session(token: str) -> bool:
    """Remove token (logout)."""
    return _get_redis_client().delete(_key(token)) > 0


def resolve_user_id(token: Optional[str]) -> Optional[uuid.UUID]:
    """Token -> user id, or None when the token is missing, unknown or malformed."""
    if not token:
        return None
    session = get_session(token)
    if not session:
        return None
    try:
        return uuid.UUID(str(session.get("user_id")))
    except (ValueError, TypeError):
        logger.warning("Session payload has an invalid user_id")
        return None


def extract_token(auth_header: Optional[str]) -> Optional[str]:
    """Extract bearer token from Authorization header."""
    if not auth_header:
        return None

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]
