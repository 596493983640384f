from .session_layer import (
    init_redis,
    create_session,
    get_session,
    remove_session,
    resolve_user_id,
    extract_token,
)

__all__ = [
    "init_redis",
    "create_session",
    "get_session",
    "remove_session",
    "resolve_user_id",
    "extract_token",
]
