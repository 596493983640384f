"""
FastAPI dependencies for route protection.
"""
import uuid
from typing import Any, Dict

from fastapi import Depends, Request

from studyroom.core.exceptions import NotAuthenticated, SessionExpired


async def validate_session(request: Request) -> Dict[str, Any]:
    """
    Validates session loaded by middleware.

    Returns:
        Session payload written by the identity provider (contains user_id)

    Raises:
        NotAuthenticated: No token provided
        SessionExpired: Token not found in Redis
    """
    if not request.state.token:
        raise NotAuthenticated()

    if not request.state.session:
        raise SessionExpired()

    return request.state.session


async def current_user_id(
    current_user: Dict[str, Any] = Depends(validate_session),
) -> uuid.UUID:
    """Acting user's id for authorization checks."""
    try:
        return uuid.UUID(str(current_user.get("user_id")))
    except (ValueError, TypeError):
        raise SessionExpired()
