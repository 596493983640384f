"""
Application exceptions.

Every error surfaced to API callers carries a stable ``code`` and a human
readable ``message`` in ``detail`` so that clients can branch on the code.
"""
from typing import Optional

from fastapi import HTTPException, status


class StudyRoomException(HTTPException):
    """Base for all application errors."""

    default_status = status.HTTP_400_BAD_REQUEST
    default_code = "ERROR"
    default_message = "Request failed."

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code or self.default_code
        self.message = message or self.default_message
        super().__init__(
            status_code=status_code or self.default_status,
            detail={"code": self.code, "message": self.message},
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(StudyRoomException):
    """Bad input, e.g. an empty room title."""

    default_code = "VALIDATION_ERROR"
    default_message = "Invalid input."


class AuthorizationError(StudyRoomException):
    """Actor lacks the role required for the action."""

    default_status = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"
    default_message = "You are not allowed to do this."


class RoomClosedError(StudyRoomException):
    """Action attempted against an inactive room."""

    default_status = status.HTTP_409_CONFLICT
    default_code = "ROOM_CLOSED"
    default_message = "This room is closed."


class ConflictError(StudyRoomException):
    """An optimistic write precondition failed."""

    default_status = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"
    default_message = "The resource was changed by someone else."


class NotFound(StudyRoomException):
    default_status = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", message: Optional[str] = None):
        self.resource = resource
        super().__init__(message=message or f"{resource} not found.")


class NotAuthenticated(StudyRoomException):
    default_status = status.HTTP_401_UNAUTHORIZED
    default_code = "NOT_AUTHENTICATED"
    default_message = "Authentication required."


class SessionExpired(StudyRoomException):
    default_status = status.HTTP_401_UNAUTHORIZED
    default_code = "SESSION_EXPIRED"
    default_message = "Session expired or invalid. Please log in again."


class ServiceUnavailable(StudyRoomException):
    default_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "SERVICE_ERROR"
    default_message = "Failed to save changes. Please try again."


ERRORS_BY_CODE = {
    cls.default_code: cls
    for cls in (
        ValidationError,
        AuthorizationError,
        RoomClosedError,
        ConflictError,
        NotAuthenticated,
        SessionExpired,
        ServiceUnavailable,
    )
}


ERRORS_BY_STATUS = {
    status.HTTP_400_BAD_REQUEST: ValidationError,
    status.HTTP_401_UNAUTHORIZED: NotAuthenticated,
    status.HTTP_403_FORBIDDEN: AuthorizationError,
    status.HTTP_409_CONFLICT: ConflictError,
    status.HTTP_503_SERVICE_UNAVAILABLE: ServiceUnavailable,
}


def error_from_detail(status_code: int, detail) -> StudyRoomException:
    """
    Rebuild an application error from an API error body (used by HTTP clients).

    Known codes map to their class; other codes (e.g. EMPTY_TITLE) fall back
    to the class for the HTTP status.
    """
    if isinstance(detail, dict):
        code = detail.get("code") or "ERROR"
        message = detail.get("message") or str(detail)
    else:
        code, message = "ERROR", str(detail)
    if code == NotFound.default_code or status_code == status.HTTP_404_NOT_FOUND:
        return NotFound(message=message)
    cls = ERRORS_BY_CODE.get(code) or ERRORS_BY_STATUS.get(status_code, StudyRoomException)
    return cls(message=message, code=code, status_code=status_code)
