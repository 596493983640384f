"""
Session Middleware - loads the caller's session from Redis for each request.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable
from studyroom.session import extract_token, get_session


class SessionMiddleware(BaseHTTPMiddleware):
    """Resolves the bearer token (header, or ``?token=`` for EventSource clients)."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.session = {}
        request.state.token = None

        token = extract_token(request.headers.get("authorization"))
        if not token:
            # Browsers cannot set headers on EventSource connections
            token = request.query_params.get("token")

        if token:
            request.state.token = token
            user_data = get_session(token)
            if user_data:
                request.state.session = user_data

        return await call_next(request)
