"""
Session Middleware - resolves who is calling before the router runs.

Sets on ``request.state``:
    token          bearer token, if any
    session        Redis session data for that token ({} when missing/expired)
    chat_session   anonymous visitor token from the X-Chat-Session header
"""
import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.session import extract_token, get_session

logger = logging.getLogger(__name__)

CHAT_SESSION_HEADER = "X-Chat-Session"


class SessionMiddleware(BaseHTTPMiddleware):
    """Loads the bearer session from Redis and picks up the anonymous chat token."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.token = extract_token(request.headers.get("authorization"))
        request.state.session = {}
        request.state.chat_session = request.headers.get(CHAT_SESSION_HEADER) or None

        if request.state.token:
            request.state.session = get_session(request.state.token) or {}
            if not request.state.session:
                logger.debug("No session for bearer token on %s", request.url.path)

        return await call_next(request)
