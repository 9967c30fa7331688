"""
FastAPI dependencies: who is calling.

An authenticated caller sends ``Authorization: Bearer <token>`` (session
loaded by the middleware). An anonymous visitor sends the opaque
``X-Chat-Session`` token issued when their conversation was started.
"""
import uuid
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from app.chat.identity import Actor, Anonymous, Authenticated, anonymous_name_or_default
from app.core.exceptions import NotAuthenticated, SessionExpired
from app.core.middleware import CHAT_SESSION_HEADER
from app.session import get_anonymous_binding, get_session

# Security schemes for OpenAPI docs; both optional because visitors may be anonymous
bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Session token from the marketplace login",
    auto_error=False,
)
chat_session_scheme = APIKeyHeader(
    name=CHAT_SESSION_HEADER,
    scheme_name="ChatSession",
    description="Anonymous visitor token returned by POST /chat/rooms",
    auto_error=False,
)


def resolve_anonymous(session_token: Optional[str]) -> Anonymous:
    """Anonymous actor, bound to a room when the token is known."""
    if not session_token:
        return Anonymous()
    binding = get_anonymous_binding(session_token)
    if not binding:
        return Anonymous()
    return Anonymous(
        display_name=anonymous_name_or_default(binding.get("anonymous_name")),
        room_id=uuid.UUID(binding["room_id"]),
        session_token=session_token,
    )


def _authenticated(session: dict) -> Authenticated:
    return Authenticated(user_id=uuid.UUID(session["user_id"]))


def resolve_actor(token: Optional[str], session_token: Optional[str]) -> Actor:
    """Actor for a bearer token or anonymous session token (WebSocket query params)."""
    if token:
        session = get_session(token)
        if not session:
            raise SessionExpired()
        return _authenticated(session)
    return resolve_anonymous(session_token)


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    chat_session: Optional[str] = Depends(chat_session_scheme),
) -> Actor:
    """Authenticated user if a bearer session is present, otherwise an anonymous visitor.

    Raises:
        SessionExpired: Bearer token sent but no session found in Redis
    """
    if request.state.token:
        if not request.state.session:
            raise SessionExpired()
        return _authenticated(request.state.session)
    return resolve_anonymous(request.state.chat_session)


async def require_authenticated(actor: Actor = Depends(get_current_actor)) -> Authenticated:
    if not isinstance(actor, Authenticated):
        raise NotAuthenticated()
    return actor
