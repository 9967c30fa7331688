"""
Who is acting: an authenticated profile or an anonymous visitor.

Anonymous visitors have no profile row. They are known by the display name
they typed and, once a room exists, by an opaque session token bound to that
room (resolved by the HTTP layer into ``room_id``).
"""
from dataclasses import dataclass
from typing import Optional, Union
import uuid

from app.core.config import settings


@dataclass(frozen=True)
class Authenticated:
    user_id: uuid.UUID


@dataclass(frozen=True)
class Anonymous:
    display_name: str = settings.ANONYMOUS_DEFAULT_NAME
    room_id: Optional[uuid.UUID] = None
    session_token: Optional[str] = None


Actor = Union[Authenticated, Anonymous]
SenderIdentity = Actor


def anonymous_name_or_default(name: Optional[str]) -> str:
    name = (name or "").strip()
    return name or settings.ANONYMOUS_DEFAULT_NAME
