"""
Chat schemas: rooms, participants and messages.
"""
from datetime import datetime
from typing import List, Optional
import uuid
from pydantic import BaseModel, Field, field_validator

from app.utils.timestamps import as_utc


# --- Message ---

class MessageResponse(BaseModel):
    """Single message, as stored and as pushed to live subscribers."""
    id: uuid.UUID
    room_id: uuid.UUID
    sender_id: Optional[uuid.UUID] = None
    is_anonymous: bool = False
    anonymous_name: Optional[str] = None
    content: str
    is_read: bool = False
    property_id: Optional[uuid.UUID] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    class Config:
        from_attributes = True


class MessageCreateBody(BaseModel):
    """Body for POST /chat/rooms/{room_id}/messages."""
    content: str = Field(..., min_length=1, max_length=10_000)


class MessageEditBody(BaseModel):
    """Body for PATCH /chat/messages/{message_id}."""
    content: str = Field(..., min_length=1, max_length=10_000)


class MessageListResponse(BaseModel):
    """All messages of a room, oldest first."""
    items: List[MessageResponse]
    total: int


class MarkReadResponse(BaseModel):
    updated: int


# --- Room ---

class ProfileProjection(BaseModel):
    """The narrow slice of a profile chat needs."""
    id: uuid.UUID
    name: Optional[str] = None
    photo_url: Optional[str] = None
    last_active_at: Optional[datetime] = None

    @field_validator("last_active_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    class Config:
        from_attributes = True


class ParticipantSummary(BaseModel):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    is_anonymous: bool = False
    anonymous_name: Optional[str] = None
    property_id: Optional[uuid.UUID] = None
    display_name: Optional[str] = None
    profile: Optional[ProfileProjection] = None
    is_online: bool = False


class RoomSummary(BaseModel):
    """Room in the directory: last message, unread count, the other side."""
    id: uuid.UUID
    created_at: datetime
    last_message_at: Optional[datetime] = None
    property_id: Optional[uuid.UUID] = None
    last_message: Optional[MessageResponse] = None
    unread_count: int = 0
    counterpart: Optional[ParticipantSummary] = None
    participants: List[ParticipantSummary] = Field(default_factory=list)

    @field_validator("created_at", "last_message_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class RoomListResponse(BaseModel):
    items: List[RoomSummary]
    total: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class RoomCreateBody(BaseModel):
    """Body for POST /chat/rooms (start or resume a conversation about a listing)."""
    property_id: uuid.UUID
    message: str = Field("", max_length=10_000)
    anonymous_name: Optional[str] = Field(None, max_length=80)


class RoomStartResponse(BaseModel):
    room_id: uuid.UUID
    created: bool
    session_token: Optional[str] = None


# --- Presence ---

class PresenceResponse(BaseModel):
    user_id: uuid.UUID
    online: bool
    last_active_at: Optional[datetime] = None

    @field_validator("last_active_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)
