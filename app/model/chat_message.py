"""
Chat message model. One message in a room.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from app.core.database import Base
from app.utils.timestamps import utcnow


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    room_id = Column(UUID(as_uuid=True), ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    anonymous_name = Column(String, nullable=True)  # snapshot taken at send time
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    property_id = Column(UUID(as_uuid=True), ForeignKey("properties.id", ondelete="SET NULL"), nullable=True)
    # Assigned in Python for microsecond precision; ordering depends on it.
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    room = relationship("ChatRoom", back_populates="messages")
