"""
Property (listing) model. Read-only here: chat only needs the owner.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from app.core.database import Base
from app.utils.timestamps import utcnow


class Property(Base):
    __tablename__ = "properties"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    owner = relationship("Profile", backref="properties")
