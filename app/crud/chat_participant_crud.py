"""
Chat participant CRUD.
"""
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session

from app.model.chat_participant import ChatParticipant
from app.crud.base import CRUDBase


class CRUDChatParticipant(CRUDBase[ChatParticipant, Dict[str, Any], Dict[str, Any]]):
    def get_by_room_and_user(
        self, db: Session, *, room_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[ChatParticipant]:
        return (
            db.query(self.model)
            .filter(
                self.model.room_id == room_id,
                self.model.user_id == user_id,
            )
            .first()
        )

    def list_by_room(self, db: Session, *, room_id: uuid.UUID) -> List[ChatParticipant]:
        return (
            db.query(self.model)
            .filter(self.model.room_id == room_id)
            .order_by(self.model.created_at)
            .all()
        )

    def find_room_for_user(
        self, db: Session, *, property_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[uuid.UUID]:
        row = (
            db.query(self.model.room_id)
            .filter(
                self.model.property_id == property_id,
                self.model.user_id == user_id,
            )
            .order_by(self.model.created_at)
            .first()
        )
        return row[0] if row else None

    def find_room_for_anonymous(
        self, db: Session, *, property_id: uuid.UUID, anonymous_name: str
    ) -> Optional[uuid.UUID]:
        row = (
            db.query(self.model.room_id)
            .filter(
                self.model.property_id == property_id,
                self.model.anonymous_name == anonymous_name,
                self.model.user_id.is_(None),
            )
            .order_by(self.model.created_at)
            .first()
        )
        return row[0] if row else None

    def get_room_property_id(self, db: Session, *, room_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Listing context recorded on the room's participants, if any."""
        row = (
            db.query(self.model.property_id)
            .filter(
                self.model.room_id == room_id,
                self.model.property_id.isnot(None),
            )
            .first()
        )
        return row[0] if row else None


chat_participant_crud = CRUDChatParticipant(ChatParticipant)
