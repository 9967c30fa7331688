"""
Chat message CRUD.
"""
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc, func, or_

from app.model.chat_message import ChatMessage
from app.crud.base import CRUDBase


class CRUDChatMessage(CRUDBase[ChatMessage, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, message_id: uuid.UUID) -> Optional[ChatMessage]:
        return db.query(self.model).filter(self.model.id == message_id).first()

    def list_by_room(self, db: Session, *, room_id: uuid.UUID) -> List[ChatMessage]:
        """All messages in a room, oldest first."""
        return (
            db.query(self.model)
            .filter(self.model.room_id == room_id)
            .order_by(self.model.created_at, self.model.id)
            .all()
        )

    def get_last_in_room(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatMessage]:
        return (
            db.query(self.model)
            .filter(self.model.room_id == room_id)
            .order_by(desc(self.model.created_at), desc(self.model.id))
            .first()
        )

    def _unread_for_user(self, db: Session, room_id: uuid.UUID, user_id: uuid.UUID):
        # sender_id IS NULL covers anonymous senders; "!=" alone drops NULLs.
        return db.query(self.model).filter(
            self.model.room_id == room_id,
            self.model.is_read.is_(False),
            or_(self.model.sender_id.is_(None), self.model.sender_id != user_id),
        )

    def _unread_for_anonymous(self, db: Session, room_id: uuid.UUID):
        return db.query(self.model).filter(
            self.model.room_id == room_id,
            self.model.is_read.is_(False),
            self.model.is_anonymous.is_(False),
        )

    def count_unread(
        self, db: Session, *, room_id: uuid.UUID, user_id: Optional[uuid.UUID]
    ) -> int:
        """Unread messages in a room not written by the reader (user_id None = anonymous reader)."""
        if user_id is None:
            query = self._unread_for_anonymous(db, room_id)
        else:
            query = self._unread_for_user(db, room_id, user_id)
        return query.with_entities(func.count(self.model.id)).scalar() or 0

    def mark_read(
        self, db: Session, *, room_id: uuid.UUID, user_id: Optional[uuid.UUID]
    ) -> List[uuid.UUID]:
        """Bulk false -> true. Returns the ids that changed."""
        if user_id is None:
            query = self._unread_for_anonymous(db, room_id)
        else:
            query = self._unread_for_user(db, room_id, user_id)
        ids = [row[0] for row in query.with_entities(self.model.id).all()]
        if not ids:
            return []
        (
            db.query(self.model)
            .filter(self.model.id.in_(ids))
            .update({self.model.is_read: True}, synchronize_session=False)
        )
        db.commit()
        return ids


chat_message_crud = CRUDChatMessage(ChatMessage)
