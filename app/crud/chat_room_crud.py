"""
Chat room CRUD.
"""
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc

from app.model.chat_room import ChatRoom
from app.model.chat_participant import ChatParticipant
from app.crud.base import CRUDBase
from app.utils.timestamps import utcnow


class CRUDChatRoom(CRUDBase[ChatRoom, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatRoom]:
        return db.query(self.model).filter(self.model.id == room_id).first()

    def list_rooms_for_user(self, db: Session, *, user_id: uuid.UUID) -> List[ChatRoom]:
        """Rooms the user participates in, most recent activity first."""
        subq = (
            db.query(ChatParticipant.room_id)
            .filter(ChatParticipant.user_id == user_id)
        )
        return (
            db.query(self.model)
            .filter(self.model.id.in_(subq))
            .order_by(
                self.model.last_message_at.is_(None),
                desc(self.model.last_message_at),
                desc(self.model.created_at),
            )
            .all()
        )

    def touch_last_message_at(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatRoom]:
        room = self.get_by_id(db, room_id=room_id)
        if not room:
            return None
        room.last_message_at = utcnow()
        db.add(room)
        db.commit()
        return room


chat_room_crud = CRUDChatRoom(ChatRoom)
