"""
Profile CRUD (presence fields only).
"""
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session

from app.model.profile import Profile
from app.crud.base import CRUDBase
from app.utils.timestamps import utcnow


class CRUDProfile(CRUDBase[Profile, Dict[str, Any], Dict[str, Any]]):
    def get_many(self, db: Session, *, ids: List[uuid.UUID]) -> Dict[uuid.UUID, Profile]:
        if not ids:
            return {}
        rows = db.query(self.model).filter(self.model.id.in_(ids)).all()
        return {p.id: p for p in rows}

    def touch_last_active(self, db: Session, *, user_id: uuid.UUID) -> Optional[Profile]:
        profile = self.get(db, user_id)
        if not profile:
            return None
        profile.last_active_at = utcnow()
        db.add(profile)
        db.commit()
        return profile


profile_crud = CRUDProfile(Profile)
