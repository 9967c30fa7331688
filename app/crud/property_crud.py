"""
Property CRUD (read-only owner lookup).
"""
from typing import Any, Dict, Optional
import uuid
from sqlalchemy.orm import Session

from app.model.property import Property
from app.crud.base import CRUDBase


class CRUDProperty(CRUDBase[Property, Dict[str, Any], Dict[str, Any]]):
    def get_owner_id(self, db: Session, *, property_id: uuid.UUID) -> Optional[uuid.UUID]:
        row = db.query(self.model.owner_id).filter(self.model.id == property_id).first()
        return row[0] if row else None


property_crud = CRUDProperty(Property)
