"""
Study room CRUD.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc, func, update

from studyroom.model.room import StudyRoom
from studyroom.model.participant import RoomParticipant
from studyroom.crud.base import CRUDBase


class CRUDStudyRoom(CRUDBase[StudyRoom, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, room_id: uuid.UUID) -> Optional[StudyRoom]:
        return db.query(self.model).filter(self.model.id == room_id).first()

    def get_for_update(self, db: Session, *, room_id: uuid.UUID) -> Optional[StudyRoom]:
        """Load and row-lock the room so writes touching its state serialize per room."""
        return (
            db.query(self.model)
            .filter(self.model.id == room_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def list_active_with_counts(self, db: Session) -> List[Tuple[StudyRoom, int]]:
        """Active rooms, newest first, each with its number of distinct present users."""
        counts = (
            db.query(
                RoomParticipant.room_id.label("room_id"),
                func.count(func.distinct(RoomParticipant.user_id)).label("n"),
            )
            .filter(RoomParticipant.is_active == True)  # noqa: E712
            .group_by(RoomParticipant.room_id)
            .subquery()
        )
        rows = (
            db.query(self.model, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.room_id == self.model.id)
            .filter(self.model.is_active == True)  # noqa: E712
            .order_by(desc(self.model.created_at))
            .all()
        )
        return [(room, int(n)) for room, n in rows]

    def list_by_owner(
        self, db: Session, *, owner_id: uuid.UUID, active_only: bool = False
    ) -> List[StudyRoom]:
        query = db.query(self.model).filter(self.model.owner_id == owner_id)
        if active_only:
            query = query.filter(self.model.is_active == True)  # noqa: E712
        return query.order_by(desc(self.model.created_at)).all()

    def mark_inactive(self, db: Session, *, room_id: uuid.UUID, now: datetime) -> bool:
        """Conditional close; False when the room was already inactive. Does not commit."""
        result = db.execute(
            update(self.model)
            .where(self.model.id == room_id, self.model.is_active == True)  # noqa: E712
            .values(is_active=False, deactivated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


room_crud = CRUDStudyRoom(StudyRoom)
