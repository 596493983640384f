"""
Room participant CRUD.

Write helpers here never commit; the participant and room services own the
transaction so that multi-row changes become visible together.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc, update

from studyroom.model.participant import RoomParticipant
from studyroom.crud.base import CRUDBase


def dedupe_latest(rows: List[RoomParticipant]) -> List[RoomParticipant]:
    """Keep the most recently joined row per user, returned in join order."""
    latest: Dict[uuid.UUID, RoomParticipant] = {}
    for row in rows:
        current = latest.get(row.user_id)
        if current is None or row.joined_at > current.joined_at:
            latest[row.user_id] = row
    return sorted(latest.values(), key=lambda p: p.joined_at)


class CRUDRoomParticipant(CRUDBase[RoomParticipant, Dict[str, Any], Dict[str, Any]]):
    def _active(self, db: Session, room_id: uuid.UUID):
        return db.query(self.model).filter(
            self.model.room_id == room_id,
            self.model.is_active == True,  # noqa: E712
        )

    def get_active(
        self, db: Session, *, room_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[RoomParticipant]:
        """Current row for (room, user): the newest active one."""
        return (
            self._active(db, room_id)
            .filter(self.model.user_id == user_id)
            .order_by(desc(self.model.joined_at))
            .first()
        )

    def get_latest(
        self, db: Session, *, room_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[RoomParticipant]:
        """Newest row for (room, user), active or not."""
        return (
            db.query(self.model)
            .filter(self.model.room_id == room_id, self.model.user_id == user_id)
            .order_by(desc(self.model.joined_at))
            .first()
        )

    def list_active(self, db: Session, *, room_id: uuid.UUID) -> List[RoomParticipant]:
        return dedupe_latest(self._active(db, room_id).all())

    def count_active(self, db: Session, *, room_id: uuid.UUID) -> int:
        return len(self.list_active(db, room_id=room_id))

    def deactivate_user(
        self,
        db: Session,
        *,
        room_id: uuid.UUID,
        user_id: uuid.UUID,
        now: datetime,
        role: Optional[str] = None,
    ) -> int:
        """Mark every active row of the user inactive, optionally resetting the role. Returns rows changed."""
        values: Dict[str, Any] = {"is_active": False, "left_at": now}
        if role is not None:
            values["role"] = role
        result = db.execute(
            update(self.model)
            .where(
                self.model.room_id == room_id,
                self.model.user_id == user_id,
                self.model.is_active == True,  # noqa: E712
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def deactivate_all(self, db: Session, *, room_id: uuid.UUID, now: datetime) -> int:
        result = db.execute(
            update(self.model)
            .where(
                self.model.room_id == room_id,
                self.model.is_active == True,  # noqa: E712
            )
            .values(is_active=False, left_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def set_fields(
        self,
        db: Session,
        *,
        room_id: uuid.UUID,
        user_id: uuid.UUID,
        values: Dict[str, Any],
    ) -> int:
        """Last-write-wins update of the user's active row."""
        result = db.execute(
            update(self.model)
            .where(
                self.model.room_id == room_id,
                self.model.user_id == user_id,
                self.model.is_active == True,  # noqa: E712
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


participant_crud = CRUDRoomParticipant(RoomParticipant)
