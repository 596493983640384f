"""
Sprint session CRUD.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import case, desc, update
from sqlalchemy.exc import IntegrityError

from studyroom.core.exceptions import ConflictError
from studyroom.model.sprint_session import SprintSession, EndReason
from studyroom.crud.base import CRUDBase


class CRUDSprintSession(CRUDBase[SprintSession, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, session_id: uuid.UUID) -> Optional[SprintSession]:
        return db.query(self.model).filter(self.model.id == session_id).first()

    def get_active_for_room(self, db: Session, *, room_id: uuid.UUID) -> Optional[SprintSession]:
        return (
            db.query(self.model)
            .filter(
                self.model.room_id == room_id,
                self.model.is_active == True,  # noqa: E712
            )
            .order_by(desc(self.model.started_at))
            .first()
        )

    def list_active_for_room(self, db: Session, *, room_id: uuid.UUID) -> List[SprintSession]:
        return (
            db.query(self.model)
            .filter(
                self.model.room_id == room_id,
                self.model.is_active == True,  # noqa: E712
            )
            .all()
        )

    def list_overdue(self, db: Session, *, now: datetime) -> List[SprintSession]:
        """Sprints still flagged active whose end time has passed."""
        return (
            db.query(self.model)
            .filter(
                self.model.is_active == True,  # noqa: E712
                self.model.ended_at.isnot(None),
                self.model.ended_at <= now,
            )
            .all()
        )

    def create_running(
        self,
        db: Session,
        *,
        room_id: uuid.UUID,
        started_by: uuid.UUID,
        started_at: datetime,
        duration_minutes: Optional[int],
    ) -> SprintSession:
        """
        Conditional insert of the room's running sprint, then commit.

        The partial unique index on (room_id) WHERE is_active rejects the
        insert when another sprint is already active; the transaction is
        rolled back and ConflictError raised.
        """
        session = self.model(
            room_id=room_id,
            started_by=started_by,
            started_at=started_at,
            ended_at=SprintSession.compute_end(started_at, duration_minutes),
            duration_minutes=duration_minutes,
            is_active=True,
        )
        db.add(session)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("A sprint is already running in this room.")
        db.refresh(session)
        return session

    def end(
        self,
        db: Session,
        *,
        session_id: uuid.UUID,
        reason: EndReason,
        now: datetime,
    ) -> bool:
        """
        Conditional end (WHERE is_active). Returns False if it was already ended.

        Natural expiry keeps the scheduled ended_at; any other reason records
        the actual end time, capped at the scheduled one. Does not commit.
        """
        values: Dict[str, Any] = {"is_active": False, "end_reason": reason.value}
        if reason != EndReason.EXPIRED:
            values["ended_at"] = case(
                (self.model.ended_at.is_(None), now),
                (self.model.ended_at > now, now),
                else_=self.model.ended_at,
            )
        result = db.execute(
            update(self.model)
            .where(
                self.model.id == session_id,
                self.model.is_active == True,  # noqa: E712
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def end_all_for_room(
        self, db: Session, *, room_id: uuid.UUID, reason: EndReason, now: datetime
    ) -> List[uuid.UUID]:
        """End every active sprint of the room; overdue ones are recorded as expired."""
        ended: List[uuid.UUID] = []
        for session in self.list_active_for_room(db, room_id=room_id):
            effective = EndReason.EXPIRED if session.is_overdue(now) else reason
            if self.end(db, session_id=session.id, reason=effective, now=now):
                ended.append(session.id)
        return ended


sprint_session_crud = CRUDSprintSession(SprintSession)
