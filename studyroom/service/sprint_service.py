"""
Sprint timer engine.

A room has at most one running sprint. Its state is a function of the stored
row and the wall clock:

    NoSession -> Running -> Expired     (now >= ended_at, detected by anyone)
                        \\-> EndedEarly  (owner/moderator ends it)

Ended sprints are history; the room falls back to NoSession. Every transition
is a conditional write, so racing observers cannot double-apply it.
"""
from dataclasses import dataclass
from typing import Optional
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studyroom.core.config import settings
from studyroom.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFound,
    RoomClosedError,
    ServiceUnavailable,
    ValidationError,
)
from studyroom.crud import room_crud, sprint_session_crud
from studyroom.model.room import StudyRoom
from studyroom.model.sprint_session import EndReason, SprintSession
from studyroom.realtime.broadcaster import EventBroadcaster, event_broadcaster
from studyroom.realtime.events import SessionChanged
from studyroom.service.participant_service import can_moderate
from studyroom.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SprintStart:
    session: SprintSession
    adopted: bool = False  # True when another start won the race


class SprintService:
    def __init__(
        self,
        db: Session,
        broadcaster: EventBroadcaster = event_broadcaster,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.broadcaster = broadcaster
        self.clock = clock

    def _room(self, room_id: uuid.UUID, lock: bool = False) -> StudyRoom:
        if lock:
            room = room_crud.get_for_update(self.db, room_id=room_id)
        else:
            room = room_crud.get_by_id(self.db, room_id=room_id)
        if not room:
            raise NotFound("Room")
        return room

    def _session(self, session_id: uuid.UUID, room_id: Optional[uuid.UUID] = None) -> SprintSession:
        session = sprint_session_crud.get_by_id(self.db, session_id=session_id)
        if not session or (room_id is not None and session.room_id != room_id):
            raise NotFound("Sprint")
        return session

    @staticmethod
    def _check_duration(duration_minutes: Optional[int]) -> None:
        if duration_minutes is None:
            return
        if duration_minutes < 0 or duration_minutes > settings.MAX_SPRINT_MINUTES:
            raise ValidationError(
                f"Duration must be between 0 and {settings.MAX_SPRINT_MINUTES} minutes.",
                code="INVALID_DURATION",
            )

    def start(
        self,
        room_id: uuid.UUID,
        actor_id: uuid.UUID,
        duration_minutes: Optional[int] = None,
    ) -> SprintStart:
        """
        Start the room's sprint. ``duration_minutes=None`` starts an open-ended one.

        A sprint already running is ended first (reason ``replaced``). If a
        concurrent start commits in between, this call adopts that sprint
        instead of failing: "someone else started it" is a normal outcome.
        """
        self._check_duration(duration_minutes)
        room = self._room(room_id, lock=True)
        if not can_moderate(self.db, room, actor_id):
            self.db.rollback()
            raise AuthorizationError("Only the owner or a moderator can start a sprint.")
        if not room.is_active:
            self.db.rollback()
            raise RoomClosedError()

        now = self.clock()
        try:
            replaced = sprint_session_crud.end_all_for_room(
                self.db, room_id=room_id, reason=EndReason.REPLACED, now=now
            )
            session = sprint_session_crud.create_running(
                self.db,
                room_id=room_id,
                started_by=actor_id,
                started_at=now,
                duration_minutes=duration_minutes,
            )
        except ConflictError:
            winner = sprint_session_crud.get_active_for_room(self.db, room_id=room_id)
            if winner is None:
                raise
            logger.info("Sprint start in room %s lost the race; adopting %s", room_id, winner.id)
            return SprintStart(session=winner, adopted=True)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to start sprint in room %s", room_id)
            raise ServiceUnavailable()

        logger.info(
            "Sprint %s started in room %s by %s (%s min)",
            session.id, room_id, actor_id, duration_minutes if duration_minutes is not None else "open",
        )
        self.broadcaster.publish_all(
            *[SessionChanged(room_id, sid) for sid in replaced],
            SessionChanged(room_id, session.id),
        )
        return SprintStart(session=session)

    def end(
        self,
        session_id: uuid.UUID,
        actor_id: uuid.UUID,
        room_id: Optional[uuid.UUID] = None,
    ) -> SprintSession:
        """End a sprint early. Owner/moderator only; ending an ended sprint is a no-op."""
        session = self._session(session_id, room_id)
        room = self._room(session.room_id)
        if not can_moderate(self.db, room, actor_id):
            raise AuthorizationError("Only the owner or a moderator can end a sprint.")
        if not session.is_active:
            return session
        now = self.clock()
        reason = EndReason.EXPIRED if session.is_overdue(now) else EndReason.ENDED_EARLY
        self._finish(session, reason)
        return session

    def expire(self, session_id: uuid.UUID, room_id: Optional[uuid.UUID] = None) -> SprintSession:
        """
        Declare natural expiry. Any observer may call this; it only acts once
        the sprint is really past its end and is a no-op otherwise.
        """
        session = self._session(session_id, room_id)
        if session.is_active and session.is_overdue(self.clock()):
            self._finish(session, EndReason.EXPIRED)
        return session

    def _finish(self, session: SprintSession, reason: EndReason) -> bool:
        changed = sprint_session_crud.end(
            self.db, session_id=session.id, reason=reason, now=self.clock()
        )
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to end sprint %s", session.id)
            raise ServiceUnavailable()
        self.db.refresh(session)
        if changed:
            logger.info("Sprint %s in room %s ended (%s)", session.id, session.room_id, reason.value)
            self.broadcaster.publish(SessionChanged(session.room_id, session.id))
        return changed

    def get_current(self, room_id: uuid.UUID) -> Optional[SprintSession]:
        """The room's running sprint, or None. An overdue sprint is expired on read."""
        self._room(room_id)
        session = sprint_session_crud.get_active_for_room(self.db, room_id=room_id)
        if session is None:
            return None
        if session.is_overdue(self.clock()):
            self._finish(session, EndReason.EXPIRED)
            return None
        return session

    def sweep_expired(self) -> int:
        """End every overdue sprint. Returns how many this call ended."""
        ended = 0
        for session in sprint_session_crud.list_overdue(self.db, now=self.clock()):
            if self._finish(session, EndReason.EXPIRED):
                ended += 1
        return ended
