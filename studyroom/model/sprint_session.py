"""
Sprint session model. One timed focus interval in a room.

The countdown is never stored: remaining time is always derived from the
absolute ``ended_at`` so every observer computes the same value.
"""
import enum
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import relationship
import uuid
from studyroom.core.database import Base
from studyroom.utils.clock import as_utc, utcnow


class SprintState(str, enum.Enum):
    NO_SESSION = "no_session"
    RUNNING = "running"
    EXPIRED = "expired"
    ENDED_EARLY = "ended_early"


class EndReason(str, enum.Enum):
    EXPIRED = "expired"
    ENDED_EARLY = "ended_early"
    ROOM_CLOSED = "room_closed"
    REPLACED = "replaced"


class SprintSession(Base):
    __tablename__ = "sprint_sessions"
    __table_args__ = (
        Index(
            "uq_sprint_sessions_active_room",
            "room_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id = Column(Uuid, ForeignKey("sprint_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    started_by = Column(Uuid, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at = Column(DateTime(timezone=True), nullable=True)  # NULL: open-ended sprint
    duration_minutes = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    end_reason = Column(String(16), nullable=True)

    room = relationship("StudyRoom", back_populates="sessions")

    @staticmethod
    def compute_end(started_at: datetime, duration_minutes: Optional[int]) -> Optional[datetime]:
        if duration_minutes is None:
            return None
        return started_at + timedelta(minutes=duration_minutes)

    def remaining_seconds(self, now: datetime) -> Optional[float]:
        """Seconds left at ``now``; None for open-ended sprints, 0 once ended."""
        if not self.is_active:
            return 0.0
        ended_at = as_utc(self.ended_at)
        if ended_at is None:
            return None
        return max(0.0, (ended_at - as_utc(now)).total_seconds())

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Still flagged active although its end time has passed."""
        remaining = self.remaining_seconds(now or utcnow())
        return self.is_active and remaining is not None and remaining <= 0

    def state_at(self, now: datetime) -> SprintState:
        if self.is_active:
            return SprintState.EXPIRED if self.is_overdue(now) else SprintState.RUNNING
        if self.end_reason == EndReason.EXPIRED.value:
            return SprintState.EXPIRED
        return SprintState.ENDED_EARLY
