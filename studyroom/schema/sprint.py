"""
Sprint schemas.

Responses include ``server_time`` so clients can correct for their own clock
skew when counting down to ``ended_at``.
"""
from datetime import datetime
from typing import Optional
import uuid
from pydantic import BaseModel, Field

from studyroom.model.sprint_session import SprintSession
from studyroom.utils.clock import as_utc


class SprintStartBody(BaseModel):
    """Body for POST /rooms/{room_id}/sprint. Omit duration_minutes for an open-ended sprint."""
    duration_minutes: Optional[int] = Field(None, description="Sprint length in minutes.")


class SprintResponse(BaseModel):
    id: uuid.UUID
    room_id: uuid.UUID
    started_by: Optional[uuid.UUID] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    is_active: bool
    end_reason: Optional[str] = None
    state: str
    remaining_seconds: Optional[float] = None

    @classmethod
    def from_session(cls, session: SprintSession, now: datetime) -> "SprintResponse":
        return cls(
            id=session.id,
            room_id=session.room_id,
            started_by=session.started_by,
            started_at=as_utc(session.started_at),
            ended_at=as_utc(session.ended_at),
            duration_minutes=session.duration_minutes,
            is_active=session.is_active,
            end_reason=session.end_reason,
            state=session.state_at(now).value,
            remaining_seconds=session.remaining_seconds(now),
        )


class CurrentSprintResponse(BaseModel):
    session: Optional[SprintResponse] = None
    server_time: datetime


class SprintStartResponse(BaseModel):
    session: SprintResponse
    adopted: bool = Field(False, description="True when another start won and this call joined it.")
    server_time: datetime


class SprintEndResponse(BaseModel):
    session: SprintResponse
    server_time: datetime
