"""
Sprint API: the room's shared countdown.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from studyroom.core.database import get_db
from studyroom.core.dependencies import current_user_id
from studyroom.schema.sprint import (
    CurrentSprintResponse,
    SprintEndResponse,
    SprintResponse,
    SprintStartBody,
    SprintStartResponse,
)
from studyroom.service.sprint_service import SprintService
from studyroom.utils.clock import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{room_id}/sprint", response_model=CurrentSprintResponse)
async def get_current_sprint(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Running sprint (or null) plus server time for skew correction."""
    session = SprintService(db).get_current(room_id)
    now = utcnow()
    return CurrentSprintResponse(
        session=SprintResponse.from_session(session, now) if session else None,
        server_time=now,
    )


@router.post("/{room_id}/sprint", response_model=SprintStartResponse, status_code=status.HTTP_201_CREATED)
async def start_sprint(
    room_id: uuid.UUID,
    body: SprintStartBody,
    response: Response,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """
    Start a sprint. Owner or moderator only.
    Replaces a running sprint. If another start wins a race, returns 200 with
    adopted=true and the winning sprint.
    """
    result = SprintService(db).start(room_id, user_id, body.duration_minutes)
    if result.adopted:
        response.status_code = status.HTTP_200_OK
    now = utcnow()
    return SprintStartResponse(
        session=SprintResponse.from_session(result.session, now),
        adopted=result.adopted,
        server_time=now,
    )


@router.post("/{room_id}/sprint/{session_id}/end", response_model=SprintEndResponse)
async def end_sprint(
    room_id: uuid.UUID,
    session_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """End a sprint early. Owner or moderator only; repeating is harmless."""
    session = SprintService(db).end(session_id, user_id, room_id=room_id)
    now = utcnow()
    return SprintEndResponse(session=SprintResponse.from_session(session, now), server_time=now)


@router.post("/{room_id}/sprint/{session_id}/expire", response_model=SprintEndResponse)
async def expire_sprint(
    room_id: uuid.UUID,
    session_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Report that the countdown reached zero. Ignored while time remains."""
    session = SprintService(db).expire(session_id, room_id=room_id)
    now = utcnow()
    return SprintEndResponse(session=SprintResponse.from_session(session, now), server_time=now)
