"""
Participants API: presence, tasks and roles within a room.
"""
import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from studyroom.core.database import get_db
from studyroom.core.dependencies import current_user_id
from studyroom.schema.participant import (
    ParticipantListResponse,
    ParticipantResponse,
    ReflectionUpdateBody,
    RoleUpdateBody,
    TaskUpdateBody,
)
from studyroom.schema.room import MessageResponse
from studyroom.service.participant_service import ParticipantService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{room_id}/participants", response_model=ParticipantListResponse)
async def list_participants(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """People currently in the room, one entry per user."""
    participants = ParticipantService(db).list_active(room_id)
    return ParticipantListResponse(
        items=[ParticipantResponse.model_validate(p) for p in participants],
        count=len(participants),
    )


@router.post("/{room_id}/join", response_model=ParticipantResponse)
async def join_room(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    participant = ParticipantService(db).join(room_id, user_id)
    return ParticipantResponse.model_validate(participant)


@router.post("/{room_id}/leave", response_model=MessageResponse)
async def leave_room(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Leave the room. Safe to repeat. The owner leaving closes the room."""
    ParticipantService(db).leave(room_id, user_id)
    return MessageResponse(message="Left room")


@router.put("/{room_id}/task", response_model=ParticipantResponse)
async def update_task(
    room_id: uuid.UUID,
    body: TaskUpdateBody,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    participant = ParticipantService(db).update_task(room_id, user_id, body.current_task)
    return ParticipantResponse.model_validate(participant)


@router.put("/{room_id}/reflection", response_model=ParticipantResponse)
async def update_reflection(
    room_id: uuid.UUID,
    body: ReflectionUpdateBody,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    participant = ParticipantService(db).update_reflection(room_id, user_id, body.reflection)
    return ParticipantResponse.model_validate(participant)


@router.post("/{room_id}/participants/{target_user_id}/evict", response_model=MessageResponse)
async def evict_participant(
    room_id: uuid.UUID,
    target_user_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Remove someone from the room. Owner or moderator only."""
    ParticipantService(db).evict(room_id, user_id, target_user_id)
    logger.info("User %s evicted %s from room %s", user_id, target_user_id, room_id)
    return MessageResponse(message="Participant removed")


@router.put("/{room_id}/participants/{target_user_id}/role", response_model=ParticipantResponse)
async def set_participant_role(
    room_id: uuid.UUID,
    target_user_id: uuid.UUID,
    body: RoleUpdateBody,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Grant or revoke moderator rights. Owner only."""
    participant = ParticipantService(db).set_role(room_id, user_id, target_user_id, body.role)
    return ParticipantResponse.model_validate(participant)
