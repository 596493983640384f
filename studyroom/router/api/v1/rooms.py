"""
Rooms API: create, list, close and purge rooms.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from studyroom.core.database import get_db
from studyroom.core.dependencies import current_user_id
from studyroom.crud import participant_crud
from studyroom.model.room import StudyRoom
from studyroom.schema.room import MessageResponse, RoomCreateBody, RoomListResponse, RoomResponse
from studyroom.service.room_service import RoomService

router = APIRouter()
logger = logging.getLogger(__name__)


def _room_response(room: StudyRoom, participant_count: int) -> RoomResponse:
    response = RoomResponse.model_validate(room)
    response.participant_count = participant_count
    return response


@router.get("", response_model=RoomListResponse)
async def list_active_rooms(
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Active rooms with the number of people currently in each."""
    rooms = RoomService(db).list_active_rooms()
    items = [_room_response(room, count) for room, count in rooms]
    return RoomListResponse(items=items, total=len(items))


@router.get("/mine", response_model=RoomListResponse)
async def list_my_rooms(
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
    active_only: bool = Query(False, description="Only rooms that are still open."),
):
    """Rooms owned by the current user, newest first."""
    rooms = RoomService(db).list_rooms_owned_by(user_id, active_only=active_only)
    items = [
        _room_response(room, participant_crud.count_active(db, room_id=room.id))
        for room in rooms
    ]
    return RoomListResponse(items=items, total=len(items))


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    body: RoomCreateBody,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Create a room. The creator joins it as owner."""
    room = RoomService(db).create_room(user_id, body.title, body.subject)
    return _room_response(room, 1)


@router.get("/{room_id}", response_model=RoomResponse)
async def get_room(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    room = RoomService(db).get_room(room_id)
    return _room_response(room, participant_crud.count_active(db, room_id=room.id))


@router.post("/{room_id}/deactivate", response_model=RoomResponse)
async def deactivate_room(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Close the room: ends its sprint and removes everyone. Owner only."""
    room = RoomService(db).deactivate_room(room_id, user_id)
    return _room_response(room, 0)


@router.delete("/{room_id}", response_model=MessageResponse)
async def purge_room(
    room_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Permanently delete a closed room and its history. Owner only."""
    RoomService(db).purge_room(room_id, user_id)
    return MessageResponse(message="Room deleted")
