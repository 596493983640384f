"""
Room store: room lifecycle and the close cascade.
"""
from typing import List, Optional, Tuple
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studyroom.core.config import settings
from studyroom.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFound,
    ServiceUnavailable,
    ValidationError,
)
from studyroom.crud import participant_crud, room_crud, sprint_session_crud
from studyroom.model.participant import ROLE_OWNER
from studyroom.model.room import StudyRoom
from studyroom.model.sprint_session import EndReason
from studyroom.realtime.broadcaster import EventBroadcaster, event_broadcaster
from studyroom.realtime.events import ParticipantChanged, RoomChanged, SessionChanged
from studyroom.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


def _clean_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} cannot be empty.", code="EMPTY_" + field.upper())
    if len(text) > settings.MAX_TITLE_LENGTH:
        raise ValidationError(
            f"{field} must be at most {settings.MAX_TITLE_LENGTH} characters.",
            code=field.upper() + "_TOO_LONG",
        )
    return text


class RoomService:
    """Creates, lists, closes and purges rooms."""

    def __init__(
        self,
        db: Session,
        broadcaster: EventBroadcaster = event_broadcaster,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.broadcaster = broadcaster
        self.clock = clock

    def get_room(self, room_id: uuid.UUID) -> StudyRoom:
        room = room_crud.get_by_id(self.db, room_id=room_id)
        if not room:
            raise NotFound("Room")
        return room

    def create_room(self, owner_id: uuid.UUID, title: str, subject: str) -> StudyRoom:
        """Create a room; the creator becomes its first participant."""
        title = _clean_text(title, "Title")
        subject = _clean_text(subject, "Subject")
        try:
            room = room_crud.create_from_dict(
                self.db,
                obj_in={"id": uuid.uuid4(), "title": title, "subject": subject, "owner_id": owner_id},
                commit=False,
            )
            participant_crud.create_from_dict(
                self.db,
                obj_in={
                    "room_id": room.id,
                    "user_id": owner_id,
                    "role": ROLE_OWNER,
                    "joined_at": self.clock(),
                },
                commit=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to create room")
            raise ServiceUnavailable()
        self.db.refresh(room)
        logger.info("Room %s created by %s", room.id, owner_id)
        self.broadcaster.publish_all(RoomChanged(room.id), ParticipantChanged(room.id, owner_id))
        return room

    def deactivate_room(self, room_id: uuid.UUID, actor_id: uuid.UUID) -> StudyRoom:
        """
        Close the room: end its sprint, evict everyone, flag it inactive.

        All three writes commit together, so no reader sees a closed room
        with a sprint still running. Closing a closed room is a no-op.
        """
        room = room_crud.get_for_update(self.db, room_id=room_id)
        if not room:
            raise NotFound("Room")
        if not room.is_owner(actor_id):
            self.db.rollback()
            raise AuthorizationError("Only the room owner can close the room.")
        if not room.is_active:
            self.db.rollback()
            return room
        return self._close(room, reason="closed by owner")

    def _close(self, room: StudyRoom, reason: str) -> StudyRoom:
        """Close cascade on a row-locked, active room. Commits."""
        now = self.clock()
        try:
            ended = sprint_session_crud.end_all_for_room(
                self.db, room_id=room.id, reason=EndReason.ROOM_CLOSED, now=now
            )
            evicted = participant_crud.deactivate_all(self.db, room_id=room.id, now=now)
            room_crud.mark_inactive(self.db, room_id=room.id, now=now)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to close room %s", room.id)
            raise ServiceUnavailable()
        self.db.refresh(room)
        logger.info(
            "Room %s closed (%s): %d sprint(s) ended, %d participant(s) evicted",
            room.id, reason, len(ended), evicted,
        )
        self.broadcaster.publish_all(
            *[SessionChanged(room.id, sid) for sid in ended],
            ParticipantChanged(room.id),
            RoomChanged(room.id),
        )
        return room

    def list_active_rooms(self) -> List[Tuple[StudyRoom, int]]:
        """Active rooms with their present participant counts."""
        return room_crud.list_active_with_counts(self.db)

    def list_rooms_owned_by(self, owner_id: uuid.UUID, active_only: bool = False) -> List[StudyRoom]:
        return room_crud.list_by_owner(self.db, owner_id=owner_id, active_only=active_only)

    def purge_room(self, room_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        """Permanently delete a closed room with its participants and sprints."""
        room = room_crud.get_for_update(self.db, room_id=room_id)
        if not room:
            raise NotFound("Room")
        if not room.is_owner(actor_id):
            self.db.rollback()
            raise AuthorizationError("Only the room owner can delete the room.")
        if room.is_active:
            self.db.rollback()
            raise ConflictError("Close the room before deleting it.", code="ROOM_STILL_ACTIVE")
        try:
            room_crud.remove(self.db, db_obj=room)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to purge room %s", room_id)
            raise ServiceUnavailable()
        logger.info("Room %s purged by %s", room_id, actor_id)
        self.broadcaster.publish(RoomChanged(room_id))
