"""
Participant registry: who is present in a room, their task and role.
"""
from typing import List, Optional
import logging
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from studyroom.core.config import settings
from studyroom.core.exceptions import (
    AuthorizationError,
    NotFound,
    RoomClosedError,
    ServiceUnavailable,
    ValidationError,
)
from studyroom.crud import participant_crud, room_crud
from studyroom.model.participant import (
    MODERATOR_ROLES,
    ROLE_MEMBER,
    ROLE_MODERATOR,
    ROLE_OWNER,
    RoomParticipant,
)
from studyroom.model.room import StudyRoom
from studyroom.realtime.broadcaster import EventBroadcaster, event_broadcaster
from studyroom.realtime.events import ParticipantChanged
from studyroom.service.room_service import RoomService
from studyroom.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = (ROLE_MODERATOR, ROLE_MEMBER)


def can_moderate(db: Session, room: StudyRoom, user_id: uuid.UUID) -> bool:
    """Owner, or a present participant holding the moderator role."""
    if room.is_owner(user_id):
        return True
    participant = participant_crud.get_active(db, room_id=room.id, user_id=user_id)
    return bool(participant and participant.role in MODERATOR_ROLES)


class ParticipantService:
    """Join/leave/evict and per-participant text updates."""

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

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to %s", action)
            raise ServiceUnavailable()

    def join(self, room_id: uuid.UUID, user_id: uuid.UUID) -> RoomParticipant:
        """
        Make the user present in the room.

        A row left active by an ungraceful disconnect is retired and a fresh
        row inserted, so the user never has two active rows. The user's role
        carries over from their previous row.
        """
        room = self._room(room_id, lock=True)
        if not room.is_active:
            self.db.rollback()
            raise RoomClosedError()

        previous = participant_crud.get_latest(self.db, room_id=room_id, user_id=user_id)
        if room.is_owner(user_id):
            role = ROLE_OWNER
        else:
            role = previous.role if previous and previous.role == ROLE_MODERATOR else ROLE_MEMBER
        now = self.clock()
        try:
            superseded = participant_crud.deactivate_user(
                self.db, room_id=room_id, user_id=user_id, now=now
            )
            participant = participant_crud.create_from_dict(
                self.db,
                obj_in={"room_id": room_id, "user_id": user_id, "role": role, "joined_at": now},
                commit=False,
            )
            self.db.commit()
        except IntegrityError:
            # A concurrent join of the same user won; adopt its row
            self.db.rollback()
            winner = participant_crud.get_active(self.db, room_id=room_id, user_id=user_id)
            if winner is None:
                raise
            logger.info("Concurrent join of %s to room %s; adopting existing row", user_id, room_id)
            return winner
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to join room %s", room_id)
            raise ServiceUnavailable()
        self.db.refresh(participant)
        if superseded:
            logger.info("Superseded %d stale row(s) for %s in room %s", superseded, user_id, room_id)
        logger.info("User %s joined room %s", user_id, room_id)
        self.broadcaster.publish(ParticipantChanged(room_id, user_id))
        return participant

    def leave(self, room_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """
        Mark the user not present. Idempotent.

        The owner leaving closes the room for everyone rather than leaving it
        without a moderator.
        """
        room = self._room(room_id, lock=True)
        if room.is_owner(user_id) and room.is_active:
            RoomService(self.db, self.broadcaster, self.clock)._close(room, reason="owner left")
            return
        self._deactivate(room_id, user_id, action="leave room")

    def mark_disconnected(self, room_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Presence drop from a closed realtime connection; never closes the room."""
        if room_crud.get_by_id(self.db, room_id=room_id) is None:
            return
        self._deactivate(room_id, user_id, action="mark disconnected")

    def _deactivate(
        self, room_id: uuid.UUID, user_id: uuid.UUID, action: str, role: Optional[str] = None
    ) -> bool:
        changed = participant_crud.deactivate_user(
            self.db, room_id=room_id, user_id=user_id, now=self.clock(), role=role
        )
        self._commit(action)
        if changed:
            logger.info("User %s left room %s (%s)", user_id, room_id, action)
            self.broadcaster.publish(ParticipantChanged(room_id, user_id))
        return bool(changed)

    def evict(self, room_id: uuid.UUID, actor_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Remove another participant. Owner/moderator only; the owner cannot be evicted."""
        room = self._room(room_id)
        if not can_moderate(self.db, room, actor_id):
            raise AuthorizationError("Only the owner or a moderator can remove participants.")
        if room.is_owner(user_id):
            raise AuthorizationError("The room owner cannot be removed.")
        # An evicted moderator comes back as a plain member
        if self._deactivate(room_id, user_id, action="evict participant", role=ROLE_MEMBER):
            return
        latest = participant_crud.get_latest(self.db, room_id=room_id, user_id=user_id)
        if latest is not None and latest.role == ROLE_MODERATOR:
            latest.role = ROLE_MEMBER
            self._commit("evict participant")

    def set_role(
        self, room_id: uuid.UUID, actor_id: uuid.UUID, user_id: uuid.UUID, role: str
    ) -> RoomParticipant:
        room = self._room(room_id)
        if not room.is_owner(actor_id):
            raise AuthorizationError("Only the room owner can change roles.")
        if role not in ASSIGNABLE_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(ASSIGNABLE_ROLES)}.", code="INVALID_ROLE")
        if room.is_owner(user_id):
            raise ValidationError("The owner's role cannot be changed.", code="INVALID_ROLE")
        return self._update_fields(room, user_id, {"role": role}, action="set role")

    def update_task(self, room_id: uuid.UUID, user_id: uuid.UUID, text: Optional[str]) -> RoomParticipant:
        """Last write wins."""
        room = self._room(room_id)
        return self._update_fields(room, user_id, {"current_task": self._checked_text(text)}, action="update task")

    def update_reflection(self, room_id: uuid.UUID, user_id: uuid.UUID, text: Optional[str]) -> RoomParticipant:
        room = self._room(room_id)
        return self._update_fields(room, user_id, {"reflection": self._checked_text(text)}, action="update reflection")

    @staticmethod
    def _checked_text(text: Optional[str]) -> str:
        text = text or ""
        if len(text) > settings.MAX_TASK_LENGTH:
            raise ValidationError(
                f"Text must be at most {settings.MAX_TASK_LENGTH} characters.",
                code="TEXT_TOO_LONG",
            )
        return text

    def _update_fields(self, room: StudyRoom, user_id: uuid.UUID, values: dict, action: str) -> RoomParticipant:
        if not room.is_active:
            raise RoomClosedError()
        changed = participant_crud.set_fields(self.db, room_id=room.id, user_id=user_id, values=values)
        if not changed:
            self.db.rollback()
            raise NotFound("Participant")
        self._commit(action)
        self.broadcaster.publish(ParticipantChanged(room.id, user_id))
        return participant_crud.get_active(self.db, room_id=room.id, user_id=user_id)

    def list_active(self, room_id: uuid.UUID) -> List[RoomParticipant]:
        """Present participants, one entry per user (newest row wins), in join order."""
        self._room(room_id)
        return participant_crud.list_active(self.db, room_id=room_id)

    def get_active(self, room_id: uuid.UUID, user_id: uuid.UUID) -> RoomParticipant:
        self._room(room_id)
        participant = participant_crud.get_active(self.db, room_id=room_id, user_id=user_id)
        if not participant:
            raise NotFound("Participant")
        return participant
