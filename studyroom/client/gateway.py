"""
Room gateways: the operations a client performs against a room.

``LocalRoomGateway`` calls the services in-process (workers, tests, scripts).
``studyroom.client.http.HttpRoomGateway`` talks to the REST API. Both return
the API schemas and raise the ``studyroom.core.exceptions`` taxonomy.
"""
import logging
import uuid
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session

from studyroom.core.database import SessionLocal
from studyroom.realtime.broadcaster import EventBroadcaster, EventHandler, event_broadcaster
from studyroom.schema.participant import ParticipantResponse
from studyroom.schema.room import RoomResponse
from studyroom.schema.sprint import (
    CurrentSprintResponse,
    SprintEndResponse,
    SprintResponse,
    SprintStartResponse,
)
from studyroom.service.participant_service import ParticipantService
from studyroom.service.room_service import RoomService
from studyroom.service.sprint_service import SprintService
from studyroom.crud import participant_crud
from studyroom.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RoomGateway:
    """Async room operations on behalf of one user. Subclasses implement every method."""

    user_id: Optional[uuid.UUID] = None

    async def create_room(self, title: str, subject: str) -> RoomResponse:
        raise NotImplementedError

    async def get_room(self, room_id: uuid.UUID) -> RoomResponse:
        raise NotImplementedError

    async def deactivate_room(self, room_id: uuid.UUID) -> RoomResponse:
        raise NotImplementedError

    async def list_participants(self, room_id: uuid.UUID) -> List[ParticipantResponse]:
        raise NotImplementedError

    async def join(self, room_id: uuid.UUID) -> ParticipantResponse:
        raise NotImplementedError

    async def leave(self, room_id: uuid.UUID) -> None:
        raise NotImplementedError

    async def update_task(self, room_id: uuid.UUID, text: str) -> ParticipantResponse:
        raise NotImplementedError

    async def get_current_sprint(self, room_id: uuid.UUID) -> CurrentSprintResponse:
        raise NotImplementedError

    async def start_sprint(self, room_id: uuid.UUID, duration_minutes: Optional[int]) -> SprintStartResponse:
        raise NotImplementedError

    async def end_sprint(self, room_id: uuid.UUID, session_id: uuid.UUID) -> SprintEndResponse:
        raise NotImplementedError

    async def expire_sprint(self, room_id: uuid.UUID, session_id: uuid.UUID) -> SprintEndResponse:
        raise NotImplementedError

    def subscribe(self, room_id: uuid.UUID, handler: EventHandler):
        """Register a sync handler for the room's events; returns an object with ``unsubscribe()``."""
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class LocalRoomGateway(RoomGateway):
    def __init__(
        self,
        user_id: uuid.UUID,
        session_factory: Callable[[], Session] = SessionLocal,
        broadcaster: EventBroadcaster = event_broadcaster,
        clock: Clock = utcnow,
    ):
        self.user_id = user_id
        self.session_factory = session_factory
        self.broadcaster = broadcaster
        self.clock = clock

    def _run(self, fn: Callable[[Session], T]) -> T:
        db = self.session_factory()
        try:
            return fn(db)
        finally:
            db.close()

    def _rooms(self, db: Session) -> RoomService:
        return RoomService(db, self.broadcaster, self.clock)

    def _participants(self, db: Session) -> ParticipantService:
        return ParticipantService(db, self.broadcaster, self.clock)

    def _sprints(self, db: Session) -> SprintService:
        return SprintService(db, self.broadcaster, self.clock)

    @staticmethod
    def _room_response(db: Session, room) -> RoomResponse:
        response = RoomResponse.model_validate(room)
        response.participant_count = participant_crud.count_active(db, room_id=room.id)
        return response

    async def create_room(self, title: str, subject: str) -> RoomResponse:
        def op(db):
            room = self._rooms(db).create_room(self.user_id, title, subject)
            return self._room_response(db, room)
        return self._run(op)

    async def get_room(self, room_id: uuid.UUID) -> RoomResponse:
        return self._run(lambda db: self._room_response(db, self._rooms(db).get_room(room_id)))

    async def deactivate_room(self, room_id: uuid.UUID) -> RoomResponse:
        def op(db):
            room = self._rooms(db).deactivate_room(room_id, self.user_id)
            return self._room_response(db, room)
        return self._run(op)

    async def list_participants(self, room_id: uuid.UUID) -> List[ParticipantResponse]:
        return self._run(
            lambda db: [ParticipantResponse.model_validate(p) for p in self._participants(db).list_active(room_id)]
        )

    async def join(self, room_id: uuid.UUID) -> ParticipantResponse:
        return self._run(
            lambda db: ParticipantResponse.model_validate(self._participants(db).join(room_id, self.user_id))
        )

    async def leave(self, room_id: uuid.UUID) -> None:
        self._run(lambda db: self._participants(db).leave(room_id, self.user_id))

    async def update_task(self, room_id: uuid.UUID, text: str) -> ParticipantResponse:
        return self._run(
            lambda db: ParticipantResponse.model_validate(
                self._participants(db).update_task(room_id, self.user_id, text)
            )
        )

    async def get_current_sprint(self, room_id: uuid.UUID) -> CurrentSprintResponse:
        def op(db):
            session = self._sprints(db).get_current(room_id)
            now = self.clock()
            return CurrentSprintResponse(
                session=SprintResponse.from_session(session, now) if session else None,
                server_time=now,
            )
        return self._run(op)

    async def start_sprint(self, room_id: uuid.UUID, duration_minutes: Optional[int]) -> SprintStartResponse:
        def op(db):
            result = self._sprints(db).start(room_id, self.user_id, duration_minutes)
            now = self.clock()
            return SprintStartResponse(
                session=SprintResponse.from_session(result.session, now),
                adopted=result.adopted,
                server_time=now,
            )
        return self._run(op)

    async def end_sprint(self, room_id: uuid.UUID, session_id: uuid.UUID) -> SprintEndResponse:
        def op(db):
            session = self._sprints(db).end(session_id, self.user_id, room_id=room_id)
            now = self.clock()
            return SprintEndResponse(session=SprintResponse.from_session(session, now), server_time=now)
        return self._run(op)

    async def expire_sprint(self, room_id: uuid.UUID, session_id: uuid.UUID) -> SprintEndResponse:
        def op(db):
            session = self._sprints(db).expire(session_id, room_id=room_id)
            now = self.clock()
            return SprintEndResponse(session=SprintResponse.from_session(session, now), server_time=now)
        return self._run(op)

    def subscribe(self, room_id: uuid.UUID, handler: EventHandler):
        return self.broadcaster.subscribe(room_id, handler)
