"""
Client-side reconciliation of one room.

Events are treated as hints: every event triggers a re-fetch of the affected
aggregate, so duplicated, reordered or missed events all converge on the
server's state. The countdown is recomputed locally from ``ended_at`` and the
server-time offset, without I/O, and reports expiry when it reaches zero.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Set

from studyroom.core.config import settings
from studyroom.core.exceptions import NotFound, RoomClosedError, StudyRoomException
from studyroom.client.gateway import RoomGateway
from studyroom.realtime.events import ParticipantChanged, RoomChanged, RoomEvent, SessionChanged
from studyroom.schema.participant import ParticipantResponse
from studyroom.schema.room import RoomResponse
from studyroom.schema.sprint import SprintResponse, SprintStartResponse
from studyroom.utils.clock import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RoomState:
    room: Optional[RoomResponse] = None
    participants: List[ParticipantResponse] = field(default_factory=list)
    sprint: Optional[SprintResponse] = None
    remaining_seconds: Optional[float] = None
    # server clock minus local clock, in seconds
    clock_offset: float = 0.0
    evicted: bool = False


class RoomSync:
    """Keeps a ``RoomState`` in line with the server for one room and user."""

    def __init__(
        self,
        gateway: RoomGateway,
        room_id: uuid.UUID,
        tick_seconds: Optional[float] = None,
        debounce_seconds: Optional[float] = None,
        on_change: Optional[Callable[[RoomState], None]] = None,
        clock: Clock = utcnow,
    ):
        self.gateway = gateway
        self.room_id = room_id
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.COUNTDOWN_TICK_SECONDS
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.TASK_DEBOUNCE_SECONDS
        )
        self.on_change = on_change
        self.clock = clock
        self.state = RoomState()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._subscription = None
        self._tick_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._pending_task: Optional[str] = None
        self._expiring: Optional[uuid.UUID] = None
        self._closed = False

    # Lifecycle

    async def open(self, join: bool = True) -> RoomState:
        """Join (optionally), subscribe, load full state and start the countdown tick."""
        self._loop = asyncio.get_running_loop()
        if join:
            await self.gateway.join(self.room_id)
        self._subscription = self.gateway.subscribe(self.room_id, self._on_event)
        await self.refresh_all()
        if not self.state.evicted and self.tick_seconds > 0:
            self._tick_task = self._loop.create_task(self._tick_loop())
        return self.state

    async def close(self, leave: bool = True) -> None:
        """Drop the pending task edit, stop ticking, unsubscribe and (optionally) leave."""
        if self._closed:
            return
        self._closed = True
        self._stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if leave and not self.state.evicted:
            try:
                await self.gateway.leave(self.room_id)
            except NotFound:
                pass

    def _stop(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        self._pending_task = None
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def wait_idle(self) -> None:
        """Wait until every spawned re-fetch has finished."""
        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    # Events

    def _on_event(self, event: RoomEvent) -> None:
        # May run on another thread (the publisher's)
        if self._loop is None or self._closed:
            return
        self._loop.call_soon_threadsafe(self._spawn_handler, event)

    def _spawn_handler(self, event: RoomEvent) -> None:
        if not self._closed:
            self._spawn(self.handle_event(event))

    def _spawn(self, coro) -> asyncio.Task:
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle_event(self, event: RoomEvent) -> None:
        if self.state.evicted:
            return
        try:
            if isinstance(event, ParticipantChanged):
                await self.refresh_participants()
            elif isinstance(event, SessionChanged):
                await self.refresh_sprint()
            elif isinstance(event, RoomChanged):
                await self.refresh_room()
        except StudyRoomException as e:
            logger.warning("Re-fetch after %s in room %s failed: %s", event.kind, self.room_id, e)

    # Re-fetch

    async def refresh_all(self) -> None:
        await self.refresh_room()
        if self.state.evicted:
            return
        await self.refresh_participants()
        await self.refresh_sprint()

    async def refresh_room(self) -> None:
        try:
            room = await self.gateway.get_room(self.room_id)
        except NotFound:
            self._evict("room deleted")
            return
        self.state.room = room
        if not room.is_active:
            self._evict("room closed")
            return
        self._changed()

    async def refresh_participants(self) -> None:
        try:
            participants = await self.gateway.list_participants(self.room_id)
        except NotFound:
            self._evict("room deleted")
            return
        if self.state.evicted:
            return
        self.state.participants = participants
        self._changed()

    async def refresh_sprint(self) -> None:
        try:
            current = await self.gateway.get_current_sprint(self.room_id)
        except NotFound:
            self._evict("room deleted")
            return
        if self.state.evicted:
            return
        self._apply_server_time(current.server_time)
        self.state.sprint = current.session
        self._recompute()
        self._changed()

    def _apply_server_time(self, server_time: datetime) -> None:
        self.state.clock_offset = (as_utc(server_time) - self.clock()).total_seconds()

    def _evict(self, reason: str) -> None:
        if self.state.evicted:
            return
        logger.info("Left room %s locally: %s", self.room_id, reason)
        self.state.evicted = True
        self.state.participants = []
        self.state.sprint = None
        self.state.remaining_seconds = None
        self._stop()
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            try:
                self.on_change(self.state)
            except Exception:
                logger.exception("on_change callback failed")

    # Countdown

    def _recompute(self) -> None:
        sprint = self.state.sprint
        if sprint is None or not sprint.is_active or sprint.ended_at is None:
            self.state.remaining_seconds = None
            return
        server_now = self.clock().timestamp() + self.state.clock_offset
        self.state.remaining_seconds = max(0.0, as_utc(sprint.ended_at).timestamp() - server_now)

    def tick(self) -> Optional[float]:
        """Recompute remaining time; at zero, report expiry once per sprint."""
        if self.state.evicted:
            return None
        self._recompute()
        sprint = self.state.sprint
        if (
            sprint is not None
            and sprint.is_active
            and self.state.remaining_seconds == 0
            and self._expiring != sprint.id
        ):
            self._expiring = sprint.id
            self._spawn(self._expire(sprint.id))
        return self.state.remaining_seconds

    async def _expire(self, session_id: uuid.UUID) -> None:
        try:
            await self.gateway.expire_sprint(self.room_id, session_id)
        except StudyRoomException as e:
            logger.warning("Reporting expiry of sprint %s failed: %s", session_id, e)
        await self.refresh_sprint()
        # Still running on the server (clock skew): report again on a later tick
        if self._expiring == session_id:
            self._expiring = None

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            self.tick()

    # Actions

    async def start_sprint(self, duration_minutes: Optional[int] = None) -> SprintStartResponse:
        if duration_minutes is None:
            duration_minutes = settings.DEFAULT_SPRINT_MINUTES
        result = await self.gateway.start_sprint(self.room_id, duration_minutes)
        self._apply_server_time(result.server_time)
        self.state.sprint = result.session
        self._recompute()
        self._changed()
        return result

    async def end_sprint(self) -> None:
        sprint = self.state.sprint
        if sprint is None:
            return
        await self.gateway.end_sprint(self.room_id, sprint.id)
        await self.refresh_sprint()

    def set_task(self, text: str) -> None:
        """Debounced task edit: only the last value within the window is sent."""
        if self._closed or self.state.evicted:
            return
        if self._loop is None:
            raise RuntimeError("RoomSync.open() must be awaited first")
        self._pending_task = text
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = self._loop.call_later(self.debounce_seconds, self._flush_pending)

    def _flush_pending(self) -> None:
        self._debounce = None
        text, self._pending_task = self._pending_task, None
        if text is not None and not self._closed:
            self._spawn(self._send_task(text))

    async def flush(self) -> None:
        """Send a pending task edit now and wait for it."""
        if self._debounce is not None:
            self._debounce.cancel()
        self._flush_pending()
        await self.wait_idle()

    async def _send_task(self, text: str) -> None:
        try:
            await self.gateway.update_task(self.room_id, text)
        except RoomClosedError:
            self._evict("room closed")
        except NotFound:
            await self.refresh_room()
        except StudyRoomException as e:
            logger.warning("Task update in room %s failed: %s", self.room_id, e)
