"""RoomSync driven through the in-process gateway."""
import asyncio
from datetime import timedelta
import uuid

import pytest

from studyroom.client import LocalRoomGateway, RoomSync
from studyroom.core.exceptions import AuthorizationError
from studyroom.realtime.events import ParticipantChanged, RoomChanged, SessionChanged


class RecordingGateway(LocalRoomGateway):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.task_updates = []
        self.expire_calls = 0

    async def update_task(self, room_id, text):
        self.task_updates.append(text)
        return await super().update_task(room_id, text)

    async def expire_sprint(self, room_id, session_id):
        self.expire_calls += 1
        return await super().expire_sprint(room_id, session_id)


@pytest.fixture
def gateways(broadcaster, clock):
    def _make(user_id=None):
        return RecordingGateway(user_id or uuid.uuid4(), broadcaster=broadcaster, clock=clock)

    return _make


def _ids(state):
    return [p.user_id for p in state.participants]


def test_two_clients_converge(gateways, clock):
    owner_gw, guest_gw = gateways(), gateways()

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        owner = RoomSync(owner_gw, room.id, tick_seconds=0, clock=clock)
        await owner.open(join=False)
        assert _ids(owner.state) == [owner_gw.user_id]

        clock.advance(1)
        guest = RoomSync(guest_gw, room.id, tick_seconds=0, clock=clock)
        await guest.open()
        await owner.wait_idle()
        assert _ids(owner.state) == [owner_gw.user_id, guest_gw.user_id]
        assert _ids(guest.state) == _ids(owner.state)

        await owner.start_sprint(25)
        await guest.wait_idle()
        assert guest.state.sprint.id == owner.state.sprint.id
        assert guest.state.remaining_seconds == pytest.approx(1500)

        await owner.end_sprint()
        await guest.wait_idle()
        assert owner.state.sprint is None
        assert guest.state.sprint is None
        assert guest.state.remaining_seconds is None

        await guest.close()
        await owner.wait_idle()
        assert _ids(owner.state) == [owner_gw.user_id]
        await owner.close(leave=False)

    asyncio.run(scenario())


def test_countdown_reaches_zero_and_reports_expiry(gateways, clock):
    owner_gw, guest_gw = gateways(), gateways()

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        owner = RoomSync(owner_gw, room.id, tick_seconds=0, clock=clock)
        guest = RoomSync(guest_gw, room.id, tick_seconds=0, clock=clock)
        await owner.open(join=False)
        await guest.open()
        await owner.start_sprint(1)
        await guest.wait_idle()

        clock.advance(45)
        assert guest.tick() == pytest.approx(15)
        assert guest_gw.expire_calls == 0

        clock.advance(15)
        assert guest.tick() == 0
        assert guest.tick() == 0
        await guest.wait_idle()
        await owner.wait_idle()

        assert guest_gw.expire_calls == 1
        assert guest.state.sprint is None
        assert owner.state.sprint is None
        await guest.close()
        await owner.close(leave=False)

    asyncio.run(scenario())


def test_clock_skew_is_corrected(broadcaster, clock):
    owner_gw = LocalRoomGateway(uuid.uuid4(), broadcaster=broadcaster, clock=clock)

    def fast_clock():
        return clock() + timedelta(seconds=90)

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        sync = RoomSync(owner_gw, room.id, tick_seconds=0, clock=fast_clock)
        await sync.open(join=False)
        await sync.start_sprint(25)
        assert sync.state.clock_offset == pytest.approx(-90)
        assert sync.state.remaining_seconds == pytest.approx(1500)
        clock.advance(60)
        assert sync.tick() == pytest.approx(1440)
        await sync.close(leave=False)

    asyncio.run(scenario())


def test_task_edits_are_debounced(gateways, clock):
    owner_gw = gateways()

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        sync = RoomSync(owner_gw, room.id, tick_seconds=0, debounce_seconds=0.01, clock=clock)
        await sync.open(join=False)

        for text in ("C", "Ch", "Chapter 3"):
            sync.set_task(text)
        await asyncio.sleep(0.05)
        await sync.wait_idle()

        assert owner_gw.task_updates == ["Chapter 3"]
        assert sync.state.participants[0].current_task == "Chapter 3"

        sync.set_task("Chapter 4")
        await sync.flush()
        assert owner_gw.task_updates == ["Chapter 3", "Chapter 4"]
        await sync.close(leave=False)

    asyncio.run(scenario())


def test_close_drops_pending_edit_and_leaves(gateways, clock):
    owner_gw, guest_gw = gateways(), gateways()

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        guest = RoomSync(guest_gw, room.id, tick_seconds=0, debounce_seconds=10, clock=clock)
        await guest.open()
        guest.set_task("never sent")

        await guest.close()

        assert guest_gw.task_updates == []
        present = await owner_gw.list_participants(room.id)
        return [p.user_id for p in present]

    assert asyncio.run(scenario()) == [owner_gw.user_id]


def test_room_close_evicts_local_state(gateways, clock):
    owner_gw, guest_gw = gateways(), gateways()
    changes = []

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        guest = RoomSync(guest_gw, room.id, tick_seconds=0, clock=clock, on_change=lambda s: changes.append(s.evicted))
        await guest.open()
        await owner_gw.start_sprint(room.id, 25)
        await guest.wait_idle()
        assert guest.state.sprint is not None

        await owner_gw.deactivate_room(room.id)
        await guest.wait_idle()

        assert guest.state.evicted
        assert guest.state.participants == []
        assert guest.state.sprint is None
        assert owner_gw.broadcaster.subscriber_count(room.id) == 0

        guest.set_task("ignored")
        await guest.close()
        assert guest_gw.task_updates == []

    asyncio.run(scenario())
    assert changes[-1] is True


def test_duplicate_and_stale_hints_converge(gateways, clock):
    owner_gw, guest_gw = gateways(), gateways()

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        sync = RoomSync(owner_gw, room.id, tick_seconds=0, clock=clock)
        await sync.open(join=False)
        await guest_gw.join(room.id)
        await guest_gw.leave(room.id)
        await sync.wait_idle()

        for event in (
            SessionChanged(room.id, uuid.uuid4()),
            ParticipantChanged(room.id, guest_gw.user_id),
            ParticipantChanged(room.id, guest_gw.user_id),
            RoomChanged(room.id),
        ):
            await sync.handle_event(event)

        assert _ids(sync.state) == [owner_gw.user_id]
        assert sync.state.sprint is None
        assert not sync.state.evicted
        await sync.close(leave=False)

    asyncio.run(scenario())


def test_member_cannot_start_sprint(gateways, clock):
    owner_gw, guest_gw = gateways(), gateways()

    async def scenario():
        room = await owner_gw.create_room("Algebra", "Math")
        guest = RoomSync(guest_gw, room.id, tick_seconds=0, clock=clock)
        await guest.open()
        with pytest.raises(AuthorizationError):
            await guest.start_sprint()
        await guest.close()

    asyncio.run(scenario())
