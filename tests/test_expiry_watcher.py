import asyncio
import uuid

from studyroom.crud import sprint_session_crud
from studyroom.realtime.expiry import SessionExpiryWatcher
from studyroom.service.room_service import RoomService
from studyroom.service.sprint_service import SprintService


def _room_with_sprint(db, broadcaster, minutes):
    owner = uuid.uuid4()
    room = RoomService(db, broadcaster).create_room(owner, "Algebra", "Math")
    session = SprintService(db, broadcaster).start(room.id, owner, minutes).session
    return room, session


def test_sweep_once_expires_overdue_sprints(db, broadcaster, recorded):
    room, finished = _room_with_sprint(db, broadcaster, 0)
    _, running = _room_with_sprint(db, broadcaster, 25)
    recorded.watch(room.id)
    watcher = SessionExpiryWatcher(interval=1, broadcaster=broadcaster)

    assert watcher.sweep_once() == 1
    assert watcher.sweep_once() == 0

    db.expire_all()
    assert sprint_session_crud.get_by_id(db, session_id=finished.id).end_reason == "expired"
    assert sprint_session_crud.get_by_id(db, session_id=running.id).is_active
    assert recorded.kinds() == ["session_changed"]


def test_watcher_runs_in_background(db, broadcaster, recorded):
    room, finished = _room_with_sprint(db, broadcaster, 0)
    recorded.watch(room.id)
    watcher = SessionExpiryWatcher(interval=0.01, broadcaster=broadcaster)

    async def scenario():
        watcher.start()
        assert watcher.running
        for _ in range(200):
            if recorded:
                break
            await asyncio.sleep(0.01)
        await watcher.stop()
        assert not watcher.running

    asyncio.run(scenario())
    assert recorded.kinds() == ["session_changed"]
    db.expire_all()
    assert not sprint_session_crud.get_by_id(db, session_id=finished.id).is_active
