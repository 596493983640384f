"""
Randomized start/end/expire/join/leave sequences against one room.

After every step: at most one running sprint, and at most one active
participant row (and one listed entry) per user.
"""
import random
import uuid

import pytest

from studyroom.core.exceptions import StudyRoomException
from studyroom.model import RoomParticipant, SprintSession
from studyroom.model.participant import ROLE_MODERATOR
from studyroom.service.participant_service import ParticipantService
from studyroom.service.room_service import RoomService
from studyroom.service.sprint_service import SprintService


def _check(db, room_id, participants):
    db.expire_all()
    running = (
        db.query(SprintSession)
        .filter(SprintSession.room_id == room_id, SprintSession.is_active == True)  # noqa: E712
        .count()
    )
    assert running <= 1

    active_users = [
        row.user_id
        for row in db.query(RoomParticipant).filter(
            RoomParticipant.room_id == room_id,
            RoomParticipant.is_active == True,  # noqa: E712
        )
    ]
    assert len(active_users) == len(set(active_users))

    listed = [p.user_id for p in participants.list_active(room_id)]
    assert len(listed) == len(set(listed))


@pytest.mark.parametrize("seed", [1, 7, 42, 2024])
def test_random_operations_keep_invariants(db, broadcaster, clock, seed):
    rng = random.Random(seed)
    owner, moderator, member = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    rooms = RoomService(db, broadcaster, clock)
    participants = ParticipantService(db, broadcaster, clock)
    sprints = SprintService(db, broadcaster, clock)

    room = rooms.create_room(owner, "Algebra", "Math")
    participants.join(room.id, moderator)
    participants.set_role(room.id, owner, moderator, ROLE_MODERATOR)
    seen_sessions = []

    for _ in range(120):
        op = rng.choice(["start", "start", "end", "expire", "read", "join", "leave", "sweep", "wait"])
        actor = rng.choice([owner, moderator, member])
        try:
            if op == "start":
                result = sprints.start(room.id, actor, rng.choice([0, 1, 25, None]))
                seen_sessions.append(result.session.id)
            elif op == "end" and seen_sessions:
                sprints.end(rng.choice(seen_sessions), actor)
            elif op == "expire" and seen_sessions:
                sprints.expire(rng.choice(seen_sessions))
            elif op == "read":
                sprints.get_current(room.id)
            elif op == "join":
                participants.join(room.id, rng.choice([moderator, member]))
            elif op == "leave":
                participants.leave(room.id, rng.choice([moderator, member]))
            elif op == "sweep":
                sprints.sweep_expired()
            elif op == "wait":
                clock.advance(rng.choice([1, 30, 61, 600]))
        except StudyRoomException as e:
            # members may not start or end sprints; a left moderator has no rights
            assert e.status_code == 403
        _check(db, room.id, participants)

    assert rooms.get_room(room.id).is_active
