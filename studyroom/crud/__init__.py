from studyroom.crud.room_crud import room_crud
from studyroom.crud.participant_crud import participant_crud
from studyroom.crud.sprint_session_crud import sprint_session_crud

__all__ = [
    "room_crud",
    "participant_crud",
    "sprint_session_crud",
]
