from studyroom.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFound,
    RoomClosedError,
    StudyRoomException,
    ValidationError,
    error_from_detail,
)


def test_detail_carries_code_and_message():
    error = RoomClosedError()
    assert error.status_code == 409
    assert error.detail == {"code": "ROOM_CLOSED", "message": "This room is closed."}
    assert NotFound("Room").detail["message"] == "Room not found."


def test_error_from_detail_maps_codes_back():
    assert isinstance(error_from_detail(409, {"code": "ROOM_CLOSED", "message": "closed"}), RoomClosedError)
    assert isinstance(error_from_detail(403, {"code": "FORBIDDEN", "message": "no"}), AuthorizationError)
    assert isinstance(error_from_detail(404, {"code": "NOT_FOUND", "message": "Room not found."}), NotFound)


def test_error_from_detail_falls_back_to_status():
    empty = error_from_detail(400, {"code": "EMPTY_TITLE", "message": "Title cannot be empty."})
    assert isinstance(empty, ValidationError)
    assert empty.code == "EMPTY_TITLE"

    active = error_from_detail(409, {"code": "ROOM_STILL_ACTIVE", "message": "Close it first."})
    assert isinstance(active, ConflictError)

    odd = error_from_detail(422, [{"loc": ["body"], "msg": "field required"}])
    assert type(odd) is StudyRoomException
    assert odd.status_code == 422
