"""
Room change notifications.

Events only name *what* changed. They carry identifiers, never state, so a
subscriber always re-reads the aggregate instead of applying a stale delta.
"""
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Union
import uuid


@dataclass(frozen=True)
class RoomChanged:
    room_id: uuid.UUID

    kind: ClassVar[str] = "room_changed"

    def payload(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class ParticipantChanged:
    room_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None

    kind: ClassVar[str] = "participant_changed"

    def payload(self) -> Dict[str, Any]:
        return {"user_id": str(self.user_id) if self.user_id else None}


@dataclass(frozen=True)
class SessionChanged:
    room_id: uuid.UUID
    session_id: Optional[uuid.UUID] = None

    kind: ClassVar[str] = "session_changed"

    def payload(self) -> Dict[str, Any]:
        return {"session_id": str(self.session_id) if self.session_id else None}


RoomEvent = Union[RoomChanged, ParticipantChanged, SessionChanged]

EVENT_KINDS = {cls.kind: cls for cls in (RoomChanged, ParticipantChanged, SessionChanged)}


def event_to_message(event: RoomEvent) -> Dict[str, Any]:
    """Wire form shared by the WebSocket and SSE transports."""
    return {
        "event": event.kind,
        "room_id": str(event.room_id),
        "payload": event.payload(),
    }


def _optional_uuid(value: Any) -> Optional[uuid.UUID]:
    return uuid.UUID(str(value)) if value else None


def event_from_message(message: Dict[str, Any]) -> RoomEvent:
    """Parse a wire message. Raises ValueError for unknown or malformed events."""
    kind = message.get("event")
    if kind not in EVENT_KINDS:
        raise ValueError(f"Unknown event: {kind!r}")
    room_id = uuid.UUID(str(message.get("room_id")))
    payload = message.get("payload") or {}
    if kind == ParticipantChanged.kind:
        return ParticipantChanged(room_id, _optional_uuid(payload.get("user_id")))
    if kind == SessionChanged.kind:
        return SessionChanged(room_id, _optional_uuid(payload.get("session_id")))
    return RoomChanged(room_id)


def resync_hints(room_id: uuid.UUID):
    """One hint of each kind; delivered after (re)subscribing so consumers re-fetch everything."""
    return (RoomChanged(room_id), ParticipantChanged(room_id), SessionChanged(room_id))
