from studyroom.realtime.events import (
    EVENT_KINDS,
    ParticipantChanged,
    RoomChanged,
    RoomEvent,
    SessionChanged,
    event_from_message,
    event_to_message,
    resync_hints,
)
from studyroom.realtime.broadcaster import EventBroadcaster, Subscription, event_broadcaster, queue_handler

__all__ = [
    "EVENT_KINDS",
    "ParticipantChanged",
    "RoomChanged",
    "RoomEvent",
    "SessionChanged",
    "event_from_message",
    "event_to_message",
    "resync_hints",
    "EventBroadcaster",
    "Subscription",
    "event_broadcaster",
    "queue_handler",
]
