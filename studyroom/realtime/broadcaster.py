"""
In-process event broadcaster: subscribe/unsubscribe/publish by room_id.

Publishing happens from request handlers, some of which run in FastAPI's
threadpool, so the registry is guarded by a thread lock and asyncio consumers
are fed through ``loop.call_soon_threadsafe``.
"""
import asyncio
import logging
import threading
import uuid
from typing import Callable, Dict, List, Optional

from studyroom.realtime.events import RoomEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[RoomEvent], None]


class Subscription:
    """Handle returned by ``subscribe``; ``unsubscribe`` is idempotent."""

    def __init__(self, broadcaster: "EventBroadcaster", room_id: uuid.UUID, handler: EventHandler):
        self.room_id = room_id
        self.handler = handler
        self._broadcaster = broadcaster
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._broadcaster._remove(self)


class EventBroadcaster:
    """Fans room events out to every handler subscribed to the room."""

    def __init__(self) -> None:
        # room_id -> subscriptions in subscribe order
        self._rooms: Dict[uuid.UUID, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, room_id: uuid.UUID, handler: EventHandler) -> Subscription:
        """
        Register ``handler`` for the room's events.

        Handlers run on the publishing thread and must not block. A handler
        that raises is treated like a dead connection and dropped.
        """
        subscription = Subscription(self, room_id, handler)
        with self._lock:
            self._rooms.setdefault(room_id, []).append(subscription)
        logger.debug("Subscribed to room %s", room_id)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._rooms.get(subscription.room_id)
            if not subs:
                return
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                del self._rooms[subscription.room_id]
        logger.debug("Unsubscribed from room %s", subscription.room_id)

    def publish(self, event: RoomEvent) -> int:
        """Deliver to every subscriber of the event's room. Returns deliveries made."""
        with self._lock:
            subs = list(self._rooms.get(event.room_id) or [])
        delivered = 0
        dead: List[Subscription] = []
        for sub in subs:
            try:
                sub.handler(event)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping subscriber of room %s: %s", event.room_id, e)
                dead.append(sub)
        for sub in dead:
            sub.unsubscribe()
        return delivered

    def publish_all(self, *events: RoomEvent) -> None:
        for event in events:
            self.publish(event)

    def subscriber_count(self, room_id: uuid.UUID) -> int:
        with self._lock:
            return len(self._rooms.get(room_id) or [])


def queue_handler(
    queue: "asyncio.Queue[RoomEvent]",
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> EventHandler:
    """
    Handler feeding ``queue`` on ``loop`` (default: the running loop).

    Raises RuntimeError once the loop is closed, which makes the
    broadcaster drop the subscription.
    """
    target = loop or asyncio.get_running_loop()

    def handle(event: RoomEvent) -> None:
        target.call_soon_threadsafe(queue.put_nowait, event)

    return handle


event_broadcaster = EventBroadcaster()
