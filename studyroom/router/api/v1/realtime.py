"""
Realtime API: room change notifications over WebSocket and Server-Sent Events.

Messages are wake-up signals ({event, room_id, payload}) carrying ids only;
clients re-fetch the affected aggregate through the REST API.
"""
import asyncio
import contextlib
import json
import logging
import uuid
from typing import Dict, Optional, Set

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from studyroom.core.config import settings
from studyroom.core.database import SessionLocal
from studyroom.core.dependencies import current_user_id
from studyroom.core.exceptions import StudyRoomException
from studyroom.crud import room_crud
from studyroom.realtime.broadcaster import Subscription, event_broadcaster, queue_handler
from studyroom.realtime.events import RoomEvent, event_to_message
from studyroom.service.participant_service import ParticipantService
from studyroom.service.room_service import RoomService
from studyroom.session import resolve_user_id

router = APIRouter()
logger = logging.getLogger(__name__)


def _room_exists(room_id: uuid.UUID) -> bool:
    db = SessionLocal()
    try:
        return room_crud.get_by_id(db, room_id=room_id) is not None
    finally:
        db.close()


def _require_room(room_id: uuid.UUID) -> None:
    db = SessionLocal()
    try:
        RoomService(db).get_room(room_id)
    finally:
        db.close()


def _join(room_id: uuid.UUID, user_id: uuid.UUID) -> None:
    db = SessionLocal()
    try:
        ParticipantService(db).join(room_id, user_id)
    finally:
        db.close()


def _mark_disconnected(room_id: uuid.UUID, user_id: uuid.UUID) -> None:
    db = SessionLocal()
    try:
        ParticipantService(db).mark_disconnected(room_id, user_id)
    except Exception:
        logger.exception("Failed to drop presence of %s in room %s", user_id, room_id)
    finally:
        db.close()


async def _pump(websocket: WebSocket, queue: "asyncio.Queue[RoomEvent]") -> None:
    while True:
        event = await queue.get()
        await websocket.send_text(json.dumps(event_to_message(event)))


@router.websocket("/ws")
async def websocket_events(
    websocket: WebSocket,
    token: Optional[str] = None,
):
    """
    WebSocket for room events. Auth via query ?token=.

    Client actions: {"action": "subscribe" | "unsubscribe" | "join", "room_id": ...}.
    ``join`` makes the user present and subscribes; when the socket closes
    the user's presence in those rooms is dropped.
    """
    await websocket.accept()
    user_id = resolve_user_id(token)
    if not user_id:
        await websocket.close(code=4001)
        return

    async def send_error(code: str, message: str) -> None:
        try:
            await websocket.send_text(
                json.dumps({"event": "error", "code": code, "message": message})
            )
        except Exception:
            pass

    queue: "asyncio.Queue[RoomEvent]" = asyncio.Queue()
    handler = queue_handler(queue)
    subscriptions: Dict[uuid.UUID, Subscription] = {}
    present_in: Set[uuid.UUID] = set()
    sender = asyncio.create_task(_pump(websocket, queue))

    try:
        while True:
            data = await websocket.receive_text()
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                await send_error("INVALID_JSON", "Request body must be valid JSON.")
                continue
            if not isinstance(obj, dict):
                await send_error("INVALID_JSON", "Request body must be a JSON object.")
                continue
            action = obj.get("action")
            room_id_str = obj.get("room_id")
            if not room_id_str:
                await send_error("MISSING_ROOM_ID", "Missing required field: room_id.")
                continue
            try:
                room_id = uuid.UUID(str(room_id_str))
            except (ValueError, TypeError):
                await send_error("INVALID_ROOM_ID", "room_id must be a valid UUID.")
                continue

            if action in ("subscribe", "join"):
                if action == "join":
                    try:
                        _join(room_id, user_id)
                    except StudyRoomException as e:
                        await send_error(e.code, e.message)
                        continue
                    present_in.add(room_id)
                elif not _room_exists(room_id):
                    await send_error("NOT_FOUND", "Room not found.")
                    continue
                if room_id not in subscriptions:
                    subscriptions[room_id] = event_broadcaster.subscribe(room_id, handler)
                await websocket.send_text(
                    json.dumps({"event": "subscribed", "room_id": str(room_id)})
                )
            elif action == "unsubscribe":
                sub = subscriptions.pop(room_id, None)
                if sub:
                    sub.unsubscribe()
                await websocket.send_text(
                    json.dumps({"event": "unsubscribed", "room_id": str(room_id)})
                )
            else:
                await send_error(
                    "UNKNOWN_ACTION",
                    "Expected action: subscribe, unsubscribe, or join.",
                )
    except WebSocketDisconnect:
        logger.debug("WebSocket of %s disconnected", user_id)
    except Exception as e:
        logger.warning("WebSocket closed: %s", e)
    finally:
        for sub in subscriptions.values():
            sub.unsubscribe()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await sender
        for room_id in present_in:
            _mark_disconnected(room_id, user_id)


def _sse(message: dict) -> str:
    return f"event: {message['event']}\ndata: {json.dumps(message)}\n\n"


@router.get("/rooms/{room_id}/events")
async def room_event_stream(
    room_id: uuid.UUID,
    request: Request,
    user_id: uuid.UUID = Depends(current_user_id),
):
    """
    Server-Sent Events stream of the room's change notifications.

    The room check uses its own short-lived session; no database connection
    is held while the stream is open.
    """
    _require_room(room_id)
    queue: "asyncio.Queue[RoomEvent]" = asyncio.Queue()
    subscription = event_broadcaster.subscribe(room_id, queue_handler(queue))

    async def stream():
        try:
            yield _sse({"event": "subscribed", "room_id": str(room_id)})
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=settings.SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield _sse(event_to_message(event))
        finally:
            subscription.unsubscribe()

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
