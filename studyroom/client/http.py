"""
HTTP client for the study room API (httpx).

``HttpRoomGateway`` wraps the REST endpoints; ``HttpEventStream`` consumes the
room's Server-Sent Events stream, reconnecting with backoff.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from studyroom.core.exceptions import ServiceUnavailable, error_from_detail
from studyroom.realtime.broadcaster import EventHandler
from studyroom.realtime.events import RoomChanged, event_from_message, resync_hints
from studyroom.client.gateway import RoomGateway
from studyroom.schema.participant import ParticipantListResponse, ParticipantResponse
from studyroom.schema.room import RoomResponse
from studyroom.schema.sprint import CurrentSprintResponse, SprintEndResponse, SprintStartResponse

logger = logging.getLogger(__name__)


def _raise_for_error(r: httpx.Response) -> None:
    if r.status_code < 400:
        return
    detail: Any = r.text
    try:
        body = r.json()
        detail = body.get("detail", body) if isinstance(body, dict) else body
    except ValueError:
        pass
    logger.warning("API error %s: %s", r.status_code, str(detail)[:300])
    raise error_from_detail(r.status_code, detail)


class HttpRoomGateway(RoomGateway):
    def __init__(
        self,
        base_url: str,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        try:
            r = await self._client.request(method, self._url(path), headers=self._headers(), json=json_body)
        except httpx.RequestError as e:
            logger.exception("%s %s request error", method, path)
            raise ServiceUnavailable(message=str(e) or "Network error.", code="NETWORK_ERROR")
        _raise_for_error(r)
        return r.json() if r.content else None

    async def create_room(self, title: str, subject: str) -> RoomResponse:
        data = await self._request("POST", "rooms", {"title": title, "subject": subject})
        return RoomResponse.model_validate(data)

    async def get_room(self, room_id: uuid.UUID) -> RoomResponse:
        return RoomResponse.model_validate(await self._request("GET", f"rooms/{room_id}"))

    async def deactivate_room(self, room_id: uuid.UUID) -> RoomResponse:
        return RoomResponse.model_validate(await self._request("POST", f"rooms/{room_id}/deactivate"))

    async def list_participants(self, room_id: uuid.UUID) -> List[ParticipantResponse]:
        data = await self._request("GET", f"rooms/{room_id}/participants")
        return ParticipantListResponse.model_validate(data).items

    async def join(self, room_id: uuid.UUID) -> ParticipantResponse:
        return ParticipantResponse.model_validate(await self._request("POST", f"rooms/{room_id}/join"))

    async def leave(self, room_id: uuid.UUID) -> None:
        await self._request("POST", f"rooms/{room_id}/leave")

    async def update_task(self, room_id: uuid.UUID, text: str) -> ParticipantResponse:
        data = await self._request("PUT", f"rooms/{room_id}/task", {"current_task": text})
        return ParticipantResponse.model_validate(data)

    async def get_current_sprint(self, room_id: uuid.UUID) -> CurrentSprintResponse:
        return CurrentSprintResponse.model_validate(await self._request("GET", f"rooms/{room_id}/sprint"))

    async def start_sprint(self, room_id: uuid.UUID, duration_minutes: Optional[int]) -> SprintStartResponse:
        data = await self._request("POST", f"rooms/{room_id}/sprint", {"duration_minutes": duration_minutes})
        return SprintStartResponse.model_validate(data)

    async def end_sprint(self, room_id: uuid.UUID, session_id: uuid.UUID) -> SprintEndResponse:
        data = await self._request("POST", f"rooms/{room_id}/sprint/{session_id}/end")
        return SprintEndResponse.model_validate(data)

    async def expire_sprint(self, room_id: uuid.UUID, session_id: uuid.UUID) -> SprintEndResponse:
        data = await self._request("POST", f"rooms/{room_id}/sprint/{session_id}/expire")
        return SprintEndResponse.model_validate(data)

    def subscribe(self, room_id: uuid.UUID, handler: EventHandler) -> "HttpEventStream":
        stream = HttpEventStream(self._client, self._url(f"rooms/{room_id}/events"), self.token, room_id, handler)
        stream.start()
        return stream

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class HttpEventStream:
    """
    One room's SSE subscription. Runs as a task on the current loop.

    After every (re)connect the handler receives one hint of each kind, so a
    consumer that missed events while disconnected re-fetches everything.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        token: str,
        room_id: uuid.UUID,
        handler: EventHandler,
        initial_backoff: float = 0.5,
        max_backoff: float = 10.0,
    ):
        self.client = client
        self.url = url
        self.token = token
        self.room_id = room_id
        self.handler = handler
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.active = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self.active = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    def unsubscribe(self) -> None:
        self.active = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _deliver(self, event) -> None:
        try:
            self.handler(event)
        except Exception:
            logger.exception("Event handler for room %s failed", self.room_id)

    def _handle_data(self, data: str) -> None:
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed event data")
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring event data that is not a JSON object")
            return
        if message.get("event") == "subscribed":
            for hint in resync_hints(self.room_id):
                self._deliver(hint)
            return
        try:
            event = event_from_message(message)
        except ValueError as e:
            logger.debug("Ignoring event: %s", e)
            return
        self._deliver(event)

    async def _run(self) -> None:
        backoff = self.initial_backoff
        headers = {"Authorization": f"Bearer {self.token}", "Accept": "text/event-stream"}
        while self.active:
            try:
                async with self.client.stream("GET", self.url, headers=headers, timeout=None) as r:
                    if r.status_code == 404:
                        # Room is gone; let the consumer find out on re-fetch
                        self._deliver(RoomChanged(self.room_id))
                        self.active = False
                        return
                    if r.status_code in (401, 403):
                        logger.warning("Event stream for room %s rejected: %s", self.room_id, r.status_code)
                        self.active = False
                        return
                    if r.status_code >= 400:
                        raise httpx.HTTPStatusError(
                            f"Event stream failed: {r.status_code}", request=r.request, response=r
                        )
                    backoff = self.initial_backoff
                    data_lines: List[str] = []
                    async for line in r.aiter_lines():
                        if line.startswith("data:"):
                            data_lines.append(line[5:].lstrip())
                        elif line == "" and data_lines:
                            self._handle_data("\n".join(data_lines))
                            data_lines = []
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                logger.warning("Event stream for room %s dropped: %s", self.room_id, e)
            if not self.active:
                return
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self.max_backoff)
