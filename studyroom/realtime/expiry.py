"""
Background sweep that expires overdue sprints.

Clients already report expiry when their countdown reaches zero; the sweep
covers rooms nobody is watching so the stored state never lags for long.
"""
import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from studyroom.core.config import settings
from studyroom.core.database import SessionLocal
from studyroom.realtime.broadcaster import EventBroadcaster, event_broadcaster
from studyroom.service.sprint_service import SprintService

logger = logging.getLogger(__name__)


class SessionExpiryWatcher:
    def __init__(
        self,
        interval: Optional[float] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        broadcaster: EventBroadcaster = event_broadcaster,
    ):
        self.interval = interval if interval is not None else settings.EXPIRY_SWEEP_SECONDS
        self.session_factory = session_factory
        self.broadcaster = broadcaster
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep_once(self) -> int:
        """One synchronous pass. Returns the number of sprints expired."""
        db = self.session_factory()
        try:
            return SprintService(db, self.broadcaster).sweep_expired()
        finally:
            db.close()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                ended = await loop.run_in_executor(None, self.sweep_once)
                if ended:
                    logger.info("Expiry sweep ended %d sprint(s)", ended)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Expiry sweep failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Sprint expiry watcher started (every %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sprint expiry watcher stopped")
