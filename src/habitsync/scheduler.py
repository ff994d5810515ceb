"""Event-driven sync triggering with a single-slot queue."""

from __future__ import annotations

import asyncio
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .errors import AuthenticationError
from .logging_config import get_logger
from .services.sync import SyncEngine, SyncReport

logger = get_logger(__name__)


class SyncScheduler:
    """Feeds sync requests to a SyncEngine, at most one waiting at a time.

    Requests arriving while a pass runs, or while another request already
    waits, are dropped: the pass in flight ends with an authoritative refresh.
    """

    def __init__(self, engine: SyncEngine, *, interval: float | None = None):
        """Initialize the scheduler.

        Args:
            engine: Engine whose passes this scheduler triggers
            interval: Optional seconds between periodic sync requests
        """
        self.engine = engine
        self.interval = interval if interval and interval > 0 else None
        self._slot: asyncio.Queue[str] = asyncio.Queue(maxsize=1)
        self._worker: Optional[asyncio.Task] = None
        self._timer: Optional[AsyncIOScheduler] = None
        self._online: Optional[bool] = None
        self.last_report: Optional[SyncReport] = None
        self.last_error: Optional[BaseException] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def request_sync(self, reason: str = "manual") -> bool:
        """Ask for a pass; returns False when the request is dropped."""
        if self.engine.is_syncing:
            logger.debug("Sync in flight; request dropped", extra={"reason": reason})
            return False
        try:
            self._slot.put_nowait(reason)
        except asyncio.QueueFull:
            logger.debug("Sync already queued; request dropped", extra={"reason": reason})
            return False
        return True

    def notify_connectivity(self, online: bool) -> bool:
        """Record a connectivity change; regaining the network requests a pass."""
        was_online = self._online
        self._online = online
        if online and was_online is False:
            logger.info("Connectivity regained; requesting sync")
            return self.request_sync("reconnect")
        return False

    async def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        self._worker = asyncio.create_task(self._work(), name="habitsync-sync-worker")
        if self.interval:
            self._timer = AsyncIOScheduler()
            self._timer.add_job(
                func=self._tick,
                trigger=IntervalTrigger(seconds=self.interval),
                id="periodic_sync",
                name="Periodic Sync Request",
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )
            self._timer.start()
            logger.info(f"Periodic sync every {self.interval:g}s")

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.shutdown(wait=False)
            self._timer = None
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def drain(self) -> None:
        """Wait until no request is waiting and no pass is running."""
        await self._slot.join()

    async def _tick(self) -> None:
        # Must stay a coroutine job: the slot queue is not thread-safe.
        self.request_sync("interval")

    async def _work(self) -> None:
        while True:
            reason = await self._slot.get()
            try:
                logger.debug("Starting sync pass", extra={"reason": reason})
                report = await self.engine.run_pass()
            except AuthenticationError as exc:
                self.last_error = exc
                logger.error(f"Sync needs re-authentication: {exc}")
            except Exception as exc:
                self.last_error = exc
                logger.error(f"Sync pass crashed: {exc}", exc_info=True)
            else:
                if report is not None:
                    self.last_report = report
                    self.last_error = None
                    # Queued before task_done so drain() keeps waiting for it.
                    if report.followup_required:
                        self.request_sync("followup")
            finally:
                self._slot.task_done()


__all__ = ["SyncScheduler"]
