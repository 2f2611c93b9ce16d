"""Background scheduler for recurring sync passes."""
import asyncio

import structlog

from app.core.config import settings
from app.models.integration import SyncTrigger
from app.services.sync_service import SyncService


logger = structlog.get_logger()


class SyncScheduler:
    """Runs `sync_all(scheduled)` on a fixed interval in a single task."""

    def __init__(self, sync_service: SyncService):
        self.sync_service = sync_service
        self.interval_minutes: float = settings.SYNC_INTERVAL_MINUTES
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_minutes: float | None = None) -> None:
        """Start ticking, replacing any schedule already running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

        if interval_minutes is not None:
            self.interval_minutes = interval_minutes
        self._task = asyncio.create_task(self._run(self.interval_minutes * 60))
        logger.info("Scheduled sync started", interval_minutes=self.interval_minutes)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduled sync stopped")

    async def _run(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                results = await self.sync_service.sync_all(SyncTrigger.SCHEDULED)
                logger.info("Scheduled sync tick finished", passes=len(results),
                            failed=sum(1 for result in results if not result.success))
            except Exception as e:
                logger.error("Scheduled sync tick failed", error=str(e))
