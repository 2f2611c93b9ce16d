"""Sync status broadcasting to observers."""
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from app.core.config import settings
from app.models.integration import StatusEvent, SyncStatus
from app.services.ecommerce.base import AdapterError


logger = structlog.get_logger()

StatusListener = Callable[[StatusEvent], Awaitable[None] | None]


class StatusBroadcaster:
    """Fan-out of sync status events.

    Progress (`syncing`) events are throttled to one per
    `min_interval_seconds`. Terminal events (`idle`, `error`, `offline`) are
    always delivered.
    """

    def __init__(
        self,
        min_interval_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.min_interval_seconds = (
            settings.STATUS_BROADCAST_MIN_INTERVAL_SECONDS
            if min_interval_seconds is None else min_interval_seconds
        )
        self._clock = clock
        self._listeners: list[StatusListener] = []
        self._last_progress_at: float | None = None
        self.current = StatusEvent(status=SyncStatus.IDLE)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def publish(self, status: SyncStatus, details: dict[str, Any] | None = None) -> bool:
        """Deliver a status event. Returns False when a progress event was throttled."""
        if status == SyncStatus.SYNCING:
            now = self._clock()
            if self._last_progress_at is not None and now - self._last_progress_at < self.min_interval_seconds:
                return False
            self._last_progress_at = now
        else:
            self._last_progress_at = None

        event = StatusEvent(status=status, details=details)
        self.current = event

        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning("Status listener failed", status=status.value, error=str(e))

        return True

    async def syncing(self, details: dict[str, Any] | None = None) -> bool:
        return await self.publish(SyncStatus.SYNCING, details)

    async def idle(self, details: dict[str, Any] | None = None) -> bool:
        return await self.publish(SyncStatus.IDLE, details)

    async def report_failure(self, error: Exception, details: dict[str, Any] | None = None) -> bool:
        """Publish `offline` for transport failures, `error` for everything else."""
        payload = {"error": str(error), **(details or {})}
        if isinstance(error, AdapterError):
            payload["error"] = error.message
            if error.is_transport_error:
                return await self.publish(SyncStatus.OFFLINE, payload)
        return await self.publish(SyncStatus.ERROR, payload)
