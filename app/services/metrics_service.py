"""Prometheus metrics for sync passes and platform calls."""
import time
from contextlib import asynccontextmanager

import structlog
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


logger = structlog.get_logger()


sync_passes_total = Counter('sync_passes_total', 'Sync passes by outcome', ['platform', 'trigger', 'outcome'])
sync_pass_duration_seconds = Histogram('sync_pass_duration_seconds', 'Duration of sync passes', ['platform'])
sync_items_total = Counter('sync_items_total', 'Mappings reconciled by action', ['platform', 'action'])
sync_conflicts_total = Counter('sync_conflicts_total', 'Conflicts detected during sync', ['platform'])
sync_busy_rejections_total = Counter('sync_busy_rejections_total', 'Sync requests rejected while another ran')
adapter_errors_total = Counter('adapter_errors_total', 'Failed platform API calls', ['platform', 'kind'])
webhook_events_total = Counter('webhook_events_total', 'Webhook events by outcome', ['platform', 'outcome'])
active_connections = Gauge('active_connections', 'Connections with a live adapter')


class MetricsService:
    """Thin facade over the module-level Prometheus collectors."""

    @asynccontextmanager
    async def measure_sync_pass(self, platform: str):
        """Context manager measuring the duration of one sync pass."""
        start_time = time.time()
        try:
            yield
        finally:
            sync_pass_duration_seconds.labels(platform=platform).observe(time.time() - start_time)

    def record_sync_pass(
        self,
        platform: str,
        trigger: str,
        success: bool,
        pushed: int,
        pulled: int,
        conflicts: int
    ) -> None:
        sync_passes_total.labels(
            platform=platform,
            trigger=trigger,
            outcome='completed' if success else 'failed'
        ).inc()
        if pushed:
            sync_items_total.labels(platform=platform, action='push').inc(pushed)
        if pulled:
            sync_items_total.labels(platform=platform, action='pull').inc(pulled)
        if conflicts:
            sync_conflicts_total.labels(platform=platform).inc(conflicts)

    def record_busy_rejection(self) -> None:
        sync_busy_rejections_total.inc()

    def record_adapter_error(self, platform: str, kind: str) -> None:
        adapter_errors_total.labels(platform=platform, kind=kind).inc()

    def record_webhook(self, platform: str, outcome: str) -> None:
        webhook_events_total.labels(platform=platform, outcome=outcome).inc()

    def set_active_connections(self, count: int) -> None:
        active_connections.set(count)

    def get_prometheus_metrics(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest()

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


metrics_service = MetricsService()
