"""Inventory reconciliation between the local store and connected storefronts."""
import asyncio
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.models.database import Product, ProductMapping, SyncLogEntry
from app.models.ecommerce import InventoryUpdate, RemoteInventorySnapshot
from app.models.integration import (
    AutoMatchResult,
    ConflictPolicy,
    MappingCreate,
    MappingStatus,
    MappingView,
    OperationResult,
    PlatformKind,
    SyncConflict,
    SyncItemError,
    SyncKind,
    SyncLogStatus,
    SyncLogView,
    SyncPassResult,
    SyncPassState,
    SyncTrigger,
    UnmappedProductView,
    WebhookEvent,
    WebhookResult,
)
from app.models.types import as_utc, utcnow
from app.repositories.interfaces.connection_repository import ConnectionRepository
from app.repositories.interfaces.mapping_repository import MappingRepository
from app.repositories.interfaces.product_repository import ProductRepository
from app.repositories.interfaces.sync_log_repository import SyncLogRepository
from app.services.connection_registry import ConnectionRegistry
from app.services.ecommerce import ADAPTERS
from app.services.ecommerce.base import AdapterError, PlatformAdapter
from app.services.metrics_service import metrics_service
from app.services.status_service import StatusBroadcaster


logger = structlog.get_logger()

PULL_REASON = "platform sync"
BUSY_MESSAGE = "Sync already in progress"
CANCELLED_MESSAGE = "Sync pass cancelled"

# Webhook identity field -> mapping column holding the same identifier
IDENTITY_COLUMNS = {
    "inventory_item_id": "remote_inventory_item_id",
    "product_id": "remote_product_id",
    "listing_id": "remote_product_id",
}


class SyncService:
    """Runs sync passes, webhook ingestion, push-on-change and mapping upkeep.

    Only one pass runs at a time across all connections; a pass requested
    while another is active is rejected with a busy result. Remote reads
    inside a pass are concurrent, mapping updates are applied one at a time.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        connection_repository: ConnectionRepository,
        mapping_repository: MappingRepository,
        product_repository: ProductRepository,
        sync_log_repository: SyncLogRepository,
        status: StatusBroadcaster,
        conflict_policy: ConflictPolicy | str | None = None,
        max_concurrency: int | None = None
    ):
        self.registry = registry
        self.connections = connection_repository
        self.mappings = mapping_repository
        self.products = product_repository
        self.sync_logs = sync_log_repository
        self.status = status
        self.conflict_policy = ConflictPolicy(conflict_policy or settings.SYNC_CONFLICT_POLICY)
        self.max_concurrency = max_concurrency or settings.SYNC_MAX_CONCURRENCY
        self.state = SyncPassState.IDLE
        self._pass_lock = asyncio.Lock()
        self._mutation_lock = asyncio.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._pass_lock.locked()

    # Sync passes

    async def sync_connection(
        self,
        connection_id: str,
        trigger: SyncTrigger = SyncTrigger.MANUAL
    ) -> SyncPassResult:
        """Run one full reconciliation pass for a connection."""
        if self._pass_lock.locked():
            metrics_service.record_busy_rejection()
            logger.info("Sync rejected, another pass is running", connection_id=connection_id)
            return SyncPassResult(connection_id=connection_id, success=False, busy=True, message=BUSY_MESSAGE)

        async with self._pass_lock:
            try:
                return await self._run_pass(connection_id, trigger)
            finally:
                self.state = SyncPassState.IDLE

    async def sync_all(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> list[SyncPassResult]:
        """Sync every enabled connection; scheduled runs skip connections not yet due."""
        results = []
        now = utcnow()
        for connection in await self.connections.list_sync_enabled():
            if trigger == SyncTrigger.SCHEDULED and connection.last_sync_at is not None:
                due_at = as_utc(connection.last_sync_at) + timedelta(minutes=connection.sync_interval_minutes)
                if due_at > now:
                    logger.debug("Connection not due for scheduled sync", connection_id=connection.id)
                    continue
            results.append(await self.sync_connection(connection.id, trigger))
        return results

    async def _run_pass(self, connection_id: str, trigger: SyncTrigger) -> SyncPassResult:
        connection = await self.connections.get_by_id(connection_id)
        adapter = await self.registry.get_adapter(connection_id) if connection else None
        if connection is None or adapter is None:
            return SyncPassResult(connection_id=connection_id, success=False, message="Connection not found")

        log = await self.sync_logs.create(SyncLogEntry(
            connection_id=connection_id,
            sync_type=SyncKind.FULL.value,
            trigger_type=trigger.value,
            status=SyncLogStatus.STARTED.value
        ))
        result = SyncPassResult(connection_id=connection_id, log_id=log.id)
        pass_logger = logger.bind(connection_id=connection_id, platform=connection.platform, trigger=trigger.value)
        pass_logger.info("Sync pass started")

        try:
            async with metrics_service.measure_sync_pass(connection.platform):
                await self.registry.ensure_fresh_token(connection_id)

                self.state = SyncPassState.FETCHING_REMOTE
                await self.status.syncing({"connection_id": connection_id, "phase": self.state.value})
                rows = await self.mappings.list_with_products(connection_id)
                snapshots = await self._fetch_remote(adapter, [mapping for mapping, _ in rows])

                self.state = SyncPassState.RECONCILING
                await self._reconcile(adapter, rows, snapshots, result)
        except asyncio.CancelledError:
            self.state = SyncPassState.FAILED
            pass_logger.warning("Sync pass cancelled", pushed=result.pushed, pulled=result.pulled)
            result.success = False
            await self._finish_log(log.id, SyncLogStatus.FAILED, result, error_message=CANCELLED_MESSAGE)
            await self.connections.update_sync_state(connection_id, "error", log.started_at)
            raise
        except Exception as e:
            self.state = SyncPassState.FAILED
            message = e.message if isinstance(e, AdapterError) else str(e) or type(e).__name__
            result.success = False
            result.message = message
            result.errors.append(SyncItemError(phase="sync", error=message))
            pass_logger.error("Sync pass failed", error=message, pushed=result.pushed, pulled=result.pulled)

            await self._finish_log(log.id, SyncLogStatus.FAILED, result, error_message=message)
            await self.connections.update_sync_state(connection_id, "error", log.started_at)
            metrics_service.record_sync_pass(connection.platform, trigger.value, False,
                                             result.pushed, result.pulled, len(result.conflicts))
            await self.status.report_failure(e, {"connection_id": connection_id})
            return result

        self.state = SyncPassState.COMPLETED
        result.success = not result.errors
        result.message = (
            f"Pushed {result.pushed}, pulled {result.pulled}, "
            f"{len(result.conflicts)} conflict(s), {len(result.errors)} error(s)"
        )
        await self._finish_log(log.id, SyncLogStatus.COMPLETED, result)
        await self.connections.update_sync_state(connection_id, "success", log.started_at)
        metrics_service.record_sync_pass(connection.platform, trigger.value, True,
                                         result.pushed, result.pulled, len(result.conflicts))
        pass_logger.info("Sync pass completed", pushed=result.pushed, pulled=result.pulled,
                         skipped=result.skipped, conflicts=len(result.conflicts), errors=len(result.errors))
        await self.status.idle({
            "connection_id": connection_id,
            "pushed": result.pushed,
            "pulled": result.pulled,
            "conflicts": len(result.conflicts),
        })
        return result

    async def _finish_log(
        self,
        log_id: str,
        status: SyncLogStatus,
        result: SyncPassResult,
        error_message: str | None = None
    ) -> None:
        await self.sync_logs.update_fields(log_id, {
            "status": status.value,
            "products_pushed": result.pushed,
            "products_pulled": result.pulled,
            "conflicts_count": len(result.conflicts),
            "errors_count": len(result.errors),
            "details": result.model_dump(mode="json", include={"skipped", "conflicts", "errors"}),
            "error_message": error_message,
            "completed_at": utcnow(),
        })

    async def _fetch_remote(
        self,
        adapter: PlatformAdapter,
        mappings: list[ProductMapping]
    ) -> dict[str, RemoteInventorySnapshot]:
        """Read remote quantities for all mapped handles, bounded by the concurrency limit."""
        handles: list[str] = []
        for mapping in mappings:
            handle = self._handle(adapter, mapping)
            if handle and handle not in handles:
                handles.append(handle)
        if not handles:
            return {}

        if adapter.supports_batch_inventory:
            size = adapter.inventory_batch_size
            batches = [handles[start:start + size] for start in range(0, len(handles), size)]
        else:
            batches = [[handle] for handle in handles]

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch(batch: list[str]) -> list[RemoteInventorySnapshot]:
            async with semaphore:
                return await adapter.fetch_inventory(batch)

        fetched = await asyncio.gather(*(fetch(batch) for batch in batches))
        return {snapshot.handle: snapshot for batch in fetched for snapshot in batch}

    @staticmethod
    def _handle(adapter: PlatformAdapter, mapping: ProductMapping) -> str | None:
        return adapter.handle_for(
            mapping.remote_product_id,
            mapping.remote_variant_id,
            mapping.remote_inventory_item_id
        )

    async def _reconcile(
        self,
        adapter: PlatformAdapter,
        rows: list[tuple[ProductMapping, Product]],
        snapshots: dict[str, RemoteInventorySnapshot],
        result: SyncPassResult
    ) -> None:
        # Re-read local stock after the remote fetch so sales made meanwhile are not lost
        local_levels = await self.products.get_stock_levels([product.id for _, product in rows])

        for index, (mapping, product) in enumerate(rows, start=1):
            await self.status.syncing({"connection_id": mapping.connection_id, "processed": index, "total": len(rows)})

            handle = self._handle(adapter, mapping)
            snapshot = snapshots.get(handle) if handle else None
            if snapshot is None or not snapshot.manage_stock:
                result.skipped += 1
                continue

            local = local_levels.get(product.id, product.stock_quantity)
            remote = snapshot.quantity
            async with self._mutation_lock:
                await self._reconcile_mapping(adapter, mapping, handle, snapshot, local, remote, result)

    async def _reconcile_mapping(
        self,
        adapter: PlatformAdapter,
        mapping: ProductMapping,
        handle: str,
        snapshot: RemoteInventorySnapshot,
        local: int,
        remote: int,
        result: SyncPassResult
    ) -> None:
        if local == remote:
            if (
                mapping.last_local_quantity != local
                or mapping.last_remote_quantity != remote
                or mapping.sync_status != MappingStatus.SYNCED.value
            ):
                await self._record_baseline(mapping.id, local)
            return

        local_changed = mapping.last_local_quantity is not None and local != mapping.last_local_quantity
        remote_changed = mapping.last_remote_quantity is not None and remote != mapping.last_remote_quantity

        if local_changed and remote_changed:
            result.conflicts.append(SyncConflict(
                mapping_id=mapping.id,
                product_id=mapping.product_id,
                local_quantity=local,
                remote_quantity=remote,
                resolution=self.conflict_policy.value
            ))
            if self.conflict_policy == ConflictPolicy.MANUAL_REVIEW:
                logger.warning("Conflict held for review", mapping_id=mapping.id, local=local, remote=remote)
                await self.mappings.update_fields(mapping.id, {"sync_status": MappingStatus.CONFLICT.value})
                return
            await self._push(adapter, mapping, handle, local, snapshot.manage_stock, result)
        elif remote_changed:
            await self._pull(mapping, remote, result)
        else:
            # Local drift, or no baseline on either side yet
            await self._push(adapter, mapping, handle, local, snapshot.manage_stock, result)

    async def _record_baseline(self, mapping_id: str, quantity: int) -> None:
        await self.mappings.update_fields(mapping_id, {
            "last_local_quantity": quantity,
            "last_remote_quantity": quantity,
            "last_synced_at": utcnow(),
            "sync_status": MappingStatus.SYNCED.value,
        })

    async def _push(
        self,
        adapter: PlatformAdapter,
        mapping: ProductMapping,
        handle: str,
        quantity: int,
        manage_stock: bool | None,
        result: SyncPassResult
    ) -> None:
        outcome = await adapter.update_inventory([InventoryUpdate(
            handle=handle,
            remote_product_id=mapping.remote_product_id,
            remote_variant_id=mapping.remote_variant_id,
            quantity=quantity,
            manage_stock=manage_stock
        )])

        if outcome.failed(handle) or handle not in outcome.updated_handles:
            error = next((item.error for item in outcome.errors if item.handle == handle), "Remote update failed")
            logger.warning("Push failed", mapping_id=mapping.id, handle=handle, error=error)
            result.errors.append(SyncItemError(
                phase="push",
                error=error,
                mapping_id=mapping.id,
                product_id=mapping.product_id
            ))
            await self.mappings.update_fields(mapping.id, {"sync_status": MappingStatus.PENDING_PUSH.value})
            return

        await self._record_baseline(mapping.id, quantity)
        result.pushed += 1

    async def _pull(self, mapping: ProductMapping, quantity: int, result: SyncPassResult) -> None:
        await self.products.set_stock(mapping.product_id, quantity, reason=PULL_REASON)
        await self._record_baseline(mapping.id, quantity)
        result.pulled += 1

    # Incremental paths

    async def on_local_stock_change(self, product_id: str, new_quantity: int) -> OperationResult:
        """Push a local quantity change to every synced mapping of the product."""
        pushed = 0
        errors: list[dict[str, Any]] = []

        for mapping in await self.mappings.list_by_product(product_id):
            if mapping.sync_status != MappingStatus.SYNCED.value:
                continue
            connection = await self.connections.get_by_id(mapping.connection_id)
            if connection is None or not connection.is_active or not connection.sync_enabled:
                continue
            adapter = await self.registry.get_adapter(mapping.connection_id)
            if adapter is None:
                continue
            handle = self._handle(adapter, mapping)
            if not handle:
                continue

            async with self._mutation_lock:
                try:
                    outcome = await adapter.update_inventory([InventoryUpdate(
                        handle=handle,
                        remote_product_id=mapping.remote_product_id,
                        remote_variant_id=mapping.remote_variant_id,
                        quantity=new_quantity
                    )])
                except Exception as e:
                    logger.error("Stock push failed", product_id=product_id,
                                 connection_id=mapping.connection_id, error=str(e))
                    errors.append({"connection_id": mapping.connection_id, **PlatformAdapter.parse_error(e)})
                    continue

                if outcome.failed(handle) or handle not in outcome.updated_handles:
                    errors.extend(
                        {"connection_id": mapping.connection_id, "message": item.error, "status": item.status}
                        for item in outcome.errors
                    )
                    continue

                await self._record_baseline(mapping.id, new_quantity)
                pushed += 1
                logger.info("Pushed stock update", product_id=product_id,
                            connection_id=mapping.connection_id, platform=connection.platform)

        return OperationResult(
            success=not errors,
            message=f"Pushed to {pushed} connection(s)",
            data={"pushed": pushed, "errors": errors}
        )

    async def process_webhook_event(self, event: WebhookEvent) -> WebhookResult:
        """Apply an inventory webhook, or run a full pass when it carries no quantity."""
        logger.info("Processing webhook event", platform=event.platform, type=event.type)
        try:
            platform = PlatformKind(event.platform)
        except ValueError:
            metrics_service.record_webhook(event.platform, "unsupported")
            return WebhookResult(processed=False, reason="unsupported_platform")

        identity_field = ADAPTERS[platform].webhook_identity_field
        identity = getattr(event, identity_field)
        matches: list[ProductMapping] = []
        if identity:
            matches = await self.mappings.list_by_remote(
                platform.value, IDENTITY_COLUMNS[identity_field], str(identity), event.variant_id
            )
        if not matches:
            logger.info("No mapping found for webhook event", platform=platform.value, identity=identity)
            metrics_service.record_webhook(platform.value, "no_mapping")
            return WebhookResult(processed=False, reason="no_mapping")

        mapping = matches[0]
        new_quantity = event.new_quantity
        if new_quantity is not None and len(matches) > 1:
            # The quantity belongs to one variant but the event does not say which
            logger.warning("Webhook matches several mappings, running a full pass",
                           platform=platform.value, identity=identity, matches=len(matches))
            new_quantity = None
        if new_quantity is None:
            sync_result = await self.sync_connection(mapping.connection_id, SyncTrigger.WEBHOOK)
            if sync_result.busy:
                logger.warning("Webhook arrived during another pass", connection_id=mapping.connection_id)
                metrics_service.record_webhook(platform.value, "busy")
                return WebhookResult(processed=False, reason="busy", sync_result=sync_result)
            metrics_service.record_webhook(platform.value, "triggered_sync")
            return WebhookResult(processed=True, action="triggered_sync", sync_result=sync_result)

        try:
            async with self._mutation_lock:
                await self.products.set_stock(mapping.product_id, new_quantity, reason=PULL_REASON)
                await self._record_baseline(mapping.id, new_quantity)
            now = utcnow()
            await self.sync_logs.create(SyncLogEntry(
                connection_id=mapping.connection_id,
                sync_type=SyncKind.INCREMENTAL.value,
                trigger_type=SyncTrigger.WEBHOOK.value,
                status=SyncLogStatus.COMPLETED.value,
                products_pulled=1,
                details=event.model_dump(mode="json", exclude_none=True),
                started_at=now,
                completed_at=now
            ))
        except Exception as e:
            logger.error("Webhook processing failed", mapping_id=mapping.id, error=str(e))
            metrics_service.record_webhook(platform.value, "error")
            return WebhookResult(processed=False, error=str(e))

        metrics_service.record_webhook(platform.value, "applied")
        logger.info("Webhook applied", product_id=mapping.product_id, quantity=new_quantity)
        await self.status.idle({"message": f"Received inventory update from {platform.value}"})
        return WebhookResult(processed=True, new_quantity=new_quantity)

    # Mappings

    async def get_mappings(self, connection_id: str) -> list[MappingView]:
        views = []
        for mapping, product in await self.mappings.list_with_products(connection_id):
            view = MappingView.model_validate(mapping)
            views.append(view.model_copy(update={
                "product_name": product.name,
                "local_sku": product.sku,
                "local_quantity": product.stock_quantity,
            }))
        return views

    async def create_mapping(self, data: MappingCreate) -> OperationResult:
        """Map a product manually; the first pass pushes its local quantity."""
        if await self.connections.get_by_id(data.connection_id) is None:
            return OperationResult(success=False, message="Connection not found")
        if await self.products.get_by_id(data.product_id) is None:
            return OperationResult(success=False, message="Product not found")
        if await self.mappings.get_by_product_and_connection(data.product_id, data.connection_id):
            return OperationResult(success=False, message="Product is already mapped for this connection")

        try:
            mapping = await self.mappings.create(ProductMapping(
                product_id=data.product_id,
                connection_id=data.connection_id,
                remote_product_id=data.remote_product_id,
                remote_variant_id=data.remote_variant_id,
                remote_sku=data.remote_sku,
                remote_inventory_item_id=data.remote_inventory_item_id,
                sync_status=MappingStatus.PENDING_PUSH.value
            ))
        except IntegrityError:
            return OperationResult(success=False, message="Product is already mapped for this connection")

        return OperationResult(success=True, message="Mapping created", data={"mapping_id": mapping.id})

    async def delete_mapping(self, mapping_id: str) -> OperationResult:
        if not await self.mappings.delete(mapping_id):
            return OperationResult(success=False, message="Mapping not found")
        return OperationResult(success=True, message="Mapping deleted")

    async def get_unmapped_products(self, connection_id: str) -> list[UnmappedProductView]:
        return [UnmappedProductView.model_validate(product)
                for product in await self.products.list_unmapped(connection_id)]

    async def on_local_product_deleted(self, product_id: str) -> int:
        removed = await self.mappings.delete_by_product(product_id)
        if removed:
            logger.info("Removed mappings of deleted product", product_id=product_id, count=removed)
        return removed

    async def get_sync_logs(self, connection_id: str, limit: int = 50) -> list[SyncLogView]:
        return [SyncLogView.model_validate(entry)
                for entry in await self.sync_logs.list_by_connection(connection_id, limit)]

    async def auto_map_products(self, connection_id: str) -> AutoMatchResult:
        """Map unmapped local products to remote items with the same SKU."""
        adapter = await self.registry.get_adapter(connection_id)
        if adapter is None:
            return AutoMatchResult(success=False, message="Connection not found")

        result = AutoMatchResult()
        already_mapped = await self.mappings.mapped_product_ids(connection_id)

        for product in await self.products.list_with_sku():
            if product.id in already_mapped:
                result.skipped += 1
                continue

            try:
                lookup = await adapter.find_product_by_sku(product.sku)
                if not lookup.found or lookup.product is None:
                    result.not_found += 1
                    continue

                remote = lookup.product
                # Untracked items stay out of push-on-change until a pass sees them tracked
                status = MappingStatus.SYNCED if remote.manage_stock else MappingStatus.PENDING_PUSH
                await self.mappings.create(ProductMapping(
                    product_id=product.id,
                    connection_id=connection_id,
                    remote_product_id=remote.remote_product_id,
                    remote_variant_id=remote.remote_variant_id,
                    remote_sku=remote.remote_sku,
                    remote_inventory_item_id=remote.remote_inventory_item_id,
                    sync_status=status.value,
                    last_remote_quantity=remote.quantity if remote.manage_stock else None
                ))
                result.mapped += 1
            except Exception as e:
                result.errors.append({"sku": product.sku, "error": PlatformAdapter.parse_error(e)["message"]})

        result.message = f"Mapped {result.mapped}, skipped {result.skipped}, not found {result.not_found}"
        logger.info("Auto-map finished", connection_id=connection_id, mapped=result.mapped,
                    skipped=result.skipped, not_found=result.not_found, errors=len(result.errors))
        return result
