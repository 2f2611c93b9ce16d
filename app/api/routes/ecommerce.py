"""API endpoints for storefront connections, mappings and inventory sync."""
import asyncio
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.dependencies import (
    get_oauth_service,
    get_registry,
    get_scheduler,
    get_status_broadcaster,
    get_sync_service,
)
from app.core.config import settings
from app.models.ecommerce import ConnectionTestResult, ProductPage
from app.models.integration import (
    AddConnectionResult,
    AutoMatchResult,
    ConnectionCreate,
    ConnectionUpdate,
    ConnectionView,
    LocalStockChange,
    MappingCreate,
    MappingView,
    OAuthCompleteRequest,
    OAuthStartRequest,
    OAuthStartResult,
    OAuthTokens,
    OperationResult,
    SyncLogView,
    SyncPassResult,
    SyncStatusView,
    UnmappedProductView,
    WebhookEvent,
    WebhookResult,
)
from app.services.connection_registry import ConnectionRegistry
from app.services.ecommerce import supported_platforms
from app.services.ecommerce.base import AdapterError, UnsupportedPlatformError
from app.services.oauth_service import OAuthService, OAuthStateError
from app.services.scheduler import SyncScheduler
from app.services.status_service import StatusBroadcaster
from app.services.sync_service import BUSY_MESSAGE, SyncService


logger = structlog.get_logger()

router = APIRouter()

NOT_FOUND_MESSAGES = ("Connection not found", "Mapping not found", "Product not found")


def _raise_for_result(result: OperationResult) -> None:
    """Translate a failed operation result into an HTTP error."""
    if result.success:
        return
    if result.message in NOT_FOUND_MESSAGES:
        raise HTTPException(status_code=404, detail=result.message)
    if "already mapped" in result.message:
        raise HTTPException(status_code=409, detail=result.message)
    raise HTTPException(status_code=400, detail=result.message)


# Sync calls still running after their request timed out
_detached: set[asyncio.Task] = set()


def _release_detached(task: asyncio.Task) -> None:
    _detached.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Detached sync call failed", error=str(task.exception()))


async def _bounded(awaitable: Any) -> Any:
    """Wait for a sync call up to the request timeout; a timed out call finishes in the background."""
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=settings.SYNC_REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        _detached.add(task)
        task.add_done_callback(_release_detached)
        logger.error("Sync request timed out", timeout=settings.SYNC_REQUEST_TIMEOUT_SECONDS)
        raise HTTPException(status_code=504, detail="Sync request timed out")


@router.get("/platforms", response_model=list[str])
async def get_supported_platforms() -> list[str]:
    """List the platforms a connection can be created for."""
    return supported_platforms()


# Connections


@router.get("/connections", response_model=list[ConnectionView])
async def list_connections(registry: ConnectionRegistry = Depends(get_registry)) -> list[ConnectionView]:
    return [ConnectionView.model_validate(connection) for connection in await registry.list_connections()]


@router.post("/connections", response_model=AddConnectionResult, status_code=201)
async def add_connection(
    request: ConnectionCreate,
    registry: ConnectionRegistry = Depends(get_registry)
) -> AddConnectionResult:
    """Create a connection and test it against the storefront."""
    result = await registry.add_connection(request)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return result


@router.get("/connections/{connection_id}", response_model=ConnectionView)
async def get_connection(
    connection_id: str,
    registry: ConnectionRegistry = Depends(get_registry)
) -> ConnectionView:
    connection = await registry.connections.get_by_id(connection_id)
    if connection is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    return ConnectionView.model_validate(connection)


@router.patch("/connections/{connection_id}", response_model=OperationResult)
async def update_connection(
    connection_id: str,
    request: ConnectionUpdate,
    registry: ConnectionRegistry = Depends(get_registry)
) -> OperationResult:
    values = request.model_dump(exclude_unset=True)
    if not values:
        raise HTTPException(status_code=400, detail="No fields to update")
    result = await registry.update_connection(connection_id, values)
    _raise_for_result(result)
    return result


@router.delete("/connections/{connection_id}", response_model=OperationResult)
async def remove_connection(
    connection_id: str,
    registry: ConnectionRegistry = Depends(get_registry)
) -> OperationResult:
    """Remove a connection together with its mappings and sync logs."""
    result = await registry.remove_connection(connection_id)
    _raise_for_result(result)
    return result


@router.post("/connections/{connection_id}/test", response_model=ConnectionTestResult)
async def test_connection(
    connection_id: str,
    registry: ConnectionRegistry = Depends(get_registry)
) -> ConnectionTestResult:
    result = await registry.test_connection(connection_id)
    if not result.success and result.message == "Connection not found":
        raise HTTPException(status_code=404, detail=result.message)
    return result


@router.get("/connections/{connection_id}/products", response_model=ProductPage)
async def browse_remote_products(
    connection_id: str,
    cursor: str | None = None,
    registry: ConnectionRegistry = Depends(get_registry)
) -> ProductPage:
    """Fetch one page of the storefront's products."""
    adapter = await registry.get_adapter(connection_id)
    if adapter is None:
        raise HTTPException(status_code=404, detail="Connection not found")
    try:
        return await adapter.fetch_products(cursor)
    except AdapterError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())


@router.post("/connections/{connection_id}/sync", response_model=SyncPassResult)
async def sync_connection(
    connection_id: str,
    sync_service: SyncService = Depends(get_sync_service)
) -> SyncPassResult:
    """Run a manual sync pass for one connection."""
    result = await _bounded(sync_service.sync_connection(connection_id))
    if result.busy:
        raise HTTPException(status_code=409, detail=result.message)
    if not result.success and result.message == "Connection not found":
        raise HTTPException(status_code=404, detail=result.message)
    return result


@router.post("/sync-all", response_model=list[SyncPassResult])
async def sync_all(sync_service: SyncService = Depends(get_sync_service)) -> list[SyncPassResult]:
    return await _bounded(sync_service.sync_all())


# Mappings


@router.get("/connections/{connection_id}/mappings", response_model=list[MappingView])
async def list_mappings(
    connection_id: str,
    sync_service: SyncService = Depends(get_sync_service)
) -> list[MappingView]:
    return await sync_service.get_mappings(connection_id)


@router.get("/connections/{connection_id}/unmapped", response_model=list[UnmappedProductView])
async def list_unmapped_products(
    connection_id: str,
    sync_service: SyncService = Depends(get_sync_service)
) -> list[UnmappedProductView]:
    return await sync_service.get_unmapped_products(connection_id)


@router.post("/mappings", response_model=OperationResult, status_code=201)
async def create_mapping(
    request: MappingCreate,
    sync_service: SyncService = Depends(get_sync_service)
) -> OperationResult:
    result = await sync_service.create_mapping(request)
    _raise_for_result(result)
    return result


@router.delete("/mappings/{mapping_id}", response_model=OperationResult)
async def delete_mapping(
    mapping_id: str,
    sync_service: SyncService = Depends(get_sync_service)
) -> OperationResult:
    result = await sync_service.delete_mapping(mapping_id)
    _raise_for_result(result)
    return result


@router.post("/connections/{connection_id}/auto-map", response_model=AutoMatchResult)
async def auto_map_products(
    connection_id: str,
    sync_service: SyncService = Depends(get_sync_service)
) -> AutoMatchResult:
    """Map unmapped products to storefront items with the same SKU."""
    result = await sync_service.auto_map_products(connection_id)
    if not result.success:
        raise HTTPException(status_code=404, detail=result.message)
    return result


@router.get("/connections/{connection_id}/logs", response_model=list[SyncLogView])
async def get_sync_logs(
    connection_id: str,
    limit: int = Query(50, ge=1, le=500),
    sync_service: SyncService = Depends(get_sync_service)
) -> list[SyncLogView]:
    return await sync_service.get_sync_logs(connection_id, limit)


# OAuth


@router.post("/oauth/start", response_model=OAuthStartResult)
async def start_oauth(
    request: OAuthStartRequest,
    oauth_service: OAuthService = Depends(get_oauth_service)
) -> OAuthStartResult:
    try:
        return oauth_service.start_authorization(request.platform, request.api_key)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/oauth/complete", response_model=OAuthTokens)
async def complete_oauth(
    request: OAuthCompleteRequest,
    oauth_service: OAuthService = Depends(get_oauth_service)
) -> OAuthTokens:
    """Exchange the authorization code for tokens."""
    try:
        return await oauth_service.complete_authorization(request.code, request.state, request.code_verifier)
    except OAuthStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AdapterError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())


# Inventory events


@router.post("/webhooks", response_model=WebhookResult)
async def receive_webhook(
    event: WebhookEvent,
    sync_service: SyncService = Depends(get_sync_service)
) -> WebhookResult:
    """Ingest an inventory event forwarded from a storefront webhook."""
    result = await _bounded(sync_service.process_webhook_event(event))
    if result.reason == "busy":
        raise HTTPException(status_code=409, detail=BUSY_MESSAGE)
    return result


@router.post("/stock-changes", response_model=OperationResult)
async def local_stock_changed(
    change: LocalStockChange,
    sync_service: SyncService = Depends(get_sync_service)
) -> OperationResult:
    return await sync_service.on_local_stock_change(change.product_id, change.quantity)


@router.delete("/products/{product_id}/mappings", response_model=OperationResult)
async def local_product_deleted(
    product_id: str,
    sync_service: SyncService = Depends(get_sync_service)
) -> OperationResult:
    removed = await sync_service.on_local_product_deleted(product_id)
    return OperationResult(message=f"Removed {removed} mapping(s)", data={"removed": removed})


@router.get("/status", response_model=SyncStatusView)
async def get_sync_status(
    status: StatusBroadcaster = Depends(get_status_broadcaster),
    sync_service: SyncService = Depends(get_sync_service),
    scheduler: SyncScheduler = Depends(get_scheduler)
) -> SyncStatusView:
    current = status.current
    return SyncStatusView(
        status=current.status,
        details=current.details,
        timestamp=current.timestamp,
        is_syncing=sync_service.is_syncing,
        scheduler_running=scheduler.running
    )
