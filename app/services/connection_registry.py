"""Registry of live platform adapters keyed by connection id."""
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import httpx
import structlog

from app.core.config import settings
from app.models.database import EcommerceConnection
from app.models.ecommerce import ConnectionTestResult
from app.models.integration import AddConnectionResult, ConnectionCreate, OperationResult
from app.models.types import as_utc, utcnow
from app.repositories.interfaces.connection_repository import ConnectionRepository
from app.repositories.interfaces.mapping_repository import MappingRepository
from app.repositories.interfaces.sync_log_repository import SyncLogRepository
from app.services.ecommerce import create_adapter, supported_platforms
from app.services.ecommerce.base import AdapterError, PlatformAdapter, UnsupportedPlatformError
from app.services.ecommerce.security import credential_manager
from app.services.metrics_service import metrics_service


logger = structlog.get_logger()

AdapterFactory = Callable[..., PlatformAdapter]


class ConnectionRegistry:
    """Owns one adapter per active connection.

    Adapters are rebuilt from the stored record whenever they are missing, so
    nothing held here survives a restart or needs to.
    """

    def __init__(
        self,
        connection_repository: ConnectionRepository,
        mapping_repository: MappingRepository,
        sync_log_repository: SyncLogRepository,
        adapter_factory: AdapterFactory = create_adapter,
        http_client: httpx.AsyncClient | None = None,
        adapter_config: dict[str, Any] | None = None
    ):
        self.connections = connection_repository
        self.mappings = mapping_repository
        self.sync_logs = sync_log_repository
        self.adapter_factory = adapter_factory
        self.http_client = http_client
        self.adapter_config = adapter_config or {}
        self._adapters: dict[str, PlatformAdapter] = {}

    def _build_adapter(self, connection: EcommerceConnection) -> PlatformAdapter:
        adapter = self.adapter_factory(connection, client=self.http_client, config=self.adapter_config)
        self._adapters[connection.id] = adapter
        metrics_service.set_active_connections(len(self._adapters))
        return adapter

    async def load_connections(self) -> int:
        """Build adapters for every active connection. Returns how many were loaded."""
        loaded = 0
        for connection in await self.connections.list_active():
            try:
                self._build_adapter(connection)
                loaded += 1
            except UnsupportedPlatformError:
                logger.warning("Skipping connection with unknown platform",
                               connection_id=connection.id, platform=connection.platform)
        logger.info("E-commerce connections loaded", count=loaded)
        return loaded

    async def get_adapter(self, connection_id: str) -> PlatformAdapter | None:
        """Return the live adapter, rebuilding it from the record if needed."""
        adapter = self._adapters.get(connection_id)
        if adapter is not None:
            return adapter

        connection = await self.connections.get_by_id(connection_id)
        if connection is None or not connection.is_active:
            return None
        try:
            return self._build_adapter(connection)
        except UnsupportedPlatformError:
            logger.warning("Cannot build adapter for unknown platform",
                           connection_id=connection_id, platform=connection.platform)
            return None

    async def list_connections(self) -> list[EcommerceConnection]:
        return await self.connections.list_all(limit=1000)

    async def add_connection(self, data: ConnectionCreate) -> AddConnectionResult:
        """Persist a connection, build its adapter and test it."""
        if data.platform not in supported_platforms():
            return AddConnectionResult(success=False, message=f"Unsupported platform: {data.platform}")

        credentials = data.model_dump(exclude={"platform", "sync_interval_minutes"})
        missing = credential_manager.missing_fields(data.platform, credentials)
        if missing:
            return AddConnectionResult(
                success=False,
                message=f"Missing required fields: {', '.join(missing)}"
            )

        logger.info("Adding e-commerce connection", platform=data.platform,
                    **credential_manager.mask_sensitive_data(credentials))

        connection = await self.connections.create(EcommerceConnection(
            platform=data.platform,
            store_name=data.store_name,
            store_url=data.store_url,
            api_key=data.api_key,
            api_secret=data.api_secret,
            access_token=data.access_token,
            refresh_token=data.refresh_token,
            token_expires_at=data.token_expires_at,
            shop_id=data.shop_id,
            location_id=data.location_id,
            sync_interval_minutes=data.sync_interval_minutes
        ))

        adapter = self._build_adapter(connection)
        test_result = await adapter.test_connection()
        if test_result.success:
            await self._enrich_connection(connection, adapter)

        return AddConnectionResult(
            success=True,
            connection_id=connection.id,
            message=test_result.message,
            test_result=test_result.model_dump()
        )

    async def _enrich_connection(self, connection: EcommerceConnection, adapter: PlatformAdapter) -> None:
        """Store the shop name and any identifiers the adapter discovered."""
        values: dict[str, Any] = {}
        try:
            shop = await adapter.get_shop_info()
            if shop.name:
                values["store_name"] = shop.name
        except AdapterError as e:
            logger.warning("Could not fetch shop info", connection_id=connection.id, error=e.message)

        for field in ("shop_id", "location_id"):
            discovered = getattr(adapter, field, None)
            if discovered and discovered != getattr(connection, field):
                values[field] = discovered

        if values:
            await self.connections.update_fields(connection.id, values)

    async def test_connection(self, connection_id: str) -> ConnectionTestResult:
        adapter = await self.get_adapter(connection_id)
        if adapter is None:
            return ConnectionTestResult(success=False, message="Connection not found")
        return await adapter.test_connection()

    async def update_connection(self, connection_id: str, values: dict[str, Any]) -> OperationResult:
        """Update a connection and rebuild its adapter from the new record."""
        connection = await self.connections.update_fields(connection_id, values)
        if connection is None:
            return OperationResult(success=False, message="Connection not found")
        await self._drop_adapter(connection_id)
        return OperationResult(success=True, message="Connection updated", data={"connection_id": connection_id})

    async def remove_connection(self, connection_id: str) -> OperationResult:
        """Delete mappings, then logs, then the connection, then the adapter."""
        connection = await self.connections.get_by_id(connection_id)
        if connection is None:
            return OperationResult(success=False, message="Connection not found")

        removed_mappings = await self.mappings.delete_by_connection(connection_id)
        removed_logs = await self.sync_logs.delete_by_connection(connection_id)
        await self.connections.delete(connection_id)
        await self._drop_adapter(connection_id)

        logger.info("E-commerce connection removed", connection_id=connection_id,
                    mappings=removed_mappings, logs=removed_logs)
        return OperationResult(success=True, message="Connection removed")

    async def ensure_fresh_token(self, connection_id: str) -> bool:
        """Refresh OAuth tokens expiring within the buffer. Returns True if refreshed."""
        connection = await self.connections.get_by_id(connection_id)
        if connection is None or connection.token_expires_at is None or not connection.refresh_token:
            return False

        buffer = timedelta(minutes=settings.TOKEN_REFRESH_BUFFER_MINUTES)
        if as_utc(connection.token_expires_at) > utcnow() + buffer:
            return False

        adapter = await self.get_adapter(connection_id)
        if adapter is None:
            return False

        result = await adapter.refresh_token()
        if not result.refreshed or not result.access_token:
            return False

        await self.connections.update_tokens(
            connection_id,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=result.expires_at
        )
        logger.info("Access token refreshed", connection_id=connection_id, expires_at=result.expires_at)
        return True

    async def _drop_adapter(self, connection_id: str) -> None:
        adapter = self._adapters.pop(connection_id, None)
        if adapter is not None:
            await adapter.aclose()
        metrics_service.set_active_connections(len(self._adapters))

    async def close_all(self) -> None:
        for connection_id in list(self._adapters):
            await self._drop_adapter(connection_id)
