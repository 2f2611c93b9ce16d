"""Service factory for dependency injection."""
from dataclasses import dataclass

import httpx

from app.core.config import settings
from app.repositories.repository_factory import RepositoryFactory
from app.services.connection_registry import ConnectionRegistry
from app.services.oauth_service import OAuthService
from app.services.scheduler import SyncScheduler
from app.services.status_service import StatusBroadcaster
from app.services.sync_service import SyncService


@dataclass
class EcommerceServices:
    """The long-lived services of one application instance."""

    registry: ConnectionRegistry
    sync_service: SyncService
    oauth_service: OAuthService
    scheduler: SyncScheduler
    status: StatusBroadcaster
    http_client: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.registry.close_all()
        await self.http_client.aclose()


class ServiceFactory:
    """Factory for creating service instances with proper dependency injection."""

    def __init__(
        self,
        repository_factory: RepositoryFactory,
        http_client: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize service factory with repository factory.

        Args:
        ----
            repository_factory: Factory for creating repository instances
            http_client: Shared client for all adapters; created if omitted

        """
        self.repository_factory = repository_factory
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    def create_status_broadcaster(self) -> StatusBroadcaster:
        return StatusBroadcaster()

    def create_connection_registry(self) -> ConnectionRegistry:
        """Create connection registry with repository dependencies."""
        return ConnectionRegistry(
            connection_repository=self.repository_factory.create_connection_repository(),
            mapping_repository=self.repository_factory.create_mapping_repository(),
            sync_log_repository=self.repository_factory.create_sync_log_repository(),
            http_client=self.http_client
        )

    def create_sync_service(self, registry: ConnectionRegistry, status: StatusBroadcaster) -> SyncService:
        """Create sync service with repository dependencies."""
        return SyncService(
            registry=registry,
            connection_repository=self.repository_factory.create_connection_repository(),
            mapping_repository=self.repository_factory.create_mapping_repository(),
            product_repository=self.repository_factory.create_product_repository(),
            sync_log_repository=self.repository_factory.create_sync_log_repository(),
            status=status
        )

    def create_oauth_service(self) -> OAuthService:
        return OAuthService(http_client=self.http_client)

    def create_ecommerce_services(self) -> EcommerceServices:
        """Wire the registry, sync service, scheduler and OAuth service together."""
        status = self.create_status_broadcaster()
        registry = self.create_connection_registry()
        sync_service = self.create_sync_service(registry, status)
        return EcommerceServices(
            registry=registry,
            sync_service=sync_service,
            oauth_service=self.create_oauth_service(),
            scheduler=SyncScheduler(sync_service),
            status=status,
            http_client=self.http_client
        )
