"""
Test configuration and shared fixtures.
"""
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models.database import Base, EcommerceConnection, Product, ProductMapping
from app.models.ecommerce import (
    ConnectionTestResult,
    InventoryUpdate,
    InventoryUpdateError,
    InventoryUpdateResult,
    ProductPage,
    RemoteInventorySnapshot,
    RemoteProduct,
    ShopInfo,
    SkuLookupResult,
)
from app.models.integration import MappingStatus, PlatformKind
from app.repositories.repository_factory import SQLAlchemyRepositoryFactory
from app.services.connection_registry import ConnectionRegistry
from app.services.ecommerce.base import AdapterError, PlatformAdapter
from app.services.status_service import StatusBroadcaster
from app.services.sync_service import SyncService


def mock_client(handler) -> httpx.AsyncClient:
    """HTTP client whose requests are answered by `handler`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeRemote:
    """In-memory storefront shared by every FakeAdapter built from it."""

    def __init__(self):
        self.quantities: dict[str, int] = {}
        self.untracked: set[str] = set()
        self.catalog: dict[str, RemoteProduct] = {}
        self.failing_writes: set[str] = set()
        self.offline = False
        self.fetches: list[list[str]] = []
        self.writes: list[tuple[str, int]] = []

    def adapter_factory(self, connection, client=None, config=None) -> "FakeAdapter":
        return FakeAdapter(connection, self, client=client, config=config)


class FakeAdapter(PlatformAdapter):
    """Adapter over FakeRemote with Shopify-style inventory item handles."""

    platform = PlatformKind.SHOPIFY
    supports_batch_inventory = True
    inventory_batch_size = 2
    webhook_identity_field = "inventory_item_id"

    def __init__(self, connection: Any, remote: FakeRemote, client=None, config=None):
        super().__init__(connection, client, config)
        self.remote = remote

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def _check_online(self) -> None:
        if self.remote.offline:
            raise AdapterError("Request failed: connection refused", self.platform.value, status=0)

    async def test_connection(self) -> ConnectionTestResult:
        try:
            self._check_online()
        except AdapterError as e:
            return ConnectionTestResult(success=False, message=e.message, details=e.to_dict())
        return ConnectionTestResult(success=True, message="Connected to Fake Shop")

    async def get_shop_info(self) -> ShopInfo:
        return ShopInfo(name="Fake Shop", domain="fake.example.com")

    async def fetch_products(self, cursor: str | None = None) -> ProductPage:
        return ProductPage(products=list(self.remote.catalog.values()))

    async def fetch_inventory(self, handles: list[str]) -> list[RemoteInventorySnapshot]:
        self._check_online()
        handles = self._truncate(handles)
        self.remote.fetches.append(list(handles))
        return [
            RemoteInventorySnapshot(
                handle=handle,
                quantity=self.remote.quantities[handle],
                manage_stock=handle not in self.remote.untracked
            )
            for handle in handles
            if handle in self.remote.quantities
        ]

    async def update_inventory(self, updates: list[InventoryUpdate]) -> InventoryUpdateResult:
        self._check_online()
        result = InventoryUpdateResult()
        for update in updates:
            if update.handle in self.remote.failing_writes:
                result.errors.append(InventoryUpdateError(handle=update.handle, error="Write rejected", status=422))
                continue
            self.remote.quantities[update.handle] = update.quantity
            self.remote.writes.append((update.handle, update.quantity))
            result.updated += 1
            result.updated_handles.append(update.handle)
        result.success = not result.errors
        return result

    async def find_product_by_sku(self, sku: str) -> SkuLookupResult:
        product = self.remote.catalog.get(sku)
        return SkuLookupResult(found=product is not None, product=product)

    def handle_for(self, remote_product_id, remote_variant_id, remote_inventory_item_id) -> str | None:
        return remote_inventory_item_id or None


@pytest.fixture
async def session_factory():
    """Async session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def repository_factory(session_factory):
    return SQLAlchemyRepositoryFactory(session_factory)


@pytest.fixture
def connection_repository(repository_factory):
    return repository_factory.create_connection_repository()


@pytest.fixture
def mapping_repository(repository_factory):
    return repository_factory.create_mapping_repository()


@pytest.fixture
def product_repository(repository_factory):
    return repository_factory.create_product_repository()


@pytest.fixture
def sync_log_repository(repository_factory):
    return repository_factory.create_sync_log_repository()


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
async def http_client():
    """Client that fails every request; fake adapters never use it."""
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no network in tests", request=request)

    client = mock_client(handler)
    yield client
    await client.aclose()


@pytest.fixture
def status():
    return StatusBroadcaster(min_interval_seconds=0)


@pytest.fixture
def registry(repository_factory, fake_remote, http_client):
    return ConnectionRegistry(
        connection_repository=repository_factory.create_connection_repository(),
        mapping_repository=repository_factory.create_mapping_repository(),
        sync_log_repository=repository_factory.create_sync_log_repository(),
        adapter_factory=fake_remote.adapter_factory,
        http_client=http_client
    )


@pytest.fixture
def sync_service(registry, repository_factory, status):
    return SyncService(
        registry=registry,
        connection_repository=repository_factory.create_connection_repository(),
        mapping_repository=repository_factory.create_mapping_repository(),
        product_repository=repository_factory.create_product_repository(),
        sync_log_repository=repository_factory.create_sync_log_repository(),
        status=status,
        conflict_policy="local_wins",
        max_concurrency=2
    )


@pytest.fixture
async def connection(connection_repository):
    """Active Shopify connection record."""
    return await connection_repository.create(EcommerceConnection(
        platform=PlatformKind.SHOPIFY.value,
        store_name="Test Shop",
        store_url="https://test-shop.myshopify.com",
        access_token="shpat_test",
        location_id="1"
    ))


@pytest.fixture
def make_product(product_repository):
    async def factory(name: str = "Widget", sku: str | None = "W-1", quantity: int = 10) -> Product:
        return await product_repository.create(Product(name=name, sku=sku, stock_quantity=quantity))
    return factory


@pytest.fixture
def make_mapping(mapping_repository):
    async def factory(
        product: Product,
        connection: EcommerceConnection,
        inventory_item_id: str,
        last_local: int | None = None,
        last_remote: int | None = None,
        status: MappingStatus = MappingStatus.SYNCED
    ) -> ProductMapping:
        return await mapping_repository.create(ProductMapping(
            product_id=product.id,
            connection_id=connection.id,
            remote_product_id=f"p-{inventory_item_id}",
            remote_variant_id=f"v-{inventory_item_id}",
            remote_inventory_item_id=inventory_item_id,
            remote_sku=product.sku,
            sync_status=status.value,
            last_local_quantity=last_local,
            last_remote_quantity=last_remote
        ))
    return factory
