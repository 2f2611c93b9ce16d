"""Base classes for e-commerce platform inventory adapters."""
import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from app.core.config import settings
from app.models.ecommerce import (
    ConnectionTestResult,
    InventoryUpdate,
    InventoryUpdateResult,
    ProductPage,
    RemoteInventorySnapshot,
    ShopInfo,
    SkuLookupResult,
    TokenRefreshResult,
)
from app.models.integration import PlatformKind
from app.services.metrics_service import metrics_service

logger = structlog.get_logger()


class AdapterError(Exception):
    """Normalized failure of a remote platform call."""

    def __init__(
        self,
        message: str,
        platform: str,
        status: int | None = None,
        details: Any = None
    ):
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.status = status
        self.details = details

    @property
    def is_transport_error(self) -> bool:
        """True when the remote side could not be reached at all."""
        return self.status == 0

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "status": self.status, "details": self.details}


class UnsupportedPlatformError(ValueError):
    """Raised when no adapter exists for a platform kind."""


class APIResponse(BaseModel):
    """Successful HTTP response from a platform API."""

    data: Any = Field(None, description="Decoded JSON body")
    status_code: int = Field(..., description="HTTP status code")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers (lower-cased)")
    links: dict[str, dict[str, str]] = Field(default_factory=dict, description="Parsed Link header")


class PlatformAdapter(ABC):
    """Capability contract every storefront integration satisfies.

    An adapter is a cheap projection of one connection record. It holds no
    authoritative state: anything it caches (location id, rate-limit budget)
    can be rebuilt from the record and the remote API.
    """

    platform: PlatformKind
    supports_batch_inventory: bool = False
    inventory_batch_size: int = 1
    write_cooldown_seconds: float = 0.0
    low_quota_threshold: int = 5
    low_quota_pause_seconds: float = 0.5
    webhook_identity_field: str = "product_id"

    def __init__(
        self,
        connection: Any,
        client: httpx.AsyncClient | None = None,
        config: dict[str, Any] | None = None
    ):
        self.connection_id = getattr(connection, "id", None)
        self.config = config or {}
        self.store_url = self._normalize_store_url(getattr(connection, "store_url", "") or "")
        self.client = client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        self._owns_client = client is None
        self.write_cooldown_seconds = float(self.config.get("write_cooldown", self.write_cooldown_seconds))
        self.rate_limit_remaining: int | None = None
        self.logger = logger.bind(platform=self.platform.value, connection_id=self.connection_id)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self.client.aclose()

    # Contract

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Check credentials and reachability. Never raises."""

    @abstractmethod
    async def fetch_products(self, cursor: str | None = None) -> ProductPage:
        """Fetch one page of products, restartable from any issued cursor."""

    @abstractmethod
    async def fetch_inventory(self, handles: list[str]) -> list[RemoteInventorySnapshot]:
        """Fetch quantities for at most `inventory_batch_size` handles."""

    @abstractmethod
    async def update_inventory(self, updates: list[InventoryUpdate]) -> InventoryUpdateResult:
        """Write absolute quantities, reporting success per item."""

    @abstractmethod
    async def find_product_by_sku(self, sku: str) -> SkuLookupResult:
        """Look up a remote product or variant by SKU."""

    @abstractmethod
    async def get_shop_info(self) -> ShopInfo:
        """Fetch store name, domain and currency."""

    @abstractmethod
    def handle_for(
        self,
        remote_product_id: str,
        remote_variant_id: str | None,
        remote_inventory_item_id: str | None
    ) -> str | None:
        """Build the addressable handle for a mapped item."""

    async def refresh_token(self) -> TokenRefreshResult:
        """Refresh OAuth credentials. Static-credential platforms have nothing to do."""
        return TokenRefreshResult(refreshed=False)

    # Shared helpers

    @abstractmethod
    def _auth_headers(self) -> dict[str, str]:
        """Authentication headers for every request."""

    def build_url(self, endpoint: str) -> str:
        """Build the full API URL for an endpoint path."""
        return f"{self.store_url}{endpoint}"

    def _track_rate_limit(self, response: httpx.Response) -> None:
        """Record the remaining call budget from response headers."""

    def _error_details(self, error_data: Any) -> Any:
        """Extract the platform error payload from an error body."""
        if isinstance(error_data, dict):
            return error_data.get("errors") or error_data.get("message") or error_data.get("error") or error_data
        return error_data or None

    async def make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None
    ) -> APIResponse:
        """Make an authenticated request, raising AdapterError on any failure."""
        await self._throttle_if_low()

        url = endpoint if endpoint.startswith("http") else self.build_url(endpoint)
        request_headers = {"Accept": "application/json", **self._auth_headers()}
        if headers:
            request_headers.update(headers)

        try:
            response = await self.client.request(
                method=method,
                url=url,
                headers=request_headers,
                params=params,
                json=json_data,
                data=data
            )
        except httpx.TimeoutException as e:
            metrics_service.record_adapter_error(self.platform.value, "timeout")
            self.logger.error("Request timeout", method=method, url=url)
            raise AdapterError("Request timeout", self.platform.value, status=0, details=str(e)) from e
        except httpx.HTTPError as e:
            metrics_service.record_adapter_error(self.platform.value, "transport")
            self.logger.error("Request failed", method=method, url=url, error=str(e))
            raise AdapterError(f"Request failed: {e}", self.platform.value, status=0) from e

        self._track_rate_limit(response)

        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                error_data = response.text
            metrics_service.record_adapter_error(self.platform.value, str(response.status_code))
            self.logger.warning("API error response", method=method, url=url, status=response.status_code)
            raise AdapterError(
                f"{self.platform.value.capitalize()} API error: {response.status_code}",
                self.platform.value,
                status=response.status_code,
                details=self._error_details(error_data)
            )

        body = response.json() if response.content else None
        return APIResponse(
            data=body,
            status_code=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            links={str(key): {k: str(v) for k, v in value.items()} for key, value in response.links.items()}
        )

    async def _throttle_if_low(self) -> None:
        """Pause before the next call when the remaining budget is nearly spent."""
        if self.rate_limit_remaining is not None and self.rate_limit_remaining < self.low_quota_threshold:
            self.logger.info("Rate limit budget low, pausing", remaining=self.rate_limit_remaining)
            await asyncio.sleep(self.low_quota_pause_seconds)

    async def _cooldown(self) -> None:
        """Sleep after a write so the platform's published rate is respected."""
        if self.write_cooldown_seconds > 0:
            await asyncio.sleep(self.write_cooldown_seconds)

    def _truncate(self, handles: list[str]) -> list[str]:
        """Enforce the per-call batch cap by truncation."""
        if len(handles) > self.inventory_batch_size:
            self.logger.warning(
                "Inventory batch truncated",
                requested=len(handles),
                limit=self.inventory_batch_size
            )
        return handles[:self.inventory_batch_size]

    @staticmethod
    def parse_error(error: Exception) -> dict[str, Any]:
        """Normalize any exception to {message, status, details}."""
        if isinstance(error, AdapterError):
            return error.to_dict()
        return {"message": str(error) or "Unknown error", "status": None, "details": None}

    @staticmethod
    def _normalize_store_url(store_url: str) -> str:
        store_url = store_url.strip().rstrip("/")
        if store_url and not store_url.startswith("http"):
            store_url = f"https://{store_url}"
        return store_url
