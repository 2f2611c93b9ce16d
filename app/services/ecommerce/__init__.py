"""E-commerce platform inventory adapters."""
from typing import Any

import httpx

from app.models.integration import PlatformKind

from .base import (
    AdapterError,
    APIResponse,
    PlatformAdapter,
    UnsupportedPlatformError,
)
from .etsy import EtsyAdapter
from .shopify import ShopifyAdapter
from .woocommerce import WooCommerceAdapter

ADAPTERS: dict[PlatformKind, type[PlatformAdapter]] = {
    PlatformKind.SHOPIFY: ShopifyAdapter,
    PlatformKind.WOOCOMMERCE: WooCommerceAdapter,
    PlatformKind.ETSY: EtsyAdapter,
}


def create_adapter(
    connection: Any,
    client: httpx.AsyncClient | None = None,
    config: dict[str, Any] | None = None
) -> PlatformAdapter:
    """Build the adapter for a connection record."""
    try:
        kind = PlatformKind(connection.platform)
    except ValueError as e:
        raise UnsupportedPlatformError(f"Unsupported platform: {connection.platform}") from e
    return ADAPTERS[kind](connection, client=client, config=config)


def supported_platforms() -> list[str]:
    return [kind.value for kind in ADAPTERS]


__all__ = [
    "ADAPTERS",
    "AdapterError",
    "APIResponse",
    "EtsyAdapter",
    "PlatformAdapter",
    "ShopifyAdapter",
    "UnsupportedPlatformError",
    "WooCommerceAdapter",
    "create_adapter",
    "supported_platforms",
]
