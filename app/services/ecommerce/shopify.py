"""Shopify inventory adapter (Admin REST API with GraphQL SKU search)."""
import asyncio
import json
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import structlog

from app.core.config import settings
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
from app.models.integration import PlatformKind
from .base import AdapterError, PlatformAdapter

logger = structlog.get_logger()


SKU_LOOKUP_QUERY = """
query findVariantBySku($query: String!) {
    productVariants(first: 10, query: $query) {
        edges {
            node {
                id
                sku
                title
                price
                inventoryQuantity
                inventoryItem {
                    id
                    tracked
                }
                product {
                    id
                    title
                }
            }
        }
    }
}
"""


def _gid_to_id(gid: str | None) -> str | None:
    """Extract the numeric ID from a GraphQL global ID."""
    if not gid:
        return None
    return gid.rsplit("/", 1)[-1]


class ShopifyAdapter(PlatformAdapter):
    """Shopify adapter.

    Stock lives on inventory items at locations, so the addressable handle is
    the variant's inventory item ID and every read and write is scoped to the
    shop's primary location.
    """

    platform = PlatformKind.SHOPIFY
    supports_batch_inventory = True
    inventory_batch_size = 50
    write_cooldown_seconds = settings.SHOPIFY_WRITE_COOLDOWN_SECONDS
    low_quota_threshold = 5
    low_quota_pause_seconds = 0.5
    webhook_identity_field = "inventory_item_id"
    page_size = 50

    def __init__(
        self,
        connection: Any,
        client: httpx.AsyncClient | None = None,
        config: dict[str, Any] | None = None
    ):
        super().__init__(connection, client, config)
        self.access_token = getattr(connection, "access_token", None)
        self.api_version = self.config.get("api_version", settings.SHOPIFY_API_VERSION)
        location_id = getattr(connection, "location_id", None)
        self.location_id: str | None = str(location_id) if location_id else None
        self._location_lock = asyncio.Lock()

    def _auth_headers(self) -> dict[str, str]:
        return {"X-Shopify-Access-Token": self.access_token or ""}

    def build_url(self, endpoint: str) -> str:
        return f"{self.store_url}/admin/api/{self.api_version}{endpoint}"

    def _track_rate_limit(self, response: httpx.Response) -> None:
        call_limit = response.headers.get("X-Shopify-Shop-Api-Call-Limit")
        if not call_limit:
            return
        try:
            used, total = (int(part) for part in call_limit.split("/", 1))
        except ValueError:
            self.logger.warning("Unparseable call limit header", value=call_limit)
            return
        self.rate_limit_remaining = total - used

    async def test_connection(self) -> ConnectionTestResult:
        try:
            response = await self.make_request("GET", "/shop.json")
        except AdapterError as e:
            return ConnectionTestResult(
                success=False,
                message=e.message or "Failed to connect to Shopify",
                details=e.to_dict()
            )

        shop = (response.data or {}).get("shop", {})
        self.logger.info("Shopify connection verified", shop_name=shop.get("name"))
        return ConnectionTestResult(
            success=True,
            message=f"Connected to {shop.get('name')}",
            details={
                "shop_name": shop.get("name"),
                "domain": shop.get("domain"),
                "currency": shop.get("currency"),
                "timezone": shop.get("timezone"),
            }
        )

    async def get_shop_info(self) -> ShopInfo:
        response = await self.make_request("GET", "/shop.json")
        shop = (response.data or {}).get("shop", {})
        return ShopInfo(
            name=shop.get("name") or "",
            domain=shop.get("domain") or "",
            currency=shop.get("currency") or "USD"
        )

    async def get_locations(self) -> list[dict[str, Any]]:
        response = await self.make_request("GET", "/locations.json")
        return (response.data or {}).get("locations", [])

    async def _ensure_location(self) -> str:
        """Resolve the primary location once and cache it."""
        if self.location_id:
            return self.location_id

        async with self._location_lock:
            if self.location_id:
                return self.location_id

            locations = await self.get_locations()
            active = [location for location in locations if location.get("active", True)]
            if not active:
                raise AdapterError("No inventory locations found", self.platform.value)

            self.location_id = str(active[0]["id"])
            self.logger.info("Resolved inventory location", location_id=self.location_id)
            return self.location_id

    async def fetch_products(self, cursor: str | None = None) -> ProductPage:
        params: dict[str, Any] = {"limit": self.page_size}
        if cursor:
            params["page_info"] = cursor

        response = await self.make_request("GET", "/products.json", params=params)
        products = (response.data or {}).get("products", [])

        records = []
        for product in products:
            for variant in product.get("variants", []):
                records.append(self._transform_variant(product, variant))

        next_cursor = self._next_page_info(response.links)
        return ProductPage(products=records, next_cursor=next_cursor, has_more=next_cursor is not None)

    def _transform_variant(self, product: dict[str, Any], variant: dict[str, Any]) -> RemoteProduct:
        manage_stock = variant.get("inventory_management") == "shopify"
        inventory_item_id = variant.get("inventory_item_id")
        title = variant.get("title")
        return RemoteProduct(
            remote_product_id=str(product["id"]),
            remote_variant_id=str(variant["id"]),
            remote_sku=variant.get("sku") or None,
            remote_inventory_item_id=str(inventory_item_id) if inventory_item_id else None,
            title=product.get("title", ""),
            variant_title=title if title and title != "Default Title" else None,
            price=float(variant.get("price") or 0),
            quantity=variant.get("inventory_quantity", 0) if manage_stock else None,
            manage_stock=manage_stock
        )

    @staticmethod
    def _next_page_info(links: dict[str, dict[str, str]]) -> str | None:
        next_link = links.get("next", {}).get("url")
        if not next_link:
            return None
        values = parse_qs(urlparse(next_link).query).get("page_info")
        return values[0] if values else None

    async def fetch_inventory(self, handles: list[str]) -> list[RemoteInventorySnapshot]:
        if not handles:
            return []

        handles = self._truncate(handles)
        location_id = await self._ensure_location()
        response = await self.make_request(
            "GET",
            "/inventory_levels.json",
            params={"inventory_item_ids": ",".join(handles), "location_ids": location_id}
        )

        snapshots = []
        for level in (response.data or {}).get("inventory_levels", []):
            available = level.get("available")
            snapshots.append(RemoteInventorySnapshot(
                handle=str(level["inventory_item_id"]),
                quantity=available or 0,
                manage_stock=available is not None,
                location_id=str(level.get("location_id", location_id))
            ))
        return snapshots

    async def update_inventory(self, updates: list[InventoryUpdate]) -> InventoryUpdateResult:
        result = InventoryUpdateResult()
        if not updates:
            return result

        try:
            location_id = await self._ensure_location()
        except AdapterError as e:
            result.errors = [
                InventoryUpdateError(handle=update.handle, error=e.message, status=e.status)
                for update in updates
            ]
            result.success = False
            return result

        for update in updates:
            if update.manage_stock is False:
                result.errors.append(InventoryUpdateError(
                    handle=update.handle,
                    error="Inventory is not tracked for this item"
                ))
                continue

            try:
                await self.make_request(
                    "POST",
                    "/inventory_levels/set.json",
                    json_data={
                        "location_id": int(location_id),
                        "inventory_item_id": int(update.handle),
                        "available": update.quantity,
                    }
                )
                result.updated += 1
                result.updated_handles.append(update.handle)
            except AdapterError as e:
                result.errors.append(InventoryUpdateError(handle=update.handle, error=e.message, status=e.status))
            except ValueError:
                result.errors.append(InventoryUpdateError(
                    handle=update.handle,
                    error=f"Invalid inventory item id: {update.handle}"
                ))
                continue

            await self._cooldown()

        result.success = not result.errors
        return result

    async def find_product_by_sku(self, sku: str) -> SkuLookupResult:
        response = await self.make_request(
            "POST",
            f"{self.store_url}/admin/api/{self.api_version}/graphql.json",
            json_data={"query": SKU_LOOKUP_QUERY, "variables": {"query": f"sku:{json.dumps(sku)}"}}
        )

        body = response.data or {}
        if body.get("errors"):
            raise AdapterError("Shopify GraphQL error", self.platform.value, status=response.status_code,
                               details=body["errors"])

        edges = body.get("data", {}).get("productVariants", {}).get("edges", [])
        for edge in edges:
            node = edge.get("node", {})
            if node.get("sku") != sku:
                continue

            inventory_item = node.get("inventoryItem") or {}
            product = node.get("product") or {}
            tracked = inventory_item.get("tracked", True)
            title = node.get("title")
            return SkuLookupResult(found=True, product=RemoteProduct(
                remote_product_id=_gid_to_id(product.get("id")) or "",
                remote_variant_id=_gid_to_id(node.get("id")),
                remote_sku=node.get("sku"),
                remote_inventory_item_id=_gid_to_id(inventory_item.get("id")),
                title=product.get("title", ""),
                variant_title=title if title and title != "Default Title" else None,
                price=float(node.get("price") or 0),
                quantity=node.get("inventoryQuantity") if tracked else None,
                manage_stock=bool(tracked)
            ))

        return SkuLookupResult(found=False)

    def handle_for(
        self,
        remote_product_id: str,
        remote_variant_id: str | None,
        remote_inventory_item_id: str | None
    ) -> str | None:
        return remote_inventory_item_id or None
