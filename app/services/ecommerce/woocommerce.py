"""WooCommerce inventory adapter (REST API v3)."""
import base64
from typing import Any

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

# WooCommerce caps batch endpoints at 100 objects per request
BATCH_LIMIT = 100


def split_handle(handle: str) -> tuple[str, str | None]:
    """Split a `product_id[:variation_id]` handle."""
    product_id, _, variation_id = handle.partition(":")
    return product_id, variation_id or None


class WooCommerceAdapter(PlatformAdapter):
    """WooCommerce adapter.

    Simple products carry their own stock; variable products carry it per
    variation, so handles are either `product_id` or `product_id:variation_id`.
    """

    platform = PlatformKind.WOOCOMMERCE
    supports_batch_inventory = False
    inventory_batch_size = 20
    write_cooldown_seconds = settings.WOOCOMMERCE_WRITE_COOLDOWN_SECONDS
    webhook_identity_field = "product_id"
    page_size = 50
    variations_page_size = 100

    def __init__(
        self,
        connection: Any,
        client: httpx.AsyncClient | None = None,
        config: dict[str, Any] | None = None
    ):
        super().__init__(connection, client, config)
        self.consumer_key = getattr(connection, "api_key", None) or ""
        self.consumer_secret = getattr(connection, "api_secret", None) or ""

    def _auth_headers(self) -> dict[str, str]:
        auth_string = f"{self.consumer_key}:{self.consumer_secret}"
        auth_base64 = base64.b64encode(auth_string.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {auth_base64}"}

    def build_url(self, endpoint: str) -> str:
        return f"{self.store_url}/wp-json/wc/v3{endpoint}"

    async def test_connection(self) -> ConnectionTestResult:
        try:
            response = await self.make_request("GET", "/system_status")
        except AdapterError as first_error:
            self.logger.info("System status unavailable, trying products endpoint", error=first_error.message)
            try:
                await self.make_request("GET", "/products", params={"per_page": 1})
            except AdapterError:
                return ConnectionTestResult(
                    success=False,
                    message=first_error.message or "Failed to connect to WooCommerce",
                    details=first_error.to_dict()
                )
            return ConnectionTestResult(
                success=True,
                message="Connected to WooCommerce store",
                details={"store_url": self.store_url}
            )

        status = response.data or {}
        return ConnectionTestResult(
            success=True,
            message="Connected to WooCommerce store",
            details={
                "wc_version": status.get("environment", {}).get("version"),
                "wp_version": status.get("environment", {}).get("wp_version"),
                "currency": status.get("settings", {}).get("currency"),
                "store_url": self.store_url,
            }
        )

    async def get_shop_info(self) -> ShopInfo:
        try:
            response = await self.make_request("GET", "/system_status")
        except AdapterError as e:
            self.logger.warning("Falling back to default shop info", error=e.message)
            return ShopInfo(name="WooCommerce Store", domain=self.store_url, currency="USD")

        shop_settings = (response.data or {}).get("settings", {})
        return ShopInfo(
            name=shop_settings.get("store_name") or "WooCommerce Store",
            domain=self.store_url,
            currency=shop_settings.get("currency") or "USD"
        )

    async def fetch_products(self, cursor: str | None = None) -> ProductPage:
        page = int(cursor) if cursor else 1
        response = await self.make_request(
            "GET",
            "/products",
            params={"page": page, "per_page": self.page_size, "status": "publish"}
        )
        total_pages = int(response.headers.get("x-wp-totalpages", "1") or 1)

        records: list[RemoteProduct] = []
        for product in response.data or []:
            product_type = product.get("type")
            if product_type == "simple":
                records.append(self._transform_product(product))
            elif product_type == "variable":
                for variation in await self._fetch_variations(product["id"]):
                    records.append(self._transform_variation(product, variation))

        has_more = page < total_pages
        return ProductPage(
            products=records,
            next_cursor=str(page + 1) if has_more else None,
            has_more=has_more
        )

    async def _fetch_variations(self, product_id: Any) -> list[dict[str, Any]]:
        response = await self.make_request(
            "GET",
            f"/products/{product_id}/variations",
            params={"per_page": self.variations_page_size}
        )
        return response.data or []

    @staticmethod
    def _transform_product(product: dict[str, Any]) -> RemoteProduct:
        manage_stock = product.get("manage_stock") is True
        return RemoteProduct(
            remote_product_id=str(product["id"]),
            remote_sku=product.get("sku") or None,
            title=product.get("name", ""),
            price=float(product.get("price") or 0),
            quantity=(product.get("stock_quantity") or 0) if manage_stock else None,
            manage_stock=manage_stock
        )

    @staticmethod
    def _transform_variation(product: dict[str, Any], variation: dict[str, Any]) -> RemoteProduct:
        # "parent" means the parent product holds the stock, not this variation
        manage_stock = variation.get("manage_stock") is True
        options = [attribute.get("option", "") for attribute in variation.get("attributes", [])]
        return RemoteProduct(
            remote_product_id=str(product["id"]),
            remote_variant_id=str(variation["id"]),
            remote_sku=variation.get("sku") or None,
            title=product.get("name", ""),
            variant_title=" / ".join(options) or None,
            price=float(variation.get("price") or 0),
            quantity=(variation.get("stock_quantity") or 0) if manage_stock else None,
            manage_stock=manage_stock
        )

    async def fetch_inventory(self, handles: list[str]) -> list[RemoteInventorySnapshot]:
        snapshots = []
        for handle in self._truncate(handles):
            product_id, variation_id = split_handle(handle)
            endpoint = (
                f"/products/{product_id}/variations/{variation_id}"
                if variation_id else f"/products/{product_id}"
            )
            try:
                response = await self.make_request("GET", endpoint)
            except AdapterError as e:
                if e.is_transport_error:
                    raise
                self.logger.error("Failed to fetch inventory", handle=handle, error=e.message, status=e.status)
                continue

            item = response.data or {}
            snapshots.append(RemoteInventorySnapshot(
                handle=handle,
                remote_product_id=product_id,
                remote_variant_id=variation_id,
                quantity=item.get("stock_quantity") or 0,
                manage_stock=item.get("manage_stock") is True
            ))
        return snapshots

    async def update_inventory(self, updates: list[InventoryUpdate]) -> InventoryUpdateResult:
        result = InventoryUpdateResult()

        writable = []
        for update in updates:
            manage_stock = update.manage_stock
            if manage_stock is None:
                manage_stock = await self._read_manage_stock(update, result)
                if manage_stock is None:
                    continue
            if manage_stock is False:
                result.errors.append(InventoryUpdateError(
                    handle=update.handle,
                    error="Stock management is disabled for this item"
                ))
            else:
                writable.append(update)

        simple_updates = [update for update in writable if not update.remote_variant_id]
        variation_updates = [update for update in writable if update.remote_variant_id]

        for start in range(0, len(simple_updates), BATCH_LIMIT):
            await self._update_simple_batch(simple_updates[start:start + BATCH_LIMIT], result)
            await self._cooldown()

        for update in variation_updates:
            await self._update_variation(update, result)
            await self._cooldown()

        result.success = not result.errors
        return result

    async def _read_manage_stock(self, update: InventoryUpdate, result: InventoryUpdateResult) -> bool | None:
        """Read the stock flag of an item the caller has not checked; None when it cannot be read."""
        try:
            snapshots = await self.fetch_inventory([update.handle])
        except AdapterError as e:
            result.errors.append(InventoryUpdateError(handle=update.handle, error=e.message, status=e.status))
            return None
        if not snapshots:
            result.errors.append(InventoryUpdateError(handle=update.handle, error="Item not found"))
            return None
        return snapshots[0].manage_stock

    async def _update_simple_batch(self, batch: list[InventoryUpdate], result: InventoryUpdateResult) -> None:
        payload = {
            "update": [
                {"id": int(update.remote_product_id), "stock_quantity": update.quantity}
                for update in batch
            ]
        }
        try:
            response = await self.make_request("POST", "/products/batch", json_data=payload)
        except AdapterError as e:
            for update in batch:
                result.errors.append(InventoryUpdateError(handle=update.handle, error=e.message, status=e.status))
            return

        returned = {str(item.get("id")): item for item in (response.data or {}).get("update", [])}
        for update in batch:
            item = returned.get(update.remote_product_id)
            if item is None:
                result.errors.append(InventoryUpdateError(
                    handle=update.handle,
                    error="Item missing from batch response"
                ))
            elif item.get("error"):
                error = item["error"]
                message = error.get("message", "Batch update failed") if isinstance(error, dict) else str(error)
                result.errors.append(InventoryUpdateError(handle=update.handle, error=message))
            elif item.get("manage_stock") is False:
                result.errors.append(InventoryUpdateError(
                    handle=update.handle,
                    error="Stock management is disabled for this item"
                ))
            else:
                result.updated += 1
                result.updated_handles.append(update.handle)

    async def _update_variation(self, update: InventoryUpdate, result: InventoryUpdateResult) -> None:
        try:
            response = await self.make_request(
                "PUT",
                f"/products/{update.remote_product_id}/variations/{update.remote_variant_id}",
                json_data={"stock_quantity": update.quantity}
            )
        except AdapterError as e:
            result.errors.append(InventoryUpdateError(handle=update.handle, error=e.message, status=e.status))
            return

        if (response.data or {}).get("manage_stock") is False:
            result.errors.append(InventoryUpdateError(
                handle=update.handle,
                error="Stock management is disabled for this item"
            ))
            return

        result.updated += 1
        result.updated_handles.append(update.handle)

    async def find_product_by_sku(self, sku: str) -> SkuLookupResult:
        response = await self.make_request("GET", "/products", params={"sku": sku})
        for product in response.data or []:
            if product.get("sku") != sku:
                continue
            if product.get("type") == "variation" and product.get("parent_id"):
                parent = {"id": product["parent_id"], "name": product.get("name", "")}
                return SkuLookupResult(found=True, product=self._transform_variation(parent, product))
            return SkuLookupResult(found=True, product=self._transform_product(product))

        page = 1
        while True:
            response = await self.make_request(
                "GET",
                "/products",
                params={"type": "variable", "per_page": self.variations_page_size, "page": page}
            )
            for product in response.data or []:
                for variation in await self._fetch_variations(product["id"]):
                    if variation.get("sku") == sku:
                        return SkuLookupResult(found=True, product=self._transform_variation(product, variation))

            total_pages = int(response.headers.get("x-wp-totalpages", "1") or 1)
            if page >= total_pages:
                return SkuLookupResult(found=False)
            page += 1

    def handle_for(
        self,
        remote_product_id: str,
        remote_variant_id: str | None,
        remote_inventory_item_id: str | None
    ) -> str | None:
        if not remote_product_id:
            return None
        return f"{remote_product_id}:{remote_variant_id}" if remote_variant_id else remote_product_id
