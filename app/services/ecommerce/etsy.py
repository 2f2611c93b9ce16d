"""Etsy inventory adapter (Open API v3, OAuth 2.0 with PKCE)."""
import base64
import hashlib
import secrets
from collections import OrderedDict
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

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
    TokenRefreshResult,
)
from app.models.integration import PlatformKind
from app.models.types import utcnow
from .base import AdapterError, PlatformAdapter

logger = structlog.get_logger()


API_BASE_URL = "https://openapi.etsy.com/v3/application"
AUTHORIZE_URL = "https://www.etsy.com/oauth/connect"
TOKEN_URL = "https://api.etsy.com/v3/public/oauth/token"
OAUTH_SCOPES = "listings_r listings_w shops_r"


def split_handle(handle: str) -> tuple[str, str | None]:
    """Split a `listing_id[:product_id]` handle."""
    listing_id, _, product_id = handle.partition(":")
    return listing_id, product_id or None


def _money(price: dict[str, Any] | None) -> float:
    if not price:
        return 0.0
    divisor = price.get("divisor") or 1
    return float(price.get("amount", 0)) / divisor


class EtsyAdapter(PlatformAdapter):
    """Etsy adapter.

    Etsy exposes stock only through the per-listing inventory document, which
    must be written back whole. Updates are therefore read-modify-write and
    grouped by listing.
    """

    platform = PlatformKind.ETSY
    supports_batch_inventory = False
    inventory_batch_size = 10
    write_cooldown_seconds = settings.ETSY_WRITE_COOLDOWN_SECONDS
    low_quota_threshold = 1
    low_quota_pause_seconds = 1.0
    webhook_identity_field = "listing_id"
    page_size = 50
    search_page_size = 100

    def __init__(
        self,
        connection: Any,
        client: httpx.AsyncClient | None = None,
        config: dict[str, Any] | None = None
    ):
        super().__init__(connection, client, config)
        self.api_key = getattr(connection, "api_key", None) or ""
        self.access_token = getattr(connection, "access_token", None)
        self.refresh_token_value = getattr(connection, "refresh_token", None)
        self.token_expires_at = getattr(connection, "token_expires_at", None)
        shop_id = getattr(connection, "shop_id", None)
        self.shop_id: str | None = str(shop_id) if shop_id else None

    def _auth_headers(self) -> dict[str, str]:
        headers = {"x-api-key": self.api_key}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def build_url(self, endpoint: str) -> str:
        return f"{API_BASE_URL}{endpoint}"

    def _track_rate_limit(self, response: httpx.Response) -> None:
        remaining = response.headers.get("x-remaining-this-second")
        if remaining is not None and remaining.isdigit():
            self.rate_limit_remaining = int(remaining)

    def _error_details(self, error_data: Any) -> Any:
        if isinstance(error_data, dict):
            return error_data.get("error_description") or error_data.get("error") or error_data
        return super()._error_details(error_data)

    async def _ensure_shop_id(self) -> str:
        if self.shop_id:
            return self.shop_id

        response = await self.make_request("GET", "/users/me")
        shop_id = (response.data or {}).get("shop_id")
        if not shop_id:
            raise AdapterError("No Etsy shop found for this account", self.platform.value)
        self.shop_id = str(shop_id)
        return self.shop_id

    async def _get_shop(self) -> dict[str, Any]:
        shop_id = await self._ensure_shop_id()
        response = await self.make_request("GET", f"/shops/{shop_id}")
        return response.data or {}

    async def test_connection(self) -> ConnectionTestResult:
        try:
            shop = await self._get_shop()
        except AdapterError as e:
            return ConnectionTestResult(
                success=False,
                message=e.message or "Failed to connect to Etsy",
                details=e.to_dict()
            )

        return ConnectionTestResult(
            success=True,
            message=f"Connected to {shop.get('shop_name')}",
            details={
                "shop_id": self.shop_id,
                "shop_name": shop.get("shop_name"),
                "currency": shop.get("currency_code"),
                "url": shop.get("url"),
            }
        )

    async def get_shop_info(self) -> ShopInfo:
        shop = await self._get_shop()
        return ShopInfo(
            name=shop.get("shop_name") or "",
            domain=shop.get("url") or "",
            currency=shop.get("currency_code") or "USD"
        )

    async def _list_active(self, offset: int, limit: int) -> dict[str, Any]:
        shop_id = await self._ensure_shop_id()
        response = await self.make_request(
            "GET",
            f"/shops/{shop_id}/listings/active",
            params={"limit": limit, "offset": offset}
        )
        return response.data or {}

    async def _get_inventory(self, listing_id: str) -> dict[str, Any]:
        response = await self.make_request("GET", f"/listings/{listing_id}/inventory")
        return response.data or {}

    async def fetch_products(self, cursor: str | None = None) -> ProductPage:
        offset = int(cursor) if cursor else 0
        page = await self._list_active(offset, self.page_size)
        listings = page.get("results", [])
        total = page.get("count", 0)

        records: list[RemoteProduct] = []
        for listing in listings:
            if listing.get("has_variations"):
                inventory = await self._get_inventory(listing["listing_id"])
                for product in self._live_products(inventory):
                    records.append(self._transform_inventory_product(listing, product))
            else:
                records.append(self._transform_listing(listing))

        next_offset = offset + len(listings)
        has_more = bool(listings) and next_offset < total
        return ProductPage(
            products=records,
            next_cursor=str(next_offset) if has_more else None,
            has_more=has_more
        )

    @staticmethod
    def _live_products(inventory: dict[str, Any]) -> list[dict[str, Any]]:
        return [product for product in inventory.get("products", []) if not product.get("is_deleted")]

    @staticmethod
    def _active_offering(product: dict[str, Any]) -> dict[str, Any] | None:
        for offering in product.get("offerings", []):
            if not offering.get("is_deleted") and offering.get("is_enabled", True):
                return offering
        return None

    @staticmethod
    def _transform_listing(listing: dict[str, Any]) -> RemoteProduct:
        skus = listing.get("skus") or []
        return RemoteProduct(
            remote_product_id=str(listing["listing_id"]),
            remote_sku=skus[0] if skus else None,
            title=listing.get("title", ""),
            price=_money(listing.get("price")),
            quantity=listing.get("quantity", 0),
            manage_stock=True
        )

    def _transform_inventory_product(self, listing: dict[str, Any], product: dict[str, Any]) -> RemoteProduct:
        offering = self._active_offering(product) or {}
        values = [
            value
            for property_value in product.get("property_values", [])
            for value in property_value.get("values", [])
        ]
        return RemoteProduct(
            remote_product_id=str(listing["listing_id"]),
            remote_variant_id=str(product["product_id"]),
            remote_sku=product.get("sku") or None,
            title=listing.get("title", ""),
            variant_title=" / ".join(values) or None,
            price=_money(offering.get("price")),
            quantity=offering.get("quantity", 0),
            manage_stock=True
        )

    def _select_product(self, inventory: dict[str, Any], product_id: str | None) -> dict[str, Any] | None:
        products = self._live_products(inventory)
        if product_id is None:
            return products[0] if products else None
        for product in products:
            if str(product.get("product_id")) == product_id:
                return product
        return None

    async def fetch_inventory(self, handles: list[str]) -> list[RemoteInventorySnapshot]:
        snapshots = []
        for handle in self._truncate(handles):
            listing_id, product_id = split_handle(handle)
            try:
                inventory = await self._get_inventory(listing_id)
            except AdapterError as e:
                if e.is_transport_error:
                    raise
                self.logger.error("Failed to fetch inventory", handle=handle, error=e.message, status=e.status)
                continue

            product = self._select_product(inventory, product_id)
            offering = self._active_offering(product) if product else None
            if offering is None:
                self.logger.warning("No active offering for listing", handle=handle)
                continue

            snapshots.append(RemoteInventorySnapshot(
                handle=handle,
                remote_product_id=listing_id,
                remote_variant_id=product_id,
                quantity=offering.get("quantity", 0),
                manage_stock=True
            ))
        return snapshots

    async def update_inventory(self, updates: list[InventoryUpdate]) -> InventoryUpdateResult:
        result = InventoryUpdateResult()

        by_listing: OrderedDict[str, list[InventoryUpdate]] = OrderedDict()
        for update in updates:
            if update.manage_stock is False:
                result.errors.append(InventoryUpdateError(
                    handle=update.handle,
                    error="Inventory is not tracked for this item"
                ))
                continue
            listing_id, _ = split_handle(update.handle)
            by_listing.setdefault(listing_id, []).append(update)

        for listing_id, listing_updates in by_listing.items():
            await self._update_listing(listing_id, listing_updates, result)
            await self._cooldown()

        result.success = not result.errors
        return result

    async def _update_listing(
        self,
        listing_id: str,
        updates: list[InventoryUpdate],
        result: InventoryUpdateResult
    ) -> None:
        try:
            inventory = await self._get_inventory(listing_id)
        except AdapterError as e:
            for update in updates:
                result.errors.append(InventoryUpdateError(handle=update.handle, error=e.message, status=e.status))
            return

        applied = []
        for update in updates:
            _, product_id = split_handle(update.handle)
            product = self._select_product(inventory, product_id)
            if product is None:
                result.errors.append(InventoryUpdateError(
                    handle=update.handle,
                    error="Product not found in listing inventory"
                ))
                continue
            for offering in product.get("offerings", []):
                if not offering.get("is_deleted"):
                    offering["quantity"] = update.quantity
            applied.append(update)

        if not applied:
            return

        try:
            await self.make_request(
                "PUT",
                f"/listings/{listing_id}/inventory",
                json_data=self._inventory_payload(inventory)
            )
        except AdapterError as e:
            for update in applied:
                result.errors.append(InventoryUpdateError(handle=update.handle, error=e.message, status=e.status))
            return

        result.updated += len(applied)
        result.updated_handles.extend(update.handle for update in applied)

    def _inventory_payload(self, inventory: dict[str, Any]) -> dict[str, Any]:
        """Convert a fetched inventory document into the shape the PUT accepts."""
        products = []
        for product in self._live_products(inventory):
            products.append({
                "sku": product.get("sku") or "",
                "property_values": [
                    {
                        "property_id": value.get("property_id"),
                        "value_ids": value.get("value_ids", []),
                        "scale_id": value.get("scale_id"),
                        "property_name": value.get("property_name"),
                        "values": value.get("values", []),
                    }
                    for value in product.get("property_values", [])
                ],
                "offerings": [
                    {
                        "price": _money(offering.get("price")),
                        "quantity": offering.get("quantity", 0),
                        "is_enabled": offering.get("is_enabled", True),
                    }
                    for offering in product.get("offerings", [])
                    if not offering.get("is_deleted")
                ],
            })
        return {
            "products": products,
            "price_on_property": inventory.get("price_on_property", []),
            "quantity_on_property": inventory.get("quantity_on_property", []),
            "sku_on_property": inventory.get("sku_on_property", []),
        }

    async def find_product_by_sku(self, sku: str) -> SkuLookupResult:
        offset = 0
        while True:
            page = await self._list_active(offset, self.search_page_size)
            listings = page.get("results", [])
            for listing in listings:
                if sku not in (listing.get("skus") or []):
                    continue
                if not listing.get("has_variations"):
                    return SkuLookupResult(found=True, product=self._transform_listing(listing))

                inventory = await self._get_inventory(listing["listing_id"])
                for product in self._live_products(inventory):
                    if product.get("sku") == sku:
                        return SkuLookupResult(
                            found=True,
                            product=self._transform_inventory_product(listing, product)
                        )

            offset += len(listings)
            if not listings or offset >= page.get("count", 0):
                return SkuLookupResult(found=False)

    def handle_for(
        self,
        remote_product_id: str,
        remote_variant_id: str | None,
        remote_inventory_item_id: str | None
    ) -> str | None:
        if not remote_product_id:
            return None
        return f"{remote_product_id}:{remote_variant_id}" if remote_variant_id else remote_product_id

    # OAuth

    @staticmethod
    def generate_pkce() -> tuple[str, str]:
        """Return a (verifier, S256 challenge) pair."""
        verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        return verifier, challenge

    def build_authorization_url(self, state: str, redirect_uri: str, challenge: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.api_key,
            "redirect_uri": redirect_uri,
            "scope": OAUTH_SCOPES,
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def _request_token(self, form: dict[str, str]) -> TokenRefreshResult:
        response = await self.make_request("POST", TOKEN_URL, data=form)
        body = response.data or {}
        if not body.get("access_token"):
            raise AdapterError("Token response missing access_token", self.platform.value,
                               status=response.status_code, details=body)

        expires_at = utcnow() + timedelta(seconds=int(body.get("expires_in", 3600)))
        self.access_token = body["access_token"]
        self.refresh_token_value = body.get("refresh_token") or self.refresh_token_value
        self.token_expires_at = expires_at
        return TokenRefreshResult(
            refreshed=True,
            access_token=self.access_token,
            refresh_token=self.refresh_token_value,
            expires_at=expires_at
        )

    async def exchange_code_for_token(self, code: str, redirect_uri: str, verifier: str) -> TokenRefreshResult:
        return await self._request_token({
            "grant_type": "authorization_code",
            "client_id": self.api_key,
            "redirect_uri": redirect_uri,
            "code": code,
            "code_verifier": verifier,
        })

    async def refresh_token(self) -> TokenRefreshResult:
        if not self.refresh_token_value:
            return TokenRefreshResult(refreshed=False)

        self.logger.info("Refreshing Etsy access token")
        return await self._request_token({
            "grant_type": "refresh_token",
            "client_id": self.api_key,
            "refresh_token": self.refresh_token_value,
        })
