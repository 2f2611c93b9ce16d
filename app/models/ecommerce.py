"""Normalized records exchanged with e-commerce platform adapters."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class RemoteProduct(BaseModel):
    """A remote product or variant in the common record format."""

    remote_product_id: str = Field(..., description="Remote product ID")
    remote_variant_id: str | None = Field(None, description="Remote variant ID")
    remote_sku: str | None = Field(None, description="Remote SKU")
    remote_inventory_item_id: str | None = Field(None, description="Platform inventory item handle")
    title: str = Field(default="", description="Product title")
    variant_title: str | None = Field(None, description="Variant title")
    price: float = Field(default=0.0, description="Unit price")
    quantity: int | None = Field(None, description="Stock quantity, None when not tracked")
    manage_stock: bool = Field(default=True, description="Whether the platform tracks stock for this item")


class ProductPage(BaseModel):
    """One page of remote products."""

    products: list[RemoteProduct] = Field(default_factory=list)
    next_cursor: str | None = Field(None, description="Cursor for the next page")
    has_more: bool = Field(default=False)


class RemoteInventorySnapshot(BaseModel):
    """Remote quantity of one addressable item at fetch time."""

    handle: str = Field(..., description="Addressable handle the quantity belongs to")
    remote_product_id: str | None = Field(None, description="Remote product ID")
    remote_variant_id: str | None = Field(None, description="Remote variant ID")
    quantity: int = Field(default=0, description="Resolved quantity")
    manage_stock: bool = Field(default=True, description="Whether stock is tracked for the item")
    location_id: str | None = Field(None, description="Stock location the level was read from")


class InventoryUpdate(BaseModel):
    """Desired absolute quantity for one addressable item."""

    handle: str = Field(..., description="Addressable handle to write")
    remote_product_id: str = Field(..., description="Remote product ID")
    remote_variant_id: str | None = Field(None, description="Remote variant ID")
    quantity: int = Field(..., description="Desired absolute quantity")
    manage_stock: bool | None = Field(None, description="Known stock-management flag, None if unknown")


class InventoryUpdateError(BaseModel):
    """Failure of a single item inside an inventory write batch."""

    handle: str
    error: str
    status: int | None = None


class InventoryUpdateResult(BaseModel):
    """Per-item outcome of an inventory write batch."""

    success: bool = Field(default=True)
    updated: int = Field(default=0, description="Number of items written")
    updated_handles: list[str] = Field(default_factory=list)
    errors: list[InventoryUpdateError] = Field(default_factory=list)

    def failed(self, handle: str) -> bool:
        """Whether the write for `handle` failed."""
        return any(error.handle == handle for error in self.errors)


class ConnectionTestResult(BaseModel):
    """Outcome of a connection test."""

    success: bool
    message: str
    details: dict[str, Any] | None = None


class ShopInfo(BaseModel):
    """Store metadata used for display."""

    name: str
    domain: str
    currency: str = "USD"


class SkuLookupResult(BaseModel):
    """Outcome of a SKU lookup."""

    found: bool
    product: RemoteProduct | None = None


class TokenRefreshResult(BaseModel):
    """Outcome of an OAuth token refresh."""

    refreshed: bool = False
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
