"""Data models for connections, mappings and sync passes."""
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PlatformKind(str, Enum):
    """Supported storefront platforms."""

    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"
    ETSY = "etsy"


class MappingStatus(str, Enum):
    """Sync state of a product mapping."""

    SYNCED = "synced"
    PENDING_PUSH = "pending_push"
    CONFLICT = "conflict"


class SyncKind(str, Enum):
    """Scope of a sync attempt."""

    FULL = "full"
    INCREMENTAL = "incremental"


class SyncTrigger(str, Enum):
    """What started a sync attempt."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"
    LOCAL_CHANGE = "local_change"


class SyncLogStatus(str, Enum):
    """Status of a sync log entry."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncPassState(str, Enum):
    """State of the sync orchestrator."""

    IDLE = "idle"
    FETCHING_REMOTE = "fetching_remote"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    FAILED = "failed"


class ConflictPolicy(str, Enum):
    """How drift on both sides is resolved."""

    LOCAL_WINS = "local_wins"
    MANUAL_REVIEW = "manual_review"


class SyncStatus(str, Enum):
    """Status values broadcast to observers."""

    SYNCING = "syncing"
    IDLE = "idle"
    OFFLINE = "offline"
    ERROR = "error"


# Requests


class ConnectionCreate(BaseModel):
    """Request to add a storefront connection."""

    platform: str = Field(..., description="Platform name")
    store_url: str = Field(default="", description="Store base URL")
    store_name: str | None = Field(None, description="Display name")
    api_key: str | None = Field(None, description="API key or consumer key")
    api_secret: str | None = Field(None, description="API secret or consumer secret")
    access_token: str | None = Field(None, description="Access token")
    refresh_token: str | None = Field(None, description="OAuth refresh token")
    token_expires_at: datetime | None = Field(None, description="Access token expiry")
    shop_id: str | None = Field(None, description="Remote shop ID")
    location_id: str | None = Field(None, description="Inventory location ID")
    sync_interval_minutes: int = Field(default=15, ge=1, description="Scheduled sync interval")


class ConnectionUpdate(BaseModel):
    """Editable connection fields; omitted fields are left unchanged."""

    store_name: str | None = None
    store_url: str | None = None
    api_key: str | None = None
    api_secret: str | None = None
    access_token: str | None = None
    location_id: str | None = None
    is_active: bool | None = None
    sync_enabled: bool | None = None
    sync_interval_minutes: int | None = Field(None, ge=1)


class MappingCreate(BaseModel):
    """Request to map a local product to a remote item manually."""

    product_id: str
    connection_id: str
    remote_product_id: str
    remote_variant_id: str | None = None
    remote_sku: str | None = None
    remote_inventory_item_id: str | None = None


class WebhookEvent(BaseModel):
    """Inventory event forwarded from a platform webhook."""

    platform: str = Field(..., description="Platform that sent the event")
    type: str = Field(default="inventory_update", description="Event type")
    inventory_item_id: str | None = Field(None, description="Shopify inventory item ID")
    product_id: str | None = Field(None, description="WooCommerce product ID")
    listing_id: str | None = Field(None, description="Etsy listing ID")
    variant_id: str | None = Field(None, description="WooCommerce variation ID or Etsy listing product ID")
    available: int | None = Field(None, description="Shopify available quantity")
    stock_quantity: int | None = Field(None, description="WooCommerce stock quantity")
    quantity: int | None = Field(None, description="Etsy quantity")

    @property
    def new_quantity(self) -> int | None:
        """Quantity carried by the event for its platform, if any."""
        if self.platform == PlatformKind.SHOPIFY.value:
            return self.available
        if self.platform == PlatformKind.WOOCOMMERCE.value:
            return self.stock_quantity
        if self.platform == PlatformKind.ETSY.value:
            return self.quantity
        return None


class LocalStockChange(BaseModel):
    """Notification that the local stock of a product changed."""

    product_id: str
    quantity: int


class OAuthStartRequest(BaseModel):
    """Request to begin an OAuth authorization."""

    platform: str
    api_key: str


class OAuthCompleteRequest(BaseModel):
    """Request to finish an OAuth authorization."""

    code: str
    state: str
    code_verifier: str | None = None


# Results


class OperationResult(BaseModel):
    """Generic success/failure result."""

    success: bool = True
    message: str = "success"
    data: dict[str, Any] | None = None


class SyncConflict(BaseModel):
    """Drift detected on both sides of one mapping."""

    mapping_id: str
    product_id: str
    local_quantity: int
    remote_quantity: int
    resolution: str


class SyncItemError(BaseModel):
    """Error attached to a sync pass."""

    phase: str
    error: str
    mapping_id: str | None = None
    product_id: str | None = None


class SyncPassResult(BaseModel):
    """Outcome of one sync pass."""

    connection_id: str | None = None
    success: bool = True
    busy: bool = False
    message: str = ""
    log_id: str | None = None
    pushed: int = 0
    pulled: int = 0
    skipped: int = 0
    conflicts: list[SyncConflict] = Field(default_factory=list)
    errors: list[SyncItemError] = Field(default_factory=list)


class AutoMatchResult(BaseModel):
    """Aggregate outcome of SKU auto-matching."""

    success: bool = True
    message: str = ""
    mapped: int = 0
    skipped: int = 0
    not_found: int = 0
    errors: list[dict[str, str]] = Field(default_factory=list)


class WebhookResult(BaseModel):
    """Outcome of webhook ingestion."""

    processed: bool
    reason: str | None = None
    action: str | None = None
    new_quantity: int | None = None
    error: str | None = None
    sync_result: SyncPassResult | None = None


class AddConnectionResult(BaseModel):
    """Outcome of adding a connection."""

    success: bool
    connection_id: str | None = None
    message: str = ""
    test_result: dict[str, Any] | None = None


class OAuthStartResult(BaseModel):
    """Authorization URL and state for a started OAuth flow."""

    auth_url: str
    state: str


class OAuthTokens(BaseModel):
    """Tokens obtained from a completed OAuth flow."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime


class StatusEvent(BaseModel):
    """Sync status broadcast to observers."""

    status: SyncStatus
    details: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class SyncStatusView(BaseModel):
    """Current sync status with the orchestrator state."""

    status: SyncStatus
    details: dict[str, Any] | None = None
    timestamp: datetime
    is_syncing: bool
    scheduler_running: bool


# Read views


class ConnectionView(BaseModel):
    """Connection record without credential material."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    platform: str
    store_name: str | None = None
    store_url: str
    shop_id: str | None = None
    location_id: str | None = None
    is_active: bool
    sync_enabled: bool
    sync_interval_minutes: int
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None


class MappingView(BaseModel):
    """Mapping joined with the local product."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    connection_id: str
    remote_product_id: str
    remote_variant_id: str | None = None
    remote_sku: str | None = None
    remote_inventory_item_id: str | None = None
    sync_status: str
    last_local_quantity: int | None = None
    last_remote_quantity: int | None = None
    last_synced_at: datetime | None = None
    product_name: str | None = None
    local_sku: str | None = None
    local_quantity: int | None = None


class SyncLogView(BaseModel):
    """Sync log entry as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    connection_id: str
    sync_type: str
    trigger_type: str
    status: str
    products_pushed: int
    products_pulled: int
    conflicts_count: int
    errors_count: int
    details: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class UnmappedProductView(BaseModel):
    """Local product without a mapping for a connection."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    sku: str | None = None
    name: str
    stock_quantity: int
