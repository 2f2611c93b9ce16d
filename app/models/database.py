"""SQLAlchemy models for the local store and the sync bookkeeping tables."""
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.models.types import EncryptedText, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""


class Product(Base):
    """Local POS product."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class InventoryLog(Base):
    """Local stock adjustment ledger entry."""

    __tablename__ = "inventory_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)  # adjustment_in, adjustment_out
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class EcommerceConnection(Base):
    """One configured external storefront."""

    __tablename__ = "ecommerce_connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    store_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    store_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Credentials
    api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    api_secret: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    access_token: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    shop_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, default=15)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProductMapping(Base):
    """Correspondence between a local product and a remote product/variant."""

    __tablename__ = "ecommerce_product_mappings"
    __table_args__ = (
        UniqueConstraint("product_id", "connection_id", name="uq_mapping_product_connection"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    connection_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ecommerce_connections.id"), nullable=False, index=True
    )
    remote_product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_variant_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    remote_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    remote_inventory_item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sync_status: Mapped[str] = mapped_column(String(20), default="pending_push", nullable=False)
    last_local_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_remote_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class SyncLogEntry(Base):
    """Append-only audit record of one sync attempt."""

    __tablename__ = "ecommerce_sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    connection_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ecommerce_connections.id"), nullable=False, index=True
    )
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)  # full, incremental
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)  # manual, scheduled, webhook, local_change
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="started")
    products_pushed: Mapped[int] = mapped_column(Integer, default=0)
    products_pulled: Mapped[int] = mapped_column(Integer, default=0)
    conflicts_count: Mapped[int] = mapped_column(Integer, default=0)
    errors_count: Mapped[int] = mapped_column(Integer, default=0)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
