from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, ForeignKey, Index, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from . import Base


# BIGSERIAL on Postgres; SQLite only auto-increments INTEGER PRIMARY KEY.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONPayload = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncRunStatus(str, enum.Enum):
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class MarketplaceCredential(Base):
    __tablename__ = "marketplace_credentials"

    id = Column(String(36), primary_key=True)
    principal_id = Column(String(100), nullable=False, unique=True)
    # Physical columns holding encrypted blobs when written via properties.
    _access_token = Column("access_token", Text, nullable=True)
    _refresh_token = Column("refresh_token", Text, nullable=True)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    external_user_id = Column(String(100), nullable=True)
    scopes = Column(JSONPayload, nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index('idx_marketplace_credentials_expires_at', 'access_token_expires_at'),
    )

    @property
    def access_token(self) -> str | None:
        from resale_sync.utils import crypto

        return crypto.decrypt(self._access_token)

    @access_token.setter
    def access_token(self, value: str | None) -> None:
        from resale_sync.utils import crypto

        self._access_token = crypto.encrypt(value) if value else None

    @property
    def refresh_token(self) -> str | None:
        from resale_sync.utils import crypto

        return crypto.decrypt(self._refresh_token)

    @refresh_token.setter
    def refresh_token(self, value: str | None) -> None:
        from resale_sync.utils import crypto

        self._refresh_token = crypto.encrypt(value) if value else None


class InventoryItem(Base):
    """Owned by the inventory CRUD surface; the sync pipeline only reads it."""

    __tablename__ = "inventory_items"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sku = Column(String(100), nullable=False, unique=True)
    title = Column(Text, nullable=True)
    cost_cents = Column(Integer, nullable=False, default=0)
    quantity_on_hand = Column(Integer, nullable=False, default=1)
    principal_id = Column(String(100), nullable=True)

    rec_created = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    rec_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index('idx_inventory_items_principal_id', 'principal_id'),
    )


class RawPayload(Base):
    """Write-once audit copy of a payload exactly as the marketplace sent it."""

    __tablename__ = "raw_payloads"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    source = Column(String(100), nullable=False)
    principal_id = Column(String(100), nullable=True)
    payload = Column(JSONPayload, nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index('idx_raw_payloads_source', 'source'),
        Index('idx_raw_payloads_received_at', 'received_at'),
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    ebay_order_id = Column(String(100), nullable=False, unique=True)
    principal_id = Column(String(100), nullable=False)

    order_created_at = Column(DateTime(timezone=True), nullable=True)
    buyer_username = Column(String(100), nullable=True)

    total_cents = Column(BigInteger, nullable=False, default=0)
    tax_cents = Column(BigInteger, nullable=False, default=0)
    shipping_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(10), nullable=True)

    payment_status = Column(String(50), nullable=True)
    fulfillment_status = Column(String(50), nullable=True)

    raw_payload_id = Column(BigIntPK, ForeignKey('raw_payloads.id'), nullable=True)

    rec_created = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    rec_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    lines = relationship("OrderLine", back_populates="order", cascade="all, delete-orphan", order_by="OrderLine.id")
    raw_payload = relationship("RawPayload")

    __table_args__ = (
        Index('idx_orders_principal_id', 'principal_id'),
        Index('idx_orders_order_created_at', 'order_created_at'),
    )


class OrderLine(Base):
    __tablename__ = "order_lines"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigIntPK, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    ebay_line_id = Column(String(100), nullable=False)
    sku = Column(String(100), nullable=True)
    ebay_item_id = Column(String(100), nullable=True)
    title = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    item_price_cents = Column(BigInteger, nullable=False, default=0)
    inventory_item_id = Column(BigIntPK, ForeignKey('inventory_items.id'), nullable=True)

    rec_created = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    rec_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    order = relationship("Order", back_populates="lines")
    inventory_item = relationship("InventoryItem")

    __table_args__ = (
        UniqueConstraint('order_id', 'ebay_line_id', name='uq_order_lines_order_id_ebay_line_id'),
        Index('idx_order_lines_sku', 'sku'),
        Index('idx_order_lines_inventory_item_id', 'inventory_item_id'),
    )


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True)
    principal_id = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=SyncRunStatus.running.value)
    window_from = Column(DateTime(timezone=True), nullable=True)
    window_to = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    heartbeat_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    summary_json = Column(JSONPayload, nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_sync_runs_principal_status', 'principal_id', 'status'),
        Index('idx_sync_runs_started_at', 'started_at'),
    )
