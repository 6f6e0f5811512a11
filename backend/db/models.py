"""
CaveClub Database Models

13 tables for the wine subscription fulfillment and replenishment loop.
Every child of a wine cave carries wine_cave_id so ownership checks are a
single lookup.

Tables:
  Members & Caves:
  1. members               - People: subscribers, cave owners, admins
  2. member_preferences    - Price range / style preferences for recommendations
  3. wine_caves            - Wine clubs, owned by a member

  Subscriptions (4-5):
  4. subscription_tiers    - Priced plans with a bottles-per-month allowance
  5. wine_subscriptions    - Member ↔ cave recurring subscription

  Catalog & Stock (6-8):
  6. suppliers             - Per-cave wine suppliers
  7. wines                 - Catalog with live stock_quantity
  8. wine_ratings          - Member ratings 1..5

  Fulfillment (9-10):
  9. shipments             - Monthly deliveries with carrier tracking
  10. shipment_items       - Bottles committed to a shipment

  Replenishment (11-12):
  11. purchase_orders      - Supplier orders generated from low stock
  12. purchase_order_items - Lines per wine

  Messaging:
  13. notifications        - In-app notifications from templates
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import relationship


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def UUID(as_uuid=True):
    return GUID()


# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Money: two decimal places, returned as Decimal
Money = Numeric(12, 2, asdecimal=True)

from db.session import Base

# ─── 1. Members ────────────────────────────────────────────────────────────


class Member(Base):
    __tablename__ = "members"

    member_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255))
    phone = Column(String(50))
    delivery_address = Column(Text)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 2. Member Preferences ─────────────────────────────────────────────────


class MemberPreferences(Base):
    __tablename__ = "member_preferences"

    preferences_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.member_id"), nullable=False, unique=True)
    price_range_min = Column(Money)
    price_range_max = Column(Money)
    wine_types = Column(JSONType)  # ["red", "white", ...]
    include_varietals = Column(JSONType)
    exclude_varietals = Column(JSONType)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "price_range_min IS NULL OR price_range_max IS NULL OR price_range_min <= price_range_max",
            name="ck_preferences_price_range",
        ),
    )


# ─── 3. Wine Caves ─────────────────────────────────────────────────────────


class WineCave(Base):
    __tablename__ = "wine_caves"

    wine_cave_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("members.member_id"), nullable=False)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    address = Column(Text)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_wine_caves_owner", "owner_id"),
        CheckConstraint("status IN ('active', 'inactive')", name="ck_wine_cave_status"),
    )


# ─── 4. Subscription Tiers ─────────────────────────────────────────────────


class SubscriptionTier(Base):
    __tablename__ = "subscription_tiers"

    tier_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wine_cave_id = Column(UUID(as_uuid=True), ForeignKey("wine_caves.wine_cave_id"), nullable=False)
    name = Column(String(100), nullable=False)
    price = Column(Money, nullable=False)
    bottles_per_month = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_tiers_cave", "wine_cave_id"),
        CheckConstraint("price >= 0", name="ck_tier_price_non_negative"),
        CheckConstraint("bottles_per_month > 0", name="ck_tier_bottles_positive"),
    )


# ─── 5. Wine Subscriptions ─────────────────────────────────────────────────


class WineSubscription(Base):
    """
    Lifecycle: active ↔ paused → cancelled (terminal).

    At most one active subscription per (member, cave), enforced by the
    partial unique index below.
    """

    __tablename__ = "wine_subscriptions"

    subscription_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.member_id"), nullable=False)
    wine_cave_id = Column(UUID(as_uuid=True), ForeignKey("wine_caves.wine_cave_id"), nullable=False)
    tier_id = Column(UUID(as_uuid=True), ForeignKey("subscription_tiers.tier_id"), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    start_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    next_shipment_date = Column(Date)
    delivery_address = Column(Text)
    external_subscription_id = Column(String(255))  # Payment provider reference
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_subscriptions_member", "member_id"),
        Index("ix_subscriptions_due", "status", "next_shipment_date"),
        Index(
            "uq_subscriptions_one_active",
            "member_id",
            "wine_cave_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        CheckConstraint("status IN ('active', 'paused', 'cancelled')", name="ck_subscription_status"),
    )


# ─── 6. Suppliers ──────────────────────────────────────────────────────────


class Supplier(Base):
    __tablename__ = "suppliers"

    supplier_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wine_cave_id = Column(UUID(as_uuid=True), ForeignKey("wine_caves.wine_cave_id"), nullable=False)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    phone = Column(String(50))
    lead_time_days = Column(Integer, nullable=False, default=7)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_suppliers_cave", "wine_cave_id"),
        CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_non_negative"),
    )


# ─── 7. Wines ──────────────────────────────────────────────────────────────


class Wine(Base):
    """
    stock_quantity only moves through single-statement UPDATEs:
    decremented by delivered shipments and sales, incremented by received
    purchase orders.
    """

    __tablename__ = "wines"

    wine_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wine_cave_id = Column(UUID(as_uuid=True), ForeignKey("wine_caves.wine_cave_id"), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"), nullable=True)
    name = Column(String(255), nullable=False)
    wine_type = Column(String(30))  # red, white, rose, sparkling, dessert
    varietal = Column(String(100))
    region = Column(String(100))
    vintage = Column(Integer)
    price = Column(Money, nullable=False)
    cost_price = Column(Money)
    stock_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer)  # NULL = settings.default_low_stock_threshold
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_wines_cave", "wine_cave_id"),
        Index("ix_wines_supplier", "supplier_id"),
        CheckConstraint("stock_quantity >= 0", name="ck_wine_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_wine_price_non_negative"),
    )


# ─── 8. Wine Ratings ───────────────────────────────────────────────────────


class WineRating(Base):
    __tablename__ = "wine_ratings"

    rating_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wine_id = Column(UUID(as_uuid=True), ForeignKey("wines.wine_id"), nullable=False)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.member_id"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("wine_id", "member_id", name="uq_rating_wine_member"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_rating_range"),
    )


# ─── 9. Shipments ──────────────────────────────────────────────────────────


class Shipment(Base):
    """
    pending → labeled → shipped → in_transit → out_for_delivery → delivered,
    with 'delayed' reachable from any non-terminal state.

    The *_at markers record which delivery reconciliation steps already ran.
    """

    __tablename__ = "shipments"

    shipment_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        UUID(as_uuid=True), ForeignKey("wine_subscriptions.subscription_id"), nullable=False
    )
    wine_cave_id = Column(UUID(as_uuid=True), ForeignKey("wine_caves.wine_cave_id"), nullable=False)
    carrier = Column(String(50), nullable=False)
    status = Column(String(30), nullable=False, default="pending")
    status_before_delay = Column(String(30))
    tracking_number = Column(String(100))
    label_url = Column(String(500))
    delivery_address = Column(Text, nullable=False)
    shipment_date = Column(Date, nullable=False)
    cycle_date = Column(Date)  # Subscription next_shipment_date this shipment fulfils
    estimated_delivery = Column(DateTime)
    delivered_at = Column(DateTime)
    stock_reconciled_at = Column(DateTime)
    schedule_advanced_at = Column(DateTime)
    member_notified_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_shipments_cave_status", "wine_cave_id", "status"),
        Index("ix_shipments_subscription_cycle", "subscription_id", "cycle_date"),
        CheckConstraint(
            "status IN ('pending', 'labeled', 'shipped', 'in_transit', 'out_for_delivery', 'delivered', 'delayed')",
            name="ck_shipment_status",
        ),
    )

    items = relationship("ShipmentItem", back_populates="shipment", cascade="all, delete-orphan", lazy="selectin")


# ─── 10. Shipment Items ────────────────────────────────────────────────────


class ShipmentItem(Base):
    __tablename__ = "shipment_items"

    shipment_item_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(UUID(as_uuid=True), ForeignKey("shipments.shipment_id"), nullable=False)
    wine_id = Column(UUID(as_uuid=True), ForeignKey("wines.wine_id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_shipment_items_wine", "wine_id"),
        CheckConstraint("quantity > 0", name="ck_shipment_item_quantity_positive"),
    )

    shipment = relationship("Shipment", back_populates="items")


# ─── 11. Purchase Orders ───────────────────────────────────────────────────


class PurchaseOrder(Base):
    """draft → sent → confirmed → received, cancellable until received."""

    __tablename__ = "purchase_orders"

    po_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wine_cave_id = Column(UUID(as_uuid=True), ForeignKey("wine_caves.wine_cave_id"), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.supplier_id"), nullable=False)
    total_amount = Column(Money, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="draft")
    expected_delivery_date = Column(DateTime)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    sent_at = Column(DateTime)
    received_at = Column(DateTime)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_po_cave_status", "wine_cave_id", "status"),
        Index("ix_po_supplier_status", "supplier_id", "status"),
        Index(
            "uq_po_one_open_per_supplier",
            "wine_cave_id",
            "supplier_id",
            unique=True,
            sqlite_where=text("status IN ('draft', 'sent', 'confirmed')"),
            postgresql_where=text("status IN ('draft', 'sent', 'confirmed')"),
        ),
        CheckConstraint("total_amount >= 0", name="ck_po_total_non_negative"),
        CheckConstraint(
            "status IN ('draft', 'sent', 'confirmed', 'received', 'cancelled')", name="ck_po_status"
        ),
    )

    items = relationship(
        "PurchaseOrderItem", back_populates="purchase_order", cascade="all, delete-orphan", lazy="selectin"
    )


# ─── 12. Purchase Order Items ──────────────────────────────────────────────


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    po_item_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    po_id = Column(UUID(as_uuid=True), ForeignKey("purchase_orders.po_id"), nullable=False)
    wine_id = Column(UUID(as_uuid=True), ForeignKey("wines.wine_id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)

    __table_args__ = (
        Index("ix_po_items_po", "po_id"),
        CheckConstraint("quantity > 0", name="ck_po_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_po_item_price_non_negative"),
    )

    purchase_order = relationship("PurchaseOrder", back_populates="items")


# ─── 13. Notifications ─────────────────────────────────────────────────────


class Notification(Base):
    """
    Rendered in-app notification.

    Categories: subscription, shipping, wine, inventory, loyalty, system.
    Only is_read changes after creation; expired rows are purged by a worker.
    """

    __tablename__ = "notifications"

    notification_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id = Column(UUID(as_uuid=True), ForeignKey("members.member_id"), nullable=False)
    category = Column(String(30), nullable=False)
    template_key = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSONType)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    read_at = Column(DateTime)
    expires_at = Column(DateTime)

    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "is_read", "created_at"),
        Index("ix_notifications_expires", "expires_at"),
    )
