"""
Initial schema - all 13 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _fk(name: str, target: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), sa.ForeignKey(target), nullable=nullable)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime, nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # 1. Members
    op.create_table(
        "members",
        _id("member_id"),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("delivery_address", sa.Text),
        sa.Column("is_admin", sa.Boolean, nullable=False, server_default="false"),
        _timestamp("created_at"),
    )

    # 2. Member preferences
    op.create_table(
        "member_preferences",
        _id("preferences_id"),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("members.member_id"), nullable=False, unique=True),
        sa.Column("price_range_min", sa.Numeric(12, 2)),
        sa.Column("price_range_max", sa.Numeric(12, 2)),
        sa.Column("wine_types", JSONB),
        sa.Column("include_varietals", JSONB),
        sa.Column("exclude_varietals", JSONB),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "price_range_min IS NULL OR price_range_max IS NULL OR price_range_min <= price_range_max",
            name="ck_preferences_price_range",
        ),
    )

    # 3. Wine caves
    op.create_table(
        "wine_caves",
        _id("wine_cave_id"),
        _fk("owner_id", "members.member_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("address", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _timestamp("created_at"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_wine_cave_status"),
    )
    op.create_index("ix_wine_caves_owner", "wine_caves", ["owner_id"])

    # 4. Subscription tiers
    op.create_table(
        "subscription_tiers",
        _id("tier_id"),
        _fk("wine_cave_id", "wine_caves.wine_cave_id"),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("bottles_per_month", sa.Integer, nullable=False, server_default="1"),
        sa.Column("active", sa.Boolean, nullable=False, server_default="true"),
        _timestamp("created_at"),
        sa.CheckConstraint("price >= 0", name="ck_tier_price_non_negative"),
        sa.CheckConstraint("bottles_per_month > 0", name="ck_tier_bottles_positive"),
    )
    op.create_index("ix_tiers_cave", "subscription_tiers", ["wine_cave_id"])

    # 5. Wine subscriptions
    op.create_table(
        "wine_subscriptions",
        _id("subscription_id"),
        _fk("member_id", "members.member_id"),
        _fk("wine_cave_id", "wine_caves.wine_cave_id"),
        _fk("tier_id", "subscription_tiers.tier_id"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _timestamp("start_date"),
        sa.Column("next_shipment_date", sa.Date),
        sa.Column("delivery_address", sa.Text),
        sa.Column("external_subscription_id", sa.String(255)),
        sa.Column("cancelled_at", sa.DateTime),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("status IN ('active', 'paused', 'cancelled')", name="ck_subscription_status"),
    )
    op.create_index("ix_subscriptions_member", "wine_subscriptions", ["member_id"])
    op.create_index("ix_subscriptions_due", "wine_subscriptions", ["status", "next_shipment_date"])
    op.create_index(
        "uq_subscriptions_one_active",
        "wine_subscriptions",
        ["member_id", "wine_cave_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    # 6. Suppliers
    op.create_table(
        "suppliers",
        _id("supplier_id"),
        _fk("wine_cave_id", "wine_caves.wine_cave_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("lead_time_days", sa.Integer, nullable=False, server_default="7"),
        _timestamp("created_at"),
        sa.CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_non_negative"),
    )
    op.create_index("ix_suppliers_cave", "suppliers", ["wine_cave_id"])

    # 7. Wines
    op.create_table(
        "wines",
        _id("wine_id"),
        _fk("wine_cave_id", "wine_caves.wine_cave_id"),
        _fk("supplier_id", "suppliers.supplier_id", nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("wine_type", sa.String(30)),
        sa.Column("varietal", sa.String(100)),
        sa.Column("region", sa.String(100)),
        sa.Column("vintage", sa.Integer),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("cost_price", sa.Numeric(12, 2)),
        sa.Column("stock_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Integer),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_wine_stock_non_negative"),
        sa.CheckConstraint("price >= 0", name="ck_wine_price_non_negative"),
    )
    op.create_index("ix_wines_cave", "wines", ["wine_cave_id"])
    op.create_index("ix_wines_supplier", "wines", ["supplier_id"])

    # 8. Wine ratings
    op.create_table(
        "wine_ratings",
        _id("rating_id"),
        _fk("wine_id", "wines.wine_id"),
        _fk("member_id", "members.member_id"),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text),
        _timestamp("created_at"),
        sa.UniqueConstraint("wine_id", "member_id", name="uq_rating_wine_member"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_rating_range"),
    )

    # 9. Shipments
    op.create_table(
        "shipments",
        _id("shipment_id"),
        _fk("subscription_id", "wine_subscriptions.subscription_id"),
        _fk("wine_cave_id", "wine_caves.wine_cave_id"),
        sa.Column("carrier", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("status_before_delay", sa.String(30)),
        sa.Column("tracking_number", sa.String(100)),
        sa.Column("label_url", sa.String(500)),
        sa.Column("delivery_address", sa.Text, nullable=False),
        sa.Column("shipment_date", sa.Date, nullable=False),
        sa.Column("cycle_date", sa.Date),
        sa.Column("estimated_delivery", sa.DateTime),
        sa.Column("delivered_at", sa.DateTime),
        sa.Column("stock_reconciled_at", sa.DateTime),
        sa.Column("schedule_advanced_at", sa.DateTime),
        sa.Column("member_notified_at", sa.DateTime),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('pending', 'labeled', 'shipped', 'in_transit', 'out_for_delivery', 'delivered', 'delayed')",
            name="ck_shipment_status",
        ),
    )
    op.create_index("ix_shipments_cave_status", "shipments", ["wine_cave_id", "status"])
    op.create_index("ix_shipments_subscription_cycle", "shipments", ["subscription_id", "cycle_date"])

    # 10. Shipment items
    op.create_table(
        "shipment_items",
        _id("shipment_item_id"),
        _fk("shipment_id", "shipments.shipment_id"),
        _fk("wine_id", "wines.wine_id"),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_shipment_item_quantity_positive"),
    )
    op.create_index("ix_shipment_items_wine", "shipment_items", ["wine_id"])

    # 11. Purchase orders
    op.create_table(
        "purchase_orders",
        _id("po_id"),
        _fk("wine_cave_id", "wine_caves.wine_cave_id"),
        _fk("supplier_id", "suppliers.supplier_id"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("expected_delivery_date", sa.DateTime),
        sa.Column("notes", sa.Text),
        _timestamp("created_at"),
        sa.Column("sent_at", sa.DateTime),
        sa.Column("received_at", sa.DateTime),
        _timestamp("updated_at"),
        sa.CheckConstraint("total_amount >= 0", name="ck_po_total_non_negative"),
        sa.CheckConstraint("status IN ('draft', 'sent', 'confirmed', 'received', 'cancelled')", name="ck_po_status"),
    )
    op.create_index("ix_po_cave_status", "purchase_orders", ["wine_cave_id", "status"])
    op.create_index("ix_po_supplier_status", "purchase_orders", ["supplier_id", "status"])
    op.create_index(
        "uq_po_one_open_per_supplier",
        "purchase_orders",
        ["wine_cave_id", "supplier_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('draft', 'sent', 'confirmed')"),
    )

    # 12. Purchase order items
    op.create_table(
        "purchase_order_items",
        _id("po_item_id"),
        _fk("po_id", "purchase_orders.po_id"),
        _fk("wine_id", "wines.wine_id"),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_po_item_quantity_positive"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_item_price_non_negative"),
    )
    op.create_index("ix_po_items_po", "purchase_order_items", ["po_id"])

    # 13. Notifications
    op.create_table(
        "notifications",
        _id("notification_id"),
        _fk("recipient_id", "members.member_id"),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("template_key", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", JSONB),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="false"),
        _timestamp("created_at"),
        sa.Column("read_at", sa.DateTime),
        sa.Column("expires_at", sa.DateTime),
    )
    op.create_index(
        "ix_notifications_recipient_read", "notifications", ["recipient_id", "is_read", "created_at"]
    )
    op.create_index("ix_notifications_expires", "notifications", ["expires_at"])


def downgrade() -> None:
    tables = [
        "notifications",
        "purchase_order_items",
        "purchase_orders",
        "shipment_items",
        "shipments",
        "wine_ratings",
        "wines",
        "suppliers",
        "wine_subscriptions",
        "subscription_tiers",
        "wine_caves",
        "member_preferences",
        "members",
    ]
    for table in tables:
        op.drop_table(table)
