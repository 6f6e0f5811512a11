"""
Worker end-to-end tests: Celery task bodies run against a file-backed SQLite DB.
"""

import asyncio
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base

CAVE_ID = "00000000-0000-0000-0000-000000000201"
OWNER_ID = "00000000-0000-0000-0000-000000000001"
MEMBER_ID = "00000000-0000-0000-0000-000000000002"


def _savepoint_engine(url, **kwargs):
    engine = create_async_engine(url, **kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
def worker_db(tmp_path, monkeypatch):
    """Seed a cave with one low-stock wine and one due subscription."""
    from db.models import Member, SubscriptionTier, Supplier, Wine, WineCave, WineSubscription

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}"
    engine = _savepoint_engine(db_url)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            db.add_all(
                [
                    Member(member_id=OWNER_ID, email="owner@example.com", name="Owner"),
                    Member(
                        member_id=MEMBER_ID,
                        email="member@example.com",
                        name="Member",
                        delivery_address="4 rue Mercière, 69002 Lyon",
                    ),
                ]
            )
            await db.flush()
            db.add(WineCave(wine_cave_id=CAVE_ID, owner_id=OWNER_ID, name="Cave E2E"))
            await db.flush()
            supplier = Supplier(wine_cave_id=CAVE_ID, name="Négociant", contact_email="po@negociant.test")
            tier = SubscriptionTier(wine_cave_id=CAVE_ID, name="Solo", price=Decimal("19.90"), bottles_per_month=1)
            db.add_all([supplier, tier])
            await db.flush()
            db.add_all(
                [
                    Wine(
                        wine_cave_id=CAVE_ID,
                        supplier_id=supplier.supplier_id,
                        name="Sancerre 2022",
                        price=Decimal("20.00"),
                        stock_quantity=4,
                        low_stock_threshold=5,
                    ),
                    WineSubscription(
                        member_id=MEMBER_ID,
                        wine_cave_id=CAVE_ID,
                        tier_id=tier.tier_id,
                        status="active",
                        next_shipment_date=date(2024, 3, 1),
                    ),
                ]
            )
            await db.commit()

    asyncio.run(_seed())

    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: SimpleNamespace(database_url=db_url, purchase_order_auto_send=False),
    )
    monkeypatch.setattr("workers.replenishment.create_async_engine", _savepoint_engine)
    monkeypatch.setattr("workers.fulfillment.create_async_engine", _savepoint_engine)

    yield session_factory

    asyncio.run(engine.dispose())


def test_generate_purchase_orders_task(worker_db):
    from db.models import PurchaseOrder
    from workers.replenishment import generate_purchase_orders

    result = generate_purchase_orders.run(wine_cave_id=CAVE_ID)
    assert result["status"] == "success"
    assert result["orders_created"] == 1
    assert result["auto_send"] is False

    rerun = generate_purchase_orders.run(wine_cave_id=CAVE_ID)
    assert rerun["orders_created"] == 0

    async def _orders():
        async with worker_db() as db:
            return (await db.execute(select(PurchaseOrder))).scalars().all()

    orders = asyncio.run(_orders())
    assert len(orders) == 1
    assert orders[0].status == "draft"
    assert orders[0].total_amount == Decimal("240.00")


def test_create_due_shipments_task(worker_db):
    from db.models import Shipment
    from workers.fulfillment import create_due_shipments

    result = create_due_shipments.run(wine_cave_id=CAVE_ID, on_date="2024-03-01", auto_label=False)
    assert result["status"] == "success"
    assert result["created"] == 1

    async def _shipments():
        async with worker_db() as db:
            return (await db.execute(select(Shipment))).scalars().all()

    [shipment] = asyncio.run(_shipments())
    assert shipment.status == "pending"
    assert shipment.cycle_date == date(2024, 3, 1)
    assert shipment.delivery_address == "4 rue Mercière, 69002 Lyon"
