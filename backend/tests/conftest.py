"""
Test Configuration - Fixtures for async DB, test client, fake collaborators and seed data.

Each test gets its own in-memory SQLite database. aiosqlite's implicit
BEGIN handling is disabled so SAVEPOINTs (used for per-recipient and
per-step isolation) behave like they do on PostgreSQL.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_carrier, get_current_caller, get_db, get_email
from api.main import app
from core.security import Caller
from db.session import Base
from integrations.carriers import CarrierClient, CarrierError, LabelResult, TrackingInfo
from notifications.email import EmailDeliveryError, EmailSender

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ─── Fake collaborators ─────────────────────────────────────────────────────


class FakeCarrier(CarrierClient):
    """Deterministic carrier: scripted tracking statuses, optional failures."""

    def __init__(self):
        self.labels_requested = []
        self.tracking_status = "in_transit"
        self.fail_labels = False
        self.fail_tracking = False
        self._counter = 0

    async def generate_label(self, request):
        self.labels_requested.append(request)
        if self.fail_labels:
            raise CarrierError("carrier unavailable")
        self._counter += 1
        return LabelResult(
            tracking_number=f"TRK{self._counter:06d}",
            label_url=f"https://labels.test/{self._counter}.pdf",
            estimated_delivery=datetime(2030, 1, 5, 12, 0),
        )

    async def get_tracking(self, carrier, tracking_number):
        if self.fail_tracking:
            raise CarrierError("tracking unavailable")
        return TrackingInfo(tracking_number=tracking_number, status=self.tracking_status, location="Lyon")


class RecordingEmailSender(EmailSender):
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to_email, subject, body):
        if self.fail:
            raise EmailDeliveryError("smtp down")
        self.sent.append({"to": to_email, "subject": subject, "body": body})


# ─── Database ───────────────────────────────────────────────────────────────


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    async with AsyncSession(test_engine, expire_on_commit=False) as session:
        yield session


# ─── Collaborators & services ───────────────────────────────────────────────


@pytest.fixture
def fake_carrier():
    return FakeCarrier()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def notifier(test_db):
    from notifications.dispatcher import NotificationDispatcher

    return NotificationDispatcher(test_db)


@pytest.fixture
def inventory(test_db, notifier, email_sender):
    from inventory.replenishment import InventoryMonitor

    return InventoryMonitor(test_db, notifier, email_sender)


@pytest.fixture
def subscriptions(test_db, notifier):
    from subscriptions.lifecycle import SubscriptionManager

    return SubscriptionManager(test_db, notifier)


@pytest.fixture
def pipeline(test_db, fake_carrier, notifier, subscriptions, inventory):
    from fulfillment.pipeline import FulfillmentPipeline

    return FulfillmentPipeline(
        test_db,
        fake_carrier,
        notifier=notifier,
        subscriptions=subscriptions,
        inventory=inventory,
    )


# ─── Seed data ──────────────────────────────────────────────────────────────


@pytest.fixture
async def seeded_db(test_db):
    """
    One cave with an owner, a subscribed member, a stranger, a supplier
    and three wines:
      - Pinot Noir 2021   stock 8,  threshold 10, no cost price, supplier S1
      - Chablis 2022      stock 50, threshold 10, cost 14.00,     supplier S1
      - Cotes du Rhone    stock 5,  default threshold, no supplier
    """
    from db.models import (
        Member,
        SubscriptionTier,
        Supplier,
        Wine,
        WineCave,
        WineSubscription,
    )

    owner = Member(email="owner@cave.test", name="Cave Owner")
    member = Member(email="member@club.test", name="Club Member", delivery_address="12 rue des Vignes, 69001 Lyon")
    stranger = Member(email="stranger@club.test", name="Stranger")
    test_db.add_all([owner, member, stranger])
    await test_db.flush()

    cave = WineCave(owner_id=owner.member_id, name="Cave du Test", contact_email="cave@cave.test")
    test_db.add(cave)
    await test_db.flush()

    tier = SubscriptionTier(
        wine_cave_id=cave.wine_cave_id,
        name="Découverte",
        price=Decimal("39.90"),
        bottles_per_month=2,
    )
    supplier = Supplier(
        wine_cave_id=cave.wine_cave_id,
        name="Domaine S1",
        contact_email="orders@s1.test",
        lead_time_days=7,
    )
    test_db.add_all([tier, supplier])
    await test_db.flush()

    pinot = Wine(
        wine_cave_id=cave.wine_cave_id,
        supplier_id=supplier.supplier_id,
        name="Pinot Noir 2021",
        varietal="Pinot Noir",
        region="Bourgogne",
        vintage=2021,
        price=Decimal("20.00"),
        stock_quantity=8,
        low_stock_threshold=10,
    )
    chablis = Wine(
        wine_cave_id=cave.wine_cave_id,
        supplier_id=supplier.supplier_id,
        name="Chablis 2022",
        varietal="Chardonnay",
        region="Bourgogne",
        vintage=2022,
        price=Decimal("25.00"),
        cost_price=Decimal("14.00"),
        stock_quantity=50,
        low_stock_threshold=10,
    )
    rhone = Wine(
        wine_cave_id=cave.wine_cave_id,
        name="Cotes du Rhone 2020",
        varietal="Grenache",
        region="Rhone",
        vintage=2020,
        price=Decimal("12.00"),
        stock_quantity=5,
    )
    test_db.add_all([pinot, chablis, rhone])
    await test_db.flush()

    subscription = WineSubscription(
        member_id=member.member_id,
        wine_cave_id=cave.wine_cave_id,
        tier_id=tier.tier_id,
        status="active",
        start_date=datetime(2024, 2, 10),
        next_shipment_date=date(2024, 3, 1),
    )
    test_db.add(subscription)
    await test_db.commit()

    return {
        "owner": owner,
        "member": member,
        "stranger": stranger,
        "cave": cave,
        "tier": tier,
        "supplier": supplier,
        "pinot": pinot,
        "chablis": chablis,
        "rhone": rhone,
        "subscription": subscription,
        "owner_caller": Caller(user_id=owner.member_id),
        "member_caller": Caller(user_id=member.member_id),
        "stranger_caller": Caller(user_id=stranger.member_id),
    }


# ─── HTTP client ────────────────────────────────────────────────────────────


class CallerOverride:
    """Mutable caller returned by the get_current_caller override."""

    def __init__(self):
        self.caller = None

    def __call__(self):
        return self.caller


@pytest.fixture
def api_caller():
    return CallerOverride()


@pytest.fixture
async def client(test_db, api_caller, fake_carrier, email_sender):
    """Async test client with the caller, DB and collaborators overridden."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_caller] = api_caller
    app.dependency_overrides[get_carrier] = lambda: fake_carrier
    app.dependency_overrides[get_email] = lambda: email_sender

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def raw_client(test_db):
    """Test client that keeps real JWT authentication."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
