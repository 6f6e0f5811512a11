"""
Tests for notification templates and the dispatcher.

Covers:
  - Template lookup and placeholder filling
  - Single and bulk dispatch (bulk isolates per-recipient failures)
  - Recipient-only read / list / mark-all-read
  - Expired notification purge
"""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from core.config import Settings
from core.errors import Forbidden, InvalidArgument, NotFound, Unauthenticated
from core.security import SYSTEM_CALLER, Caller
from db.models import Notification
from notifications.templates import CATEGORIES, fill, get_template, render

# ──────────────────────────────────────────────────────────────────────────
# Templates
# ──────────────────────────────────────────────────────────────────────────


class TestTemplates:
    def test_all_categories_present(self):
        assert set(CATEGORIES) == {"subscription", "shipping", "wine", "inventory", "loyalty", "system"}

    def test_render_fills_placeholders(self):
        title, message = render("shipping", "shipped", {"tracking_number": "TRK123"})
        assert title == "Wine Shipped!"
        assert message.endswith("TRK123")

    def test_render_title_placeholder(self):
        title, _ = render("subscription", "welcome", {"cave_name": "Cave Rouge", "next_shipment_date": "2024-03-01"})
        assert title == "Welcome to Cave Rouge!"

    def test_missing_placeholder_left_verbatim(self):
        _, message = render("shipping", "delayed", {})
        assert "{new_date}" in message

    def test_fill_replaces_every_occurrence(self):
        assert fill("{a} and {a}", {"a": "x"}) == "x and x"

    def test_fill_ignores_none_values(self):
        assert fill("Hello {name}", {"name": None}) == "Hello {name}"

    def test_unknown_template_rejected(self):
        with pytest.raises(InvalidArgument):
            get_template("shipping", "teleported")

    def test_unknown_category_rejected(self):
        with pytest.raises(InvalidArgument):
            render("weather", "sunny")


# ──────────────────────────────────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestSend:
    async def test_send_persists_rendered_notification(self, test_db, seeded_db, notifier):
        member = seeded_db["member"]
        notification = await notifier.send(member.member_id, "shipping", "shipped", {"tracking_number": "TRK9"})
        await test_db.commit()

        stored = await test_db.get(Notification, notification.notification_id)
        assert stored.recipient_id == member.member_id
        assert stored.category == "shipping"
        assert stored.template_key == "shipped"
        assert "TRK9" in stored.message
        assert stored.is_read is False
        assert stored.data == {"tracking_number": "TRK9"}

    async def test_send_to_unknown_recipient(self, seeded_db, notifier):
        with pytest.raises(NotFound):
            await notifier.send(uuid.uuid4(), "system", "update")

    async def test_send_unknown_template_writes_nothing(self, test_db, seeded_db, notifier):
        with pytest.raises(InvalidArgument):
            await notifier.send(seeded_db["member"].member_id, "system", "nope")
        rows = (await test_db.execute(select(Notification))).scalars().all()
        assert rows == []

    async def test_bulk_skips_failing_recipient(self, test_db, seeded_db, notifier):
        """One bad recipient in the middle does not block the others."""
        m1 = seeded_db["member"].member_id
        m3 = seeded_db["owner"].member_id
        missing = uuid.uuid4()

        sent = await notifier.send_bulk([m1, missing, m3], "subscription", "renewal", {"date": "2024-04-01"})

        assert len(sent) == 2
        assert {n.recipient_id for n in sent} == {m1, m3}
        rows = (await test_db.execute(select(Notification))).scalars().all()
        assert len(rows) == 2
        assert all("2024-04-01" in n.message for n in rows)

    async def test_bulk_empty_list(self, seeded_db, notifier):
        assert await notifier.send_bulk([], "system", "update") == []


# ──────────────────────────────────────────────────────────────────────────
# Reading
# ──────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestRecipientAccess:
    async def _seed(self, notifier, test_db, recipient_id, count=3):
        for i in range(count):
            await notifier.send(recipient_id, "wine", "new_arrival", {"varietal": f"V{i}", "region": "Loire"})
        await test_db.commit()

    async def test_mark_read(self, test_db, seeded_db, notifier):
        member = seeded_db["member"]
        notification = await notifier.send(member.member_id, "system", "update")
        await test_db.commit()

        updated = await notifier.mark_read(seeded_db["member_caller"], notification.notification_id)
        assert updated.is_read is True
        assert updated.read_at is not None

    async def test_mark_read_by_other_member_looks_missing(self, test_db, seeded_db, notifier):
        notification = await notifier.send(seeded_db["member"].member_id, "system", "update")
        await test_db.commit()

        with pytest.raises(NotFound):
            await notifier.mark_read(seeded_db["stranger_caller"], notification.notification_id)

    async def test_mark_read_requires_caller(self, seeded_db, notifier):
        with pytest.raises(Unauthenticated):
            await notifier.mark_read(None, uuid.uuid4())

    async def test_list_filters_and_limits(self, test_db, seeded_db, notifier):
        member_id = seeded_db["member"].member_id
        await self._seed(notifier, test_db, member_id, count=3)
        await notifier.send(member_id, "system", "update")
        await test_db.commit()

        caller = seeded_db["member_caller"]
        assert len(await notifier.list_for_recipient(caller, member_id)) == 4
        assert len(await notifier.list_for_recipient(caller, member_id, category="wine")) == 3
        assert len(await notifier.list_for_recipient(caller, member_id, limit=2)) == 2
        # Out-of-range limits are clamped rather than rejected
        assert len(await notifier.list_for_recipient(caller, member_id, limit=0)) == 1

    async def test_default_limit_comes_from_settings(self, test_db, seeded_db, notifier, monkeypatch):
        member_id = seeded_db["member"].member_id
        await self._seed(notifier, test_db, member_id, count=3)
        monkeypatch.setattr("notifications.dispatcher.get_settings", lambda: Settings(notification_list_limit=2))

        caller = seeded_db["member_caller"]
        assert len(await notifier.list_for_recipient(caller, member_id)) == 2
        assert len(await notifier.list_for_recipient(caller, member_id, limit=3)) == 3

    async def test_list_other_member_forbidden(self, seeded_db, notifier):
        with pytest.raises(Forbidden):
            await notifier.list_for_recipient(seeded_db["stranger_caller"], seeded_db["member"].member_id)

    async def test_admin_can_list(self, test_db, seeded_db, notifier):
        member_id = seeded_db["member"].member_id
        await self._seed(notifier, test_db, member_id, count=1)
        admin = Caller(user_id=uuid.uuid4(), is_admin=True)
        assert len(await notifier.list_for_recipient(admin, member_id)) == 1

    async def test_unread_count_and_mark_all(self, test_db, seeded_db, notifier):
        member_id = seeded_db["member"].member_id
        caller = seeded_db["member_caller"]
        await self._seed(notifier, test_db, member_id, count=3)

        assert await notifier.unread_count(caller, member_id) == 3
        assert await notifier.mark_all_read(caller, member_id) == 3
        assert await notifier.unread_count(caller, member_id) == 0
        assert len(await notifier.list_for_recipient(caller, member_id, is_read=True)) == 3

    async def test_mark_all_read_other_member_forbidden(self, seeded_db, notifier):
        with pytest.raises(Forbidden):
            await notifier.mark_all_read(seeded_db["stranger_caller"], seeded_db["member"].member_id)


# ──────────────────────────────────────────────────────────────────────────
# Purge
# ──────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestPurgeExpired:
    async def test_purge_removes_only_expired(self, test_db, seeded_db, notifier):
        member_id = seeded_db["member"].member_id
        now = datetime(2024, 6, 1)
        await notifier.send(member_id, "system", "update", expires_at=now - timedelta(days=1))
        await notifier.send(member_id, "system", "update", expires_at=now + timedelta(days=1))
        await notifier.send(member_id, "system", "update")
        await test_db.commit()

        deleted = await notifier.purge_expired(SYSTEM_CALLER, now=now)

        assert deleted == 1
        remaining = (await test_db.execute(select(Notification))).scalars().all()
        assert len(remaining) == 2

    async def test_purge_requires_admin(self, seeded_db, notifier):
        with pytest.raises(Forbidden):
            await notifier.purge_expired(seeded_db["member_caller"])
