"""
Subscription Lifecycle Manager.

Owns the WineSubscription state machine:

    (payment succeeded) → active ↔ paused → cancelled (terminal)

and the monthly delivery schedule: next_shipment_date is always the first
day of a month and moves forward one month per delivered shipment.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Conflict, Forbidden, InvalidArgument, NotFound
from core.security import SYSTEM_CALLER, Caller, require_caller
from db.models import Member, MemberPreferences, SubscriptionTier, WineSubscription
from db.ownership import get_cave
from integrations.payments import PaymentEvent, PaymentEventType
from notifications.dispatcher import NotificationDispatcher
from subscriptions.schedule import first_of_next_month, utc_today

logger = structlog.get_logger()

SUBSCRIPTION_STATUSES = ("active", "paused", "cancelled")

STATUS_NOTIFICATIONS = {
    "paused": "paused",
    "active": "resumed",
    "cancelled": "cancelled",
}


class SubscriptionManager:
    def __init__(self, db: AsyncSession, notifier: NotificationDispatcher | None = None):
        self.db = db
        self.notifier = notifier or NotificationDispatcher(db)

    # ── Queries ───────────────────────────────────────────────────────

    async def _active_for_pair(
        self, member_id: uuid.UUID, wine_cave_id: uuid.UUID, exclude: uuid.UUID | None = None
    ) -> WineSubscription | None:
        query = select(WineSubscription).where(
            WineSubscription.member_id == member_id,
            WineSubscription.wine_cave_id == wine_cave_id,
            WineSubscription.status == "active",
        )
        if exclude is not None:
            query = query.where(WineSubscription.subscription_id != exclude)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def get(self, caller: Caller, subscription_id: uuid.UUID) -> WineSubscription:
        """Readable by the member and by the cave owner."""
        caller = require_caller(caller)
        sub = await self.db.get(WineSubscription, subscription_id)
        if sub is None:
            raise NotFound(f"Subscription {subscription_id} not found")
        if not caller.can_act_for(sub.member_id) and not caller.is_admin:
            cave = await get_cave(self.db, sub.wine_cave_id)
            if not caller.is_user(cave.owner_id):
                raise Forbidden("Cannot view another member's subscription")
        return sub

    async def list_for_member(self, caller: Caller, member_id: uuid.UUID) -> list[WineSubscription]:
        caller = require_caller(caller)
        if not (caller.can_act_for(member_id) or caller.is_admin):
            raise Forbidden("Cannot list another member's subscriptions")
        result = await self.db.execute(
            select(WineSubscription)
            .where(WineSubscription.member_id == member_id)
            .order_by(WineSubscription.created_at.desc())
        )
        return list(result.scalars().all())

    async def due_for_shipment(
        self, on_date: date, wine_cave_id: uuid.UUID | None = None
    ) -> list[WineSubscription]:
        """Active subscriptions whose next shipment date has arrived."""
        query = select(WineSubscription).where(
            WineSubscription.status == "active",
            WineSubscription.next_shipment_date.is_not(None),
            WineSubscription.next_shipment_date <= on_date,
        )
        if wine_cave_id is not None:
            query = query.where(WineSubscription.wine_cave_id == wine_cave_id)
        result = await self.db.execute(query.order_by(WineSubscription.next_shipment_date, WineSubscription.created_at))
        return list(result.scalars().all())

    # ── Commands ──────────────────────────────────────────────────────

    async def activate(
        self,
        caller: Caller,
        member_id: uuid.UUID,
        wine_cave_id: uuid.UUID,
        tier_id: uuid.UUID,
        delivery_address: str | None = None,
        external_subscription_id: str | None = None,
    ) -> WineSubscription:
        """Start a subscription after the first successful payment."""
        caller = require_caller(caller)
        if not caller.can_act_for(member_id):
            raise Forbidden("Subscriptions can only be started by the member")

        member = await self.db.get(Member, member_id)
        if member is None:
            raise NotFound(f"Member {member_id} not found")
        cave = await get_cave(self.db, wine_cave_id)

        tier = await self.db.get(SubscriptionTier, tier_id)
        if tier is None or not tier.active or tier.wine_cave_id != cave.wine_cave_id:
            raise NotFound(f"Subscription tier {tier_id} not found or inactive")

        if await self._active_for_pair(member_id, wine_cave_id) is not None:
            raise Conflict("Member already has an active subscription to this wine cave")

        sub = WineSubscription(
            member_id=member_id,
            wine_cave_id=wine_cave_id,
            tier_id=tier_id,
            status="active",
            start_date=datetime.utcnow(),
            next_shipment_date=first_of_next_month(utc_today()),
            delivery_address=delivery_address,
            external_subscription_id=external_subscription_id,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(sub)
        except IntegrityError:
            # Concurrent activation won the unique index
            raise Conflict("Member already has an active subscription to this wine cave")
        await self.db.commit()

        logger.info(
            "subscription.activated",
            subscription_id=str(sub.subscription_id),
            member_id=str(member_id),
            wine_cave_id=str(wine_cave_id),
            next_shipment_date=sub.next_shipment_date.isoformat(),
        )
        await self._notify(
            member_id,
            "welcome",
            {"cave_name": cave.name, "next_shipment_date": sub.next_shipment_date.isoformat()},
        )
        return sub

    async def set_status(self, caller: Caller, subscription_id: uuid.UUID, new_status: str) -> WineSubscription:
        """Member-driven pause / resume / cancel."""
        caller = require_caller(caller)
        sub = await self.db.get(WineSubscription, subscription_id)
        if sub is None or sub.status == "cancelled":
            raise NotFound(f"Subscription {subscription_id} not found")
        if not caller.can_act_for(sub.member_id):
            raise Forbidden("Only the subscriber can change this subscription")
        if new_status not in SUBSCRIPTION_STATUSES:
            raise InvalidArgument(f"Unknown subscription status '{new_status}'", status=new_status)

        if new_status == sub.status:
            return sub

        if new_status == "active":
            if await self._active_for_pair(sub.member_id, sub.wine_cave_id, exclude=sub.subscription_id):
                raise Conflict("Member already has an active subscription to this wine cave")

        previous = sub.status
        try:
            async with self.db.begin_nested():
                sub.status = new_status
                if new_status == "cancelled":
                    sub.cancelled_at = datetime.utcnow()
        except IntegrityError:
            await self.db.refresh(sub)
            raise Conflict("Member already has an active subscription to this wine cave")
        await self.db.commit()

        logger.info(
            "subscription.status_changed",
            subscription_id=str(subscription_id),
            previous=previous,
            status=new_status,
        )
        await self._notify(
            sub.member_id,
            STATUS_NOTIFICATIONS[new_status],
            {"next_shipment_date": sub.next_shipment_date.isoformat() if sub.next_shipment_date else ""},
        )
        return sub

    async def advance_schedule(self, subscription_id: uuid.UUID) -> date | None:
        """
        Move next_shipment_date to the first of the following month.

        Computed from the current next_shipment_date, not from today, so a
        late delivery does not shift the cycle. Flushes; the caller commits.
        """
        sub = await self.db.get(WineSubscription, subscription_id)
        if sub is None:
            raise NotFound(f"Subscription {subscription_id} not found")
        if sub.status == "cancelled":
            logger.info("subscription.advance_skipped_cancelled", subscription_id=str(subscription_id))
            return sub.next_shipment_date

        sub.next_shipment_date = first_of_next_month(sub.next_shipment_date or utc_today())
        await self.db.flush()
        logger.info(
            "subscription.schedule_advanced",
            subscription_id=str(subscription_id),
            next_shipment_date=sub.next_shipment_date.isoformat(),
        )
        return sub.next_shipment_date

    # ── Preferences ───────────────────────────────────────────────────

    async def get_preferences(self, caller: Caller, member_id: uuid.UUID) -> MemberPreferences | None:
        caller = require_caller(caller)
        if not (caller.can_act_for(member_id) or caller.is_admin):
            raise Forbidden("Cannot view another member's preferences")
        result = await self.db.execute(select(MemberPreferences).where(MemberPreferences.member_id == member_id))
        return result.scalar_one_or_none()

    async def update_preferences(
        self,
        caller: Caller,
        member_id: uuid.UUID,
        price_range_min: Decimal | None = None,
        price_range_max: Decimal | None = None,
        wine_types: list[str] | None = None,
        include_varietals: list[str] | None = None,
        exclude_varietals: list[str] | None = None,
    ) -> MemberPreferences:
        """Create or update the member's taste profile. None leaves a field unchanged."""
        caller = require_caller(caller)
        if not caller.can_act_for(member_id):
            raise Forbidden("Only the member can change their preferences")
        for bound in (price_range_min, price_range_max):
            if bound is not None and bound < 0:
                raise InvalidArgument("Price range bounds must not be negative", bound=bound)

        prefs = await self.get_preferences(caller, member_id)
        created = prefs is None
        if created:
            if await self.db.get(Member, member_id) is None:
                raise NotFound(f"Member {member_id} not found")
            prefs = MemberPreferences(member_id=member_id)

        low = price_range_min if price_range_min is not None else prefs.price_range_min
        high = price_range_max if price_range_max is not None else prefs.price_range_max
        if low is not None and high is not None and low > high:
            raise InvalidArgument("Minimum price must not exceed maximum price", price_range_min=low, price_range_max=high)

        changes = {
            "price_range_min": price_range_min,
            "price_range_max": price_range_max,
            "wine_types": wine_types,
            "include_varietals": include_varietals,
            "exclude_varietals": exclude_varietals,
        }
        try:
            async with self.db.begin_nested():
                if created:
                    self.db.add(prefs)
                for field, value in changes.items():
                    if value is not None:
                        setattr(prefs, field, value)
        except IntegrityError:
            raise Conflict("Preferences were created concurrently; retry the update")
        await self.db.commit()

        logger.info(
            "subscription.preferences_updated",
            member_id=str(member_id),
            created=created,
            fields=sorted(field for field, value in changes.items() if value is not None),
        )
        return prefs

    async def handle_payment_event(self, event: PaymentEvent) -> WineSubscription | None:
        """Apply a payment provider event on behalf of the system."""
        existing = await self._find_for_event(event)

        if event.event_type == PaymentEventType.PAYMENT_SUCCEEDED:
            if existing is not None and existing.status == "active":
                return existing
            if existing is not None and existing.status == "paused":
                return await self.set_status(SYSTEM_CALLER, existing.subscription_id, "active")
            if event.tier_id is None:
                raise InvalidArgument("Payment event has no tier to subscribe to")
            return await self.activate(
                SYSTEM_CALLER,
                event.member_id,
                event.wine_cave_id,
                event.tier_id,
                delivery_address=event.delivery_address,
                external_subscription_id=event.external_subscription_id,
            )

        if existing is None:
            logger.warning(
                "subscription.payment_event_unmatched",
                event_type=event.event_type.value,
                member_id=str(event.member_id),
                wine_cave_id=str(event.wine_cave_id),
            )
            return None

        if event.event_type == PaymentEventType.PAYMENT_FAILED:
            if existing.status == "active":
                existing.status = "paused"
                await self.db.commit()
                logger.info("subscription.paused_payment_failed", subscription_id=str(existing.subscription_id))
            await self._notify(existing.member_id, "payment_failed", {})
            return existing

        return await self.set_status(SYSTEM_CALLER, existing.subscription_id, "cancelled")

    async def _find_for_event(self, event: PaymentEvent) -> WineSubscription | None:
        query = select(WineSubscription).where(WineSubscription.status != "cancelled")
        if event.external_subscription_id:
            by_ref = await self.db.execute(
                query.where(WineSubscription.external_subscription_id == event.external_subscription_id).limit(1)
            )
            found = by_ref.scalar_one_or_none()
            if found is not None:
                return found
        result = await self.db.execute(
            query.where(
                WineSubscription.member_id == event.member_id,
                WineSubscription.wine_cave_id == event.wine_cave_id,
            ).order_by(WineSubscription.status, WineSubscription.created_at.desc())
        )
        return result.scalars().first()

    async def _notify(self, member_id: uuid.UUID, template_key: str, data: dict) -> None:
        try:
            async with self.db.begin_nested():
                await self.notifier.send(member_id, "subscription", template_key, data)
            await self.db.commit()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "subscription.notify_failed",
                member_id=str(member_id),
                template_key=template_key,
                error=str(exc),
            )
