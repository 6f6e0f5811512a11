"""
Shipment Fulfillment Pipeline.

Turns a due subscription cycle into a tracked parcel:
1. create_shipment   - commit bottles against available stock
2. generate_label    - ask the carrier for a tracking number
3. track / update    - move the shipment along its status machine
4. on delivery       - decrement stock, advance the subscription schedule,
                       tell the member

Step 4 is split into independently stamped sub-steps so a failure part way
can be finished later by re-running reconcile_delivery.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import Conflict, Forbidden, Internal, InvalidArgument, NotFound, ServiceError
from core.security import SYSTEM_CALLER, Caller, require_caller
from db.models import Member, Shipment, ShipmentItem, SubscriptionTier, Wine, WineSubscription
from db.ownership import get_cave, require_cave_owner
from fulfillment.states import DELAYED, DELIVERED, can_transition, check_transition, is_known
from integrations.addresses import AddressValidationError, AddressValidator
from integrations.carriers import CarrierClient, CarrierError, LabelRequest, TrackingInfo
from inventory.replenishment import InventoryMonitor
from notifications.dispatcher import NotificationDispatcher
from recommendations.scorer import recommend_for_member
from subscriptions.lifecycle import SubscriptionManager
from subscriptions.schedule import first_of_next_month, utc_today

logger = structlog.get_logger()

TRACKING_NOT_AVAILABLE = "Tracking information not yet available"
TRACKABLE_STATUSES = ("labeled", "shipped", "in_transit", "out_for_delivery", "delayed")


@dataclass
class WineSelection:
    wine_id: uuid.UUID
    quantity: int


class FulfillmentPipeline:
    def __init__(
        self,
        db: AsyncSession,
        carrier: CarrierClient,
        notifier: NotificationDispatcher | None = None,
        subscriptions: SubscriptionManager | None = None,
        inventory: InventoryMonitor | None = None,
        address_validator: AddressValidator | None = None,
    ):
        self.db = db
        self.carrier = carrier
        self.notifier = notifier or NotificationDispatcher(db)
        self.subscriptions = subscriptions or SubscriptionManager(db, self.notifier)
        self.inventory = inventory or InventoryMonitor(db, self.notifier)
        self.address_validator = address_validator

    # ── Lookups ───────────────────────────────────────────────────────

    async def _get_shipment(self, shipment_id: uuid.UUID) -> Shipment:
        shipment = await self.db.get(Shipment, shipment_id)
        if shipment is None:
            raise NotFound(f"Shipment {shipment_id} not found")
        return shipment

    async def _owned_shipment(self, caller: Caller, shipment_id: uuid.UUID) -> Shipment:
        caller = require_caller(caller)
        shipment = await self._get_shipment(shipment_id)
        await require_cave_owner(self.db, caller, shipment.wine_cave_id)
        return shipment

    async def get(self, caller: Caller, shipment_id: uuid.UUID) -> Shipment:
        """Readable by the cave owner and by the subscribed member."""
        caller = require_caller(caller)
        shipment = await self._get_shipment(shipment_id)
        await self._require_owner_or_member(caller, shipment)
        return shipment

    async def _require_owner_or_member(self, caller: Caller, shipment: Shipment) -> None:
        if caller.is_admin:
            return
        sub = await self.db.get(WineSubscription, shipment.subscription_id)
        if sub is not None and caller.is_user(sub.member_id):
            return
        cave = await get_cave(self.db, shipment.wine_cave_id)
        if caller.is_user(cave.owner_id):
            return
        raise Forbidden("Only the cave owner or the subscriber can view this shipment")

    async def list_for_cave(
        self, caller: Caller, wine_cave_id: uuid.UUID, status: str | None = None
    ) -> list[Shipment]:
        caller = require_caller(caller)
        await require_cave_owner(self.db, caller, wine_cave_id)
        query = select(Shipment).where(Shipment.wine_cave_id == wine_cave_id)
        if status:
            query = query.where(Shipment.status == status)
        result = await self.db.execute(query.order_by(Shipment.created_at.desc()))
        return list(result.scalars().all())

    async def committed_quantity(self, wine_id: uuid.UUID) -> int:
        """Bottles on shipments whose stock has not been decremented yet."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(ShipmentItem.quantity), 0))
            .join(Shipment, Shipment.shipment_id == ShipmentItem.shipment_id)
            .where(ShipmentItem.wine_id == wine_id, Shipment.stock_reconciled_at.is_(None))
        )
        return int(result.scalar() or 0)

    # ── Create ────────────────────────────────────────────────────────

    async def create_shipment(
        self,
        caller: Caller,
        subscription_id: uuid.UUID,
        carrier: str,
        wine_selections: list[WineSelection],
    ) -> Shipment:
        caller = require_caller(caller)
        sub = await self.db.get(WineSubscription, subscription_id)
        if sub is None:
            raise NotFound(f"Subscription {subscription_id} not found")
        await require_cave_owner(self.db, caller, sub.wine_cave_id)
        if sub.status == "cancelled":
            raise Conflict("Cannot ship to a cancelled subscription", subscription_id=subscription_id)
        if not self.carrier.supports(carrier):
            raise InvalidArgument(f"Unsupported carrier '{carrier}'", carrier=carrier)

        quantities: dict[uuid.UUID, int] = {}
        for selection in wine_selections:
            if selection.quantity <= 0:
                raise InvalidArgument("Bottle quantities must be positive", wine_id=selection.wine_id)
            quantities[selection.wine_id] = quantities.get(selection.wine_id, 0) + selection.quantity

        address = await self._delivery_address(sub)

        for wine_id, quantity in quantities.items():
            wine = await self.db.get(Wine, wine_id)
            if wine is None or wine.wine_cave_id != sub.wine_cave_id:
                raise NotFound(f"Wine {wine_id} not found in this wine cave")
            committed = await self.committed_quantity(wine_id)
            if committed + quantity > wine.stock_quantity:
                raise Conflict(
                    f"Not enough stock for {wine.name}",
                    wine_id=wine_id,
                    requested=quantity,
                    available=wine.stock_quantity - committed,
                )

        shipment = Shipment(
            subscription_id=sub.subscription_id,
            wine_cave_id=sub.wine_cave_id,
            carrier=carrier.strip().lower(),
            status="pending",
            delivery_address=address,
            shipment_date=first_of_next_month(utc_today()),
            cycle_date=sub.next_shipment_date,
            items=[ShipmentItem(wine_id=wine_id, quantity=qty) for wine_id, qty in quantities.items()],
        )
        self.db.add(shipment)
        await self.db.commit()

        logger.info(
            "shipment.created",
            shipment_id=str(shipment.shipment_id),
            subscription_id=str(subscription_id),
            carrier=shipment.carrier,
            bottles=sum(quantities.values()),
        )
        return shipment

    async def _delivery_address(self, sub: WineSubscription) -> str:
        address = sub.delivery_address
        if not address:
            member = await self.db.get(Member, sub.member_id)
            address = member.delivery_address if member is not None else None
        if not address:
            raise InvalidArgument("Subscription has no delivery address", subscription_id=sub.subscription_id)
        if self.address_validator is not None:
            try:
                address = self.address_validator.validate(address)
            except AddressValidationError as exc:
                raise InvalidArgument(f"Invalid delivery address: {exc}")
        return address

    # ── Label ─────────────────────────────────────────────────────────

    async def generate_label(self, caller: Caller, shipment_id: uuid.UUID) -> Shipment:
        shipment = await self._owned_shipment(caller, shipment_id)
        if shipment.status != "pending":
            raise Conflict(f"Cannot label a shipment in status '{shipment.status}'")

        sub = await self.db.get(WineSubscription, shipment.subscription_id)
        member = await self.db.get(Member, sub.member_id)
        cave = await get_cave(self.db, shipment.wine_cave_id)

        request = LabelRequest(
            carrier=shipment.carrier,
            reference=str(shipment.shipment_id),
            recipient_name=member.name or member.email,
            delivery_address=shipment.delivery_address,
            sender_name=cave.name,
            sender_address=cave.address,
            bottle_count=sum(item.quantity for item in shipment.items),
        )
        try:
            label = await self.carrier.generate_label(request)
        except CarrierError as exc:
            logger.error("shipment.label_failed", shipment_id=str(shipment_id), error=str(exc))
            raise Internal("Failed to generate shipping label")

        shipment.tracking_number = label.tracking_number
        shipment.label_url = label.label_url
        shipment.estimated_delivery = label.estimated_delivery
        shipment.status = "labeled"
        await self.db.commit()

        logger.info("shipment.labeled", shipment_id=str(shipment_id), tracking_number=label.tracking_number)
        await self._notify(sub.member_id, "label_generated", {"tracking_number": label.tracking_number})
        return shipment

    # ── Status ────────────────────────────────────────────────────────

    async def track(self, caller: Caller, shipment_id: uuid.UUID) -> TrackingInfo:
        """Poll the carrier and persist any legal forward move it reports."""
        caller = require_caller(caller)
        shipment = await self._get_shipment(shipment_id)
        await self._require_owner_or_member(caller, shipment)

        if not shipment.tracking_number:
            return TrackingInfo(tracking_number=None, status=shipment.status, message=TRACKING_NOT_AVAILABLE)

        try:
            info = await self.carrier.get_tracking(shipment.carrier, shipment.tracking_number)
        except CarrierError as exc:
            logger.error("shipment.tracking_failed", shipment_id=str(shipment_id), error=str(exc))
            raise Internal("Failed to retrieve tracking information")

        if info.status != shipment.status:
            if is_known(info.status) and can_transition(shipment.status, info.status, shipment.status_before_delay):
                await self._apply_status(shipment, info.status, info.estimated_delivery)
            else:
                logger.warning(
                    "shipment.tracking_regression_ignored",
                    shipment_id=str(shipment_id),
                    current=shipment.status,
                    reported=info.status,
                )
        return info

    async def update_status(self, caller: Caller, shipment_id: uuid.UUID, status: str) -> Shipment:
        """Owner override of the shipment status."""
        shipment = await self._owned_shipment(caller, shipment_id)
        if not is_known(status):
            raise InvalidArgument(f"Unknown shipment status '{status}'", status=status)

        if status == shipment.status:
            if status == DELIVERED:
                return await self.reconcile_delivery(shipment.shipment_id)
            return shipment

        check_transition(shipment.status, status, shipment.status_before_delay)
        return await self._apply_status(shipment, status)

    async def _apply_status(
        self, shipment: Shipment, status: str, estimated_delivery: datetime | None = None
    ) -> Shipment:
        if status == DELIVERED:
            return await self._mark_delivered(shipment, estimated_delivery)

        previous = shipment.status
        if status == DELAYED:
            shipment.status_before_delay = previous
        elif previous == DELAYED:
            shipment.status_before_delay = None
        if estimated_delivery is not None:
            shipment.estimated_delivery = estimated_delivery
        shipment.status = status
        await self.db.commit()

        logger.info(
            "shipment.status_changed",
            shipment_id=str(shipment.shipment_id),
            previous=previous,
            status=status,
        )

        sub = await self.db.get(WineSubscription, shipment.subscription_id)
        if status == "shipped":
            await self._notify(sub.member_id, "shipped", {"tracking_number": shipment.tracking_number})
        elif status == DELAYED:
            new_date = shipment.estimated_delivery.date().isoformat() if shipment.estimated_delivery else "to be confirmed"
            await self._notify(sub.member_id, "delayed", {"new_date": new_date})
        return shipment

    async def _mark_delivered(self, shipment: Shipment, estimated_delivery: datetime | None = None) -> Shipment:
        """Flip into delivered with a guarded UPDATE, then reconcile."""
        previous = shipment.status
        values = {"status": DELIVERED, "delivered_at": datetime.utcnow(), "status_before_delay": None}
        if estimated_delivery is not None:
            values["estimated_delivery"] = estimated_delivery
        flipped = await self.db.execute(
            update(Shipment)
            .where(Shipment.shipment_id == shipment.shipment_id, Shipment.status != DELIVERED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if flipped.rowcount == 1:
            logger.info(
                "shipment.status_changed",
                shipment_id=str(shipment.shipment_id),
                previous=previous,
                status=DELIVERED,
            )
        else:
            # Another request delivered it first; reconciliation below is a no-op or finishes its work
            logger.info("shipment.already_delivered", shipment_id=str(shipment.shipment_id))
        return await self.reconcile_delivery(shipment.shipment_id)

    # ── Delivery reconciliation ───────────────────────────────────────

    async def _claim_step(self, shipment_id: uuid.UUID, marker) -> bool:
        """Stamp a reconciliation marker if still unset; True only for the session that stamped it."""
        result = await self.db.execute(
            update(Shipment)
            .where(Shipment.shipment_id == shipment_id, marker.is_(None))
            .values({marker.key: datetime.utcnow()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reconcile_delivery(self, shipment_id: uuid.UUID) -> Shipment:
        """
        Finish the side effects of a delivered shipment.

        Each step claims its marker column in the same savepoint as its work,
        so concurrent runs cannot both perform it and a failing step releases
        the claim for the next run.
        """
        shipment = await self._get_shipment(shipment_id)
        await self.db.refresh(shipment)
        if shipment.status != DELIVERED:
            raise Conflict("Only delivered shipments can be reconciled")

        if shipment.stock_reconciled_at is None:
            stock_moved = False
            try:
                async with self.db.begin_nested():
                    if await self._claim_step(shipment_id, Shipment.stock_reconciled_at):
                        for item in shipment.items:
                            await self.inventory.decrement_stock(item.wine_id, item.quantity)
                        stock_moved = True
                await self.db.commit()
            except ServiceError as exc:
                logger.error("shipment.stock_reconcile_failed", shipment_id=str(shipment_id), error=str(exc))
            if stock_moved:
                logger.info("shipment.stock_reconciled", shipment_id=str(shipment_id))
                await self._replenish(shipment.wine_cave_id)

        if shipment.schedule_advanced_at is None:
            try:
                async with self.db.begin_nested():
                    if await self._claim_step(shipment_id, Shipment.schedule_advanced_at):
                        sub = await self.db.get(WineSubscription, shipment.subscription_id, populate_existing=True)
                        already_past_cycle = (
                            shipment.cycle_date is not None
                            and sub.next_shipment_date is not None
                            and sub.next_shipment_date > shipment.cycle_date
                        )
                        if not already_past_cycle:
                            await self.subscriptions.advance_schedule(shipment.subscription_id)
                await self.db.commit()
            except ServiceError as exc:
                logger.error("shipment.schedule_advance_failed", shipment_id=str(shipment_id), error=str(exc))

        if shipment.member_notified_at is None:
            sub = await self.db.get(WineSubscription, shipment.subscription_id)
            try:
                async with self.db.begin_nested():
                    if await self._claim_step(shipment_id, Shipment.member_notified_at):
                        await self.notifier.send(sub.member_id, "shipping", "delivered", {})
                await self.db.commit()
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "shipment.notify_failed",
                    member_id=str(sub.member_id),
                    template_key="delivered",
                    error=str(exc),
                )

        await self.db.refresh(shipment)
        return shipment

    async def pending_reconciliations(self, wine_cave_id: uuid.UUID | None = None) -> list[Shipment]:
        query = select(Shipment).where(
            Shipment.status == DELIVERED,
            (Shipment.stock_reconciled_at.is_(None))
            | (Shipment.schedule_advanced_at.is_(None))
            | (Shipment.member_notified_at.is_(None)),
        )
        if wine_cave_id is not None:
            query = query.where(Shipment.wine_cave_id == wine_cave_id)
        result = await self.db.execute(query.order_by(Shipment.delivered_at))
        return list(result.scalars().all())

    # ── Scheduler entry points ────────────────────────────────────────

    async def create_due_shipments(
        self,
        on_date: date | None = None,
        wine_cave_id: uuid.UUID | None = None,
        carrier: str | None = None,
        auto_label: bool = True,
    ) -> dict:
        """Create this cycle's shipment for every due subscription that has none."""
        on_date = on_date or utc_today()
        carrier = carrier or get_settings().default_carrier
        summary = {"due": 0, "created": 0, "skipped": 0, "failed": 0, "labeled": 0}

        for sub in await self.subscriptions.due_for_shipment(on_date, wine_cave_id):
            summary["due"] += 1
            existing = await self.db.execute(
                select(Shipment.shipment_id)
                .where(
                    Shipment.subscription_id == sub.subscription_id,
                    Shipment.cycle_date == sub.next_shipment_date,
                )
                .limit(1)
            )
            if existing.scalar_one_or_none() is not None:
                summary["skipped"] += 1
                continue

            try:
                selections = await self.default_selections(sub)
                shipment = await self.create_shipment(SYSTEM_CALLER, sub.subscription_id, carrier, selections)
            except ServiceError as exc:
                summary["failed"] += 1
                logger.warning(
                    "shipment.scheduled_create_failed",
                    subscription_id=str(sub.subscription_id),
                    error=str(exc),
                )
                continue
            summary["created"] += 1

            if auto_label:
                try:
                    await self.generate_label(SYSTEM_CALLER, shipment.shipment_id)
                    summary["labeled"] += 1
                except ServiceError as exc:
                    logger.warning("shipment.scheduled_label_failed", shipment_id=str(shipment.shipment_id), error=str(exc))

        logger.info("shipment.due_run_complete", on_date=on_date.isoformat(), **summary)
        return summary

    async def default_selections(self, sub: WineSubscription) -> list[WineSelection]:
        """Top-ranked in-stock wines, one bottle each, up to the tier allowance."""
        tier = await self.db.get(SubscriptionTier, sub.tier_id)
        allowance = tier.bottles_per_month if tier is not None else 1
        ranked = await recommend_for_member(self.db, sub.member_id, sub.wine_cave_id, limit=None)

        selections: list[WineSelection] = []
        for entry in ranked:
            if len(selections) >= allowance:
                break
            available = entry.wine.stock_quantity - await self.committed_quantity(entry.wine.wine_id)
            if available >= 1:
                selections.append(WineSelection(wine_id=entry.wine.wine_id, quantity=1))
        if not selections:
            raise Conflict("No wine in stock for this subscription", subscription_id=sub.subscription_id)
        return selections

    async def refresh_tracking(self, wine_cave_id: uuid.UUID | None = None) -> dict:
        """Poll the carrier for every in-flight shipment."""
        query = select(Shipment.shipment_id).where(
            Shipment.status.in_(TRACKABLE_STATUSES),
            Shipment.tracking_number.is_not(None),
        )
        if wine_cave_id is not None:
            query = query.where(Shipment.wine_cave_id == wine_cave_id)
        shipment_ids = list((await self.db.execute(query)).scalars().all())

        summary = {"polled": 0, "failed": 0}
        for shipment_id in shipment_ids:
            try:
                await self.track(SYSTEM_CALLER, shipment_id)
                summary["polled"] += 1
            except ServiceError as exc:
                summary["failed"] += 1
                logger.warning("shipment.poll_failed", shipment_id=str(shipment_id), error=str(exc))
        return summary

    # ── Side effects (non-fatal) ──────────────────────────────────────

    async def _replenish(self, wine_cave_id: uuid.UUID) -> None:
        try:
            await self.inventory.replenish_after_depletion(wine_cave_id)
        except ServiceError as exc:
            logger.warning("shipment.replenish_failed", wine_cave_id=str(wine_cave_id), error=str(exc))

    async def _notify(self, member_id: uuid.UUID, template_key: str, data: dict) -> None:
        try:
            async with self.db.begin_nested():
                await self.notifier.send(member_id, "shipping", template_key, data)
            await self.db.commit()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "shipment.notify_failed",
                member_id=str(member_id),
                template_key=template_key,
                error=str(exc),
            )
