"""
Inventory Monitor & Replenishment Engine.

Watches wine stock per cave and turns low-stock wines into supplier
purchase orders:
1. Scan wines at or below their low-stock threshold
2. Size each reorder line and price it (cost price, else 60% of retail)
3. Group lines by supplier, one purchase order per supplier
4. Notify the cave owner and, when auto-sent, email the supplier
5. Apply received orders back to stock

Stock only moves through single-statement UPDATEs so concurrent
deliveries, sales and receipts never lose an update.
"""

import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import Conflict, InvalidArgument, NotFound
from core.security import SYSTEM_CALLER, Caller, require_caller
from db.models import PurchaseOrder, PurchaseOrderItem, Supplier, Wine
from db.ownership import get_cave, require_cave_owner
from notifications.dispatcher import NotificationDispatcher
from notifications.email import EmailSender

logger = structlog.get_logger()

MIN_REORDER_QUANTITY = 20
REORDER_STOCK_MULTIPLIER = 2
COST_PROXY_RATIO = Decimal("0.6")
CENTS = Decimal("0.01")

OPEN_PO_STATUSES = ("draft", "sent", "confirmed")
PO_STATUSES = ("draft", "sent", "confirmed", "received", "cancelled")
PO_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"sent", "confirmed", "received", "cancelled"},
    "sent": {"confirmed", "received", "cancelled"},
    "confirmed": {"received", "cancelled"},
    "received": set(),
    "cancelled": set(),
}


# ──────────────────────────────────────────────────────────────────────────
# Reorder sizing
# ──────────────────────────────────────────────────────────────────────────


def suggested_quantity(stock_quantity: int) -> int:
    """max(20, current stock × 2)."""
    return max(MIN_REORDER_QUANTITY, stock_quantity * REORDER_STOCK_MULTIPLIER)


def reorder_unit_price(price: Decimal, cost_price: Decimal | None) -> Decimal:
    """Cost price when recorded, otherwise 60% of retail as a cost proxy."""
    if cost_price:
        return Decimal(cost_price).quantize(CENTS, rounding=ROUND_HALF_UP)
    return (Decimal(price) * COST_PROXY_RATIO).quantize(CENTS, rounding=ROUND_HALF_UP)


def order_total(lines: list[tuple[int, Decimal]]) -> Decimal:
    """Σ(unit_price × quantity) over (quantity, unit_price) lines."""
    return sum((Decimal(unit_price) * qty for qty, unit_price in lines), Decimal("0.00")).quantize(CENTS)


def render_purchase_order_email(po: PurchaseOrder, supplier: Supplier, cave_name: str, wines: dict) -> tuple[str, str]:
    """Return (subject, body) for the supplier email."""
    subject = f"Purchase order {po.po_id} from {cave_name}"
    lines = [
        f"Hello {supplier.name},",
        "",
        f"{cave_name} would like to order the following wines:",
        "",
    ]
    for item in po.items:
        wine = wines.get(item.wine_id)
        wine_name = wine.name if wine is not None else str(item.wine_id)
        line_total = (Decimal(item.unit_price) * item.quantity).quantize(CENTS)
        lines.append(f"- {wine_name}: {item.quantity} × {item.unit_price} = {line_total}")
    lines += [
        "",
        f"Total: {po.total_amount}",
        f"Expected delivery: {po.expected_delivery_date:%Y-%m-%d}" if po.expected_delivery_date else "",
        f"Order reference: {po.po_id}",
    ]
    return subject, "\n".join(lines).rstrip() + "\n"


# ──────────────────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────────────────


class InventoryMonitor:
    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        email_sender: EmailSender | None = None,
    ):
        self.db = db
        self.notifier = notifier or NotificationDispatcher(db)
        self.email_sender = email_sender

    # ── Stock counters ────────────────────────────────────────────────

    async def decrement_stock(self, wine_id: uuid.UUID, quantity: int) -> int:
        """Atomically remove stock; Conflict if it would go negative. Returns new level."""
        if quantity <= 0:
            raise InvalidArgument("Quantity must be positive", quantity=quantity)
        result = await self.db.execute(
            update(Wine)
            .where(Wine.wine_id == wine_id, Wine.stock_quantity >= quantity)
            .values(stock_quantity=Wine.stock_quantity - quantity)
            .returning(Wine.stock_quantity)
        )
        new_level = result.scalar_one_or_none()
        if new_level is None:
            if await self.db.get(Wine, wine_id) is None:
                raise NotFound(f"Wine {wine_id} not found")
            raise Conflict("Insufficient stock", wine_id=wine_id, quantity=quantity)
        logger.info("inventory.decremented", wine_id=str(wine_id), quantity=quantity, stock=new_level)
        return new_level

    async def increment_stock(self, wine_id: uuid.UUID, quantity: int) -> int:
        if quantity <= 0:
            raise InvalidArgument("Quantity must be positive", quantity=quantity)
        result = await self.db.execute(
            update(Wine)
            .where(Wine.wine_id == wine_id)
            .values(stock_quantity=Wine.stock_quantity + quantity)
            .returning(Wine.stock_quantity)
        )
        new_level = result.scalar_one_or_none()
        if new_level is None:
            raise NotFound(f"Wine {wine_id} not found")
        logger.info("inventory.incremented", wine_id=str(wine_id), quantity=quantity, stock=new_level)
        return new_level

    # ── Monitoring ────────────────────────────────────────────────────

    def _low_stock_query(self, wine_cave_id: uuid.UUID):
        default_threshold = get_settings().default_low_stock_threshold
        return (
            select(Wine)
            .where(
                Wine.wine_cave_id == wine_cave_id,
                Wine.stock_quantity <= func.coalesce(Wine.low_stock_threshold, default_threshold),
            )
            .order_by(Wine.name, Wine.wine_id)
        )

    async def scan_low_stock(self, caller: Caller, wine_cave_id: uuid.UUID) -> list[Wine]:
        caller = require_caller(caller)
        await require_cave_owner(self.db, caller, wine_cave_id)
        result = await self.db.execute(self._low_stock_query(wine_cave_id))
        return list(result.scalars().all())

    async def record_sale(self, caller: Caller, wine_id: uuid.UUID, quantity: int) -> Wine:
        """Point-of-sale depletion; alerts the owner once stock is low."""
        caller = require_caller(caller)
        wine = await self.db.get(Wine, wine_id)
        if wine is None:
            raise NotFound(f"Wine {wine_id} not found")
        cave = await require_cave_owner(self.db, caller, wine.wine_cave_id)

        new_level = await self.decrement_stock(wine_id, quantity)
        await self.db.commit()
        await self.db.refresh(wine)

        threshold = wine.low_stock_threshold
        if threshold is None:
            threshold = get_settings().default_low_stock_threshold
        if new_level <= threshold:
            await self._notify(
                cave.owner_id,
                "wine",
                "low_stock",
                {"wine_name": wine.name, "stock_quantity": new_level},
            )
            await self.db.commit()
        return wine

    # ── Purchase orders ───────────────────────────────────────────────

    async def generate_purchase_orders(
        self,
        caller: Caller,
        wine_cave_id: uuid.UUID,
        auto_send: bool = False,
    ) -> list[PurchaseOrder]:
        """Create one purchase order per supplier of the cave's low-stock wines."""
        caller = require_caller(caller)
        cave = await require_cave_owner(self.db, caller, wine_cave_id)

        low_stock = list((await self.db.execute(self._low_stock_query(wine_cave_id))).scalars().all())

        groups: dict[uuid.UUID, list[Wine]] = {}
        skipped_unsupplied = 0
        for wine in low_stock:
            if wine.supplier_id is None:
                skipped_unsupplied += 1
                continue
            groups.setdefault(wine.supplier_id, []).append(wine)

        if not groups:
            logger.info(
                "replenishment.nothing_to_order",
                wine_cave_id=str(wine_cave_id),
                low_stock=len(low_stock),
                skipped_unsupplied=skipped_unsupplied,
            )
            return []

        suppliers_with_open_orders = await self._suppliers_with_open_orders(wine_cave_id, list(groups))

        now = datetime.utcnow()
        created: list[tuple[PurchaseOrder, Supplier]] = []
        for supplier_id, wines in groups.items():
            if supplier_id in suppliers_with_open_orders:
                logger.info(
                    "replenishment.open_order_exists",
                    wine_cave_id=str(wine_cave_id),
                    supplier_id=str(supplier_id),
                )
                continue

            supplier = await self.db.get(Supplier, supplier_id)
            if supplier is None:
                logger.warning("replenishment.supplier_missing", supplier_id=str(supplier_id))
                continue

            items = [
                PurchaseOrderItem(
                    wine_id=wine.wine_id,
                    quantity=suggested_quantity(wine.stock_quantity),
                    unit_price=reorder_unit_price(wine.price, wine.cost_price),
                )
                for wine in wines
            ]
            po = PurchaseOrder(
                wine_cave_id=wine_cave_id,
                supplier_id=supplier_id,
                total_amount=order_total([(item.quantity, item.unit_price) for item in items]),
                status="sent" if auto_send else "draft",
                expected_delivery_date=now + timedelta(days=supplier.lead_time_days),
                sent_at=now if auto_send else None,
                items=items,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(po)
            except IntegrityError:
                # uq_po_one_open_per_supplier: a concurrent run opened one first
                logger.info(
                    "replenishment.open_order_exists",
                    wine_cave_id=str(wine_cave_id),
                    supplier_id=str(supplier_id),
                )
                continue
            created.append((po, supplier))

        await self.db.commit()

        for po, supplier in created:
            logger.info(
                "replenishment.po_created",
                po_id=str(po.po_id),
                supplier_id=str(supplier.supplier_id),
                items=len(po.items),
                total_amount=str(po.total_amount),
                status=po.status,
            )
            await self._notify(
                cave.owner_id,
                "inventory",
                "purchase_order_created",
                {
                    "po_id": po.po_id,
                    "supplier_name": supplier.name,
                    "item_count": len(po.items),
                    "total_amount": po.total_amount,
                    "status": po.status,
                },
            )
            if auto_send:
                await self._email_supplier(po, supplier, cave.name)

        if created:
            await self.db.commit()
        return [po for po, _ in created]

    async def _suppliers_with_open_orders(self, wine_cave_id: uuid.UUID, supplier_ids: list[uuid.UUID]) -> set:
        result = await self.db.execute(
            select(PurchaseOrder.supplier_id).where(
                PurchaseOrder.wine_cave_id == wine_cave_id,
                PurchaseOrder.supplier_id.in_(supplier_ids),
                PurchaseOrder.status.in_(OPEN_PO_STATUSES),
            )
        )
        return set(result.scalars().all())

    async def get_order(self, caller: Caller, po_id: uuid.UUID) -> PurchaseOrder:
        caller = require_caller(caller)
        po = await self.db.get(PurchaseOrder, po_id)
        if po is None:
            raise NotFound(f"Purchase order {po_id} not found")
        await require_cave_owner(self.db, caller, po.wine_cave_id)
        return po

    async def list_orders(
        self,
        caller: Caller,
        wine_cave_id: uuid.UUID,
        status: str | None = None,
    ) -> list[PurchaseOrder]:
        caller = require_caller(caller)
        await require_cave_owner(self.db, caller, wine_cave_id)
        query = select(PurchaseOrder).where(PurchaseOrder.wine_cave_id == wine_cave_id)
        if status:
            query = query.where(PurchaseOrder.status == status)
        query = query.order_by(PurchaseOrder.created_at.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def receive_order(self, caller: Caller, po_id: uuid.UUID, notes: str | None = None) -> PurchaseOrder:
        """Mark received and add every line to stock, exactly once.

        Notes are stored with the transition; an already-received order is
        returned unchanged.
        """
        po = await self.get_order(caller, po_id)
        if po.status == "received":
            return po
        if po.status == "cancelled":
            raise Conflict("Cannot receive a cancelled purchase order", po_id=po_id)

        now = datetime.utcnow()
        values = {"status": "received", "received_at": now, "updated_at": now}
        if notes is not None:
            values["notes"] = notes
        flipped = await self.db.execute(
            update(PurchaseOrder)
            .where(PurchaseOrder.po_id == po_id, PurchaseOrder.status.in_(OPEN_PO_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount == 0:
            # Lost the race: another caller moved the order first
            await self.db.refresh(po)
            if po.status == "received":
                return po
            raise Conflict(f"Cannot receive purchase order in status '{po.status}'", po_id=po_id)

        for item in po.items:
            await self.increment_stock(item.wine_id, item.quantity)
        await self.db.commit()
        await self.db.refresh(po)

        supplier = await self.db.get(Supplier, po.supplier_id)
        cave = await get_cave(self.db, po.wine_cave_id)
        logger.info("replenishment.po_received", po_id=str(po_id), items=len(po.items))
        await self._notify(
            cave.owner_id,
            "inventory",
            "purchase_order_received",
            {"po_id": po.po_id, "supplier_name": supplier.name if supplier else ""},
        )
        await self.db.commit()
        return po

    async def update_order_status(
        self,
        caller: Caller,
        po_id: uuid.UUID,
        status: str,
        notes: str | None = None,
    ) -> PurchaseOrder:
        if status not in PO_STATUSES:
            raise InvalidArgument(f"Unknown purchase order status '{status}'", status=status)

        po = await self.get_order(caller, po_id)
        if status == "received":
            return await self.receive_order(caller, po_id, notes=notes)
        if status == po.status:
            return po
        if status not in PO_TRANSITIONS[po.status]:
            raise Conflict(f"Cannot move purchase order from '{po.status}' to '{status}'", po_id=po_id)

        po.status = status
        if notes is not None:
            po.notes = notes
        if status == "sent":
            po.sent_at = datetime.utcnow()
        await self.db.commit()
        logger.info("replenishment.po_status_changed", po_id=str(po_id), status=status)

        if status == "sent":
            supplier = await self.db.get(Supplier, po.supplier_id)
            cave = await get_cave(self.db, po.wine_cave_id)
            await self._email_supplier(po, supplier, cave.name)
            await self._notify(
                cave.owner_id,
                "inventory",
                "purchase_order_sent",
                {"po_id": po.po_id, "supplier_name": supplier.name},
            )
            await self.db.commit()
        return po

    async def replenish_after_depletion(self, wine_cave_id: uuid.UUID) -> list[PurchaseOrder]:
        """Scheduler-side reorder run after stock was consumed."""
        settings = get_settings()
        if not settings.auto_replenish_on_depletion:
            return []
        return await self.generate_purchase_orders(
            SYSTEM_CALLER, wine_cave_id, auto_send=settings.purchase_order_auto_send
        )

    # ── Side effects (non-fatal) ──────────────────────────────────────

    async def _notify(self, recipient_id, category: str, template_key: str, data: dict) -> None:
        try:
            async with self.db.begin_nested():
                await self.notifier.send(recipient_id, category, template_key, data)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "replenishment.notify_failed",
                recipient_id=str(recipient_id),
                template_key=template_key,
                error=str(exc),
            )

    async def _email_supplier(self, po: PurchaseOrder, supplier: Supplier, cave_name: str) -> None:
        if self.email_sender is None or not supplier.contact_email:
            logger.info("replenishment.email_skipped", po_id=str(po.po_id), supplier_id=str(supplier.supplier_id))
            return
        wine_ids = [item.wine_id for item in po.items]
        wines = {w.wine_id: w for w in (await self.db.execute(select(Wine).where(Wine.wine_id.in_(wine_ids)))).scalars()}
        subject, body = render_purchase_order_email(po, supplier, cave_name, wines)
        try:
            await self.email_sender.send(supplier.contact_email, subject, body)
            logger.info("replenishment.po_emailed", po_id=str(po.po_id), to=supplier.contact_email)
        except Exception as exc:  # noqa: BLE001
            logger.warning("replenishment.email_failed", po_id=str(po.po_id), error=str(exc))
