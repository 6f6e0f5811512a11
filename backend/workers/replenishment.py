"""
Replenishment Worker - nightly purchase order generation.

Scans each active cave for wines at or below their low-stock threshold and
creates one purchase order per supplier. Suppliers that already have an
open order are skipped, so reruns do not duplicate orders.

Schedule: crontab(hour=2, minute=0) - daily at 2 AM
Queue: inventory
"""

import asyncio
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.replenishment.generate_purchase_orders",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def generate_purchase_orders(self, wine_cave_id: str, auto_send: bool | None = None):
    run_id = self.request.id or "manual"
    logger.info("replenishment.started", wine_cave_id=wine_cave_id, run_id=run_id)

    async def _generate():
        from core.config import get_settings
        from core.security import SYSTEM_CALLER
        from inventory.replenishment import InventoryMonitor
        from notifications.email import get_email_sender

        settings = get_settings()
        send = settings.purchase_order_auto_send if auto_send is None else auto_send
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                monitor = InventoryMonitor(db, email_sender=get_email_sender())
                orders = await monitor.generate_purchase_orders(SYSTEM_CALLER, uuid.UUID(wine_cave_id), auto_send=send)
                po_ids = [str(po.po_id) for po in orders]
        finally:
            await engine.dispose()

        summary = {
            "status": "success",
            "wine_cave_id": wine_cave_id,
            "orders_created": len(po_ids),
            "po_ids": po_ids,
            "auto_send": send,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("replenishment.completed", **summary)
        return summary

    try:
        return asyncio.run(_generate())
    except Exception as exc:  # noqa: BLE001
        logger.error("replenishment.failed", wine_cave_id=wine_cave_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
