"""
Fulfillment Worker - scheduled shipment creation, tracking and reconciliation.

Tasks (all cave-scoped, fanned out by workers.scheduler.dispatch_active_caves):
  - create_due_shipments:   one shipment per due subscription cycle, labeled
  - poll_tracking:          refresh carrier status for in-flight shipments
  - retry_reconciliations:  finish delivery side effects left incomplete

Queue: fulfillment
"""

import asyncio
import uuid
from datetime import date, datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


def _build_pipeline(db: AsyncSession):
    from fulfillment.pipeline import FulfillmentPipeline
    from integrations.carriers import get_carrier_client
    from inventory.replenishment import InventoryMonitor
    from notifications.dispatcher import NotificationDispatcher
    from notifications.email import get_email_sender

    notifier = NotificationDispatcher(db)
    inventory = InventoryMonitor(db, notifier, get_email_sender())
    return FulfillmentPipeline(db, get_carrier_client(), notifier=notifier, inventory=inventory)


@celery_app.task(
    name="workers.fulfillment.create_due_shipments",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def create_due_shipments(self, wine_cave_id: str, on_date: str | None = None, auto_label: bool = True):
    """Daily job: create (and label) this cycle's shipment for every due subscription."""
    run_id = self.request.id or "manual"
    logger.info("fulfillment.due_started", wine_cave_id=wine_cave_id, run_id=run_id)

    async def _create():
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                pipeline = _build_pipeline(db)
                result = await pipeline.create_due_shipments(
                    on_date=date.fromisoformat(on_date) if on_date else None,
                    wine_cave_id=uuid.UUID(wine_cave_id),
                    auto_label=auto_label,
                )
        finally:
            await engine.dispose()

        summary = {
            "status": "success",
            "wine_cave_id": wine_cave_id,
            **result,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("fulfillment.due_completed", **summary)
        return summary

    try:
        return asyncio.run(_create())
    except Exception as exc:  # noqa: BLE001
        logger.error("fulfillment.due_failed", wine_cave_id=wine_cave_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.fulfillment.poll_tracking",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def poll_tracking(self, wine_cave_id: str):
    """Hourly job: ask carriers for the status of every labeled, undelivered shipment."""

    async def _poll():
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                result = await _build_pipeline(db).refresh_tracking(uuid.UUID(wine_cave_id))
        finally:
            await engine.dispose()

        summary = {"status": "success", "wine_cave_id": wine_cave_id, **result}
        logger.info("fulfillment.poll_completed", **summary)
        return summary

    try:
        return asyncio.run(_poll())
    except Exception as exc:  # noqa: BLE001
        logger.error("fulfillment.poll_failed", wine_cave_id=wine_cave_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.fulfillment.retry_reconciliations",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def retry_reconciliations(self, wine_cave_id: str):
    """Hourly job: re-run delivery reconciliation for delivered shipments with unstamped steps."""

    async def _retry():
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        completed = 0
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                pipeline = _build_pipeline(db)
                pending = await pipeline.pending_reconciliations(uuid.UUID(wine_cave_id))
                for shipment in pending:
                    shipment = await pipeline.reconcile_delivery(shipment.shipment_id)
                    if shipment.stock_reconciled_at and shipment.schedule_advanced_at and shipment.member_notified_at:
                        completed += 1
        finally:
            await engine.dispose()

        summary = {
            "status": "success",
            "wine_cave_id": wine_cave_id,
            "pending": len(pending),
            "completed": completed,
        }
        logger.info("fulfillment.reconcile_retry_completed", **summary)
        return summary

    try:
        return asyncio.run(_retry())
    except Exception as exc:  # noqa: BLE001
        logger.error("fulfillment.reconcile_retry_failed", wine_cave_id=wine_cave_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
