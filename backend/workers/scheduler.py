"""
Beat fan-out: run a cave-scoped task once per active wine cave.

Beat entries name the task in ``task_name``; every per-cave task takes a
``wine_cave_id`` keyword argument.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

CAVE_SCOPED_TASKS = frozenset(
    {
        "workers.fulfillment.create_due_shipments",
        "workers.fulfillment.poll_tracking",
        "workers.fulfillment.retry_reconciliations",
        "workers.replenishment.generate_purchase_orders",
    }
)


async def _cave_ids(database_url: str, statuses: tuple[str, ...]) -> list[str]:
    from db.models import WineCave

    engine = create_async_engine(database_url)
    try:
        async with async_sessionmaker(engine, class_=AsyncSession)() as db:
            result = await db.execute(
                select(WineCave.wine_cave_id).where(WineCave.status.in_(statuses)).order_by(WineCave.created_at)
            )
            return [str(wine_cave_id) for wine_cave_id in result.scalars().all()]
    finally:
        await engine.dispose()


@celery_app.task(
    name="workers.scheduler.dispatch_active_caves",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_active_caves(
    self,
    task_name: str,
    task_kwargs: dict | None = None,
    statuses: list[str] | None = None,
):
    from core.config import get_settings

    if task_name not in CAVE_SCOPED_TASKS:
        logger.warning("scheduler.unknown_task", task_name=task_name)
        return {"status": "failed", "reason": "invalid_task_name", "task_name": task_name}

    selected_statuses = tuple(statuses or ("active",))
    try:
        caves = asyncio.run(_cave_ids(get_settings().database_url, selected_statuses))
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.cave_lookup_failed", task_name=task_name, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    for wine_cave_id in caves:
        celery_app.send_task(task_name, kwargs={**(task_kwargs or {}), "wine_cave_id": wine_cave_id})

    summary = {
        "status": "success",
        "task_name": task_name,
        "cave_count": len(caves),
        "dispatched_count": len(caves),
        "statuses": list(selected_statuses),
        "triggered_at": datetime.now(timezone.utc).isoformat(),
        "run_id": self.request.id or "manual",
    }
    logger.info("scheduler.dispatch_complete", **summary)
    return summary
