"""
Notification Housekeeping Worker - purge expired notifications.

Schedule: crontab(hour=3, minute=30) - daily
Queue: default
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.notifications.purge_expired_notifications",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def purge_expired_notifications(self):
    async def _purge():
        from core.config import get_settings
        from core.security import SYSTEM_CALLER
        from notifications.dispatcher import NotificationDispatcher

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                deleted = await NotificationDispatcher(db).purge_expired(SYSTEM_CALLER)
        finally:
            await engine.dispose()
        return {"status": "success", "deleted": deleted}

    try:
        return asyncio.run(_purge())
    except Exception as exc:  # noqa: BLE001
        logger.error("notifications.purge_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
