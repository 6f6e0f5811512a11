"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from core.config import get_settings
from core.logging import configure_logging

settings = get_settings()

celery_app = Celery(
    "caveclub",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "workers.scheduler",
        "workers.fulfillment",
        "workers.replenishment",
        "workers.notifications",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.fulfillment.*": {"queue": "fulfillment"},
        "workers.replenishment.*": {"queue": "inventory"},
        "workers.notifications.*": {"queue": "default"},
        "workers.scheduler.*": {"queue": "default"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Cave-scoped jobs fan out via workers.scheduler.dispatch_active_caves.
    beat_schedule={
        # ── Fulfillment ─────────────────────────────────────────────
        "create-due-shipments-daily": {
            "task": "workers.scheduler.dispatch_active_caves",
            "schedule": crontab(hour=6, minute=0),
            "kwargs": {"task_name": "workers.fulfillment.create_due_shipments"},
            "options": {"queue": "default"},
        },
        "poll-tracking-hourly": {
            "task": "workers.scheduler.dispatch_active_caves",
            "schedule": crontab(minute=15),
            "kwargs": {"task_name": "workers.fulfillment.poll_tracking"},
            "options": {"queue": "default"},
        },
        "retry-reconciliations-hourly": {
            "task": "workers.scheduler.dispatch_active_caves",
            "schedule": crontab(minute=45),
            "kwargs": {"task_name": "workers.fulfillment.retry_reconciliations"},
            "options": {"queue": "default"},
        },
        # ── Replenishment ───────────────────────────────────────────
        "generate-purchase-orders-daily": {
            "task": "workers.scheduler.dispatch_active_caves",
            "schedule": crontab(hour=2, minute=0),
            "kwargs": {"task_name": "workers.replenishment.generate_purchase_orders"},
            "options": {"queue": "default"},
        },
        # ── Notifications ───────────────────────────────────────────
        "purge-expired-notifications-daily": {
            "task": "workers.notifications.purge_expired_notifications",
            "schedule": crontab(hour=3, minute=30),
            "options": {"queue": "default"},
        },
    },
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging(settings.log_level, json_logs=settings.log_json)


# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
