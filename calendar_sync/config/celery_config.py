# calendar_sync/config/celery_config.py
"""Celery configuration, task routing and the periodic sync schedule"""
from datetime import timedelta

from celery import Celery
from kombu import Queue

from calendar_sync.config.settings import get_settings

settings = get_settings()


def create_celery_app() -> Celery:
    """Create and configure Celery application"""

    celery_app = Celery(
        "calendar_sync_service",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=["calendar_sync.tasks.calendar_tasks"],
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Task routing
        task_routes={
            "calendar_sync.tasks.calendar_tasks.import_busy_times": {"queue": "calendar_import"},
            "calendar_sync.tasks.calendar_tasks.sync_all_connected_accounts": {"queue": "calendar_import"},
            "calendar_sync.tasks.calendar_tasks.*": {"queue": "calendar_export"},
        },

        task_queues=(
            Queue("calendar_import", routing_key="calendar_import"),
            Queue("calendar_export", routing_key="calendar_export"),
        ),

        # Periodic reconciliation beneath the best-effort webhook signal
        beat_schedule={
            "sync-all-connected-accounts": {
                "task": "calendar_sync.tasks.calendar_tasks.sync_all_connected_accounts",
                "schedule": timedelta(minutes=settings.SYNC_INTERVAL_MINUTES),
            },
            "renew-webhook-channels": {
                "task": "calendar_sync.tasks.calendar_tasks.renew_webhook_channels",
                "schedule": timedelta(hours=1),
            },
        },

        # Worker settings
        worker_max_tasks_per_child=1000,
        worker_prefetch_multiplier=1,
        task_acks_late=True,

        task_retry_max_retries=3,
        task_retry_delay=60,  # 1 minute

        broker_connection_retry_on_startup=True,
    )

    return celery_app


# Create the Celery app instance
celery_app = create_celery_app()
