"""
Celery worker entry point
Runs calendar imports, booking exports and channel renewals
"""
import logging
from celery.signals import worker_ready, worker_shutdown

from calendar_sync.config.celery_config import celery_app
from calendar_sync.utils.my_logging import setup_logging

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    """Handle worker startup"""
    tasks = sorted(name for name in celery_app.tasks.keys() if name.startswith("calendar_sync."))
    logger.info("Celery worker ready")
    logger.info(f"Registered tasks: {tasks}")


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    """Handle worker shutdown"""
    logger.info("Celery worker shutting down...")


if __name__ == "__main__":
    # Run worker directly; add -B (or run `celery beat`) for the periodic sync
    celery_app.start([
        'worker',
        '--loglevel=info',
        '--concurrency=4',
        '--max-tasks-per-child=1000',
        '--queues=calendar_import,calendar_export',
    ])
