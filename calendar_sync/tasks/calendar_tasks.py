# ===== calendar_sync/tasks/calendar_tasks.py =====
import logging
from typing import Dict

from redis.exceptions import LockError

from calendar_sync.config.celery_config import celery_app
from calendar_sync.config.database import session_scope
from calendar_sync.config.redis import account_sync_lock
from calendar_sync.schemas.calendar_events import ImportResult
from calendar_sync.services.sync.export_mapper import ExportMapper
from calendar_sync.services.sync.import_reconciler import ImportReconciler
from calendar_sync.services.sync.scheduler import SyncScheduler
from calendar_sync.services.sync.store import SqlAlchemyCalendarStore
from calendar_sync.services.sync.webhook_channels import WebhookChannelManager

logger = logging.getLogger(__name__)


def run_locked_import(account_id: str) -> ImportResult:
    """
    Import for one account under the per-account Redis lock.

    Webhook bursts and the scheduled pass can ask for the same account at the
    same time; whoever holds the lock does the work, the others skip.
    """
    lock = account_sync_lock(account_id)
    if not lock.acquire():
        logger.info(f"Import already running for account {account_id}, skipping")
        return ImportResult(success=True, skipped=True, error="Import already in progress")

    try:
        with session_scope() as db:
            return ImportReconciler(SqlAlchemyCalendarStore(db)).import_busy_times(account_id)
    finally:
        try:
            lock.release()
        except LockError as exc:
            # lock expired while the import ran
            logger.warning(f"Could not release import lock for account {account_id}: {exc}")


def list_syncable_accounts() -> list:
    with session_scope() as db:
        return SqlAlchemyCalendarStore(db).list_syncable_account_ids()


@celery_app.task(bind=True, max_retries=3)
def import_busy_times(self, account_id: str) -> Dict:
    """Pull external busy time into blocked-time records (webhook / manual trigger)"""
    result = run_locked_import(account_id)
    if not result.success and result.retryable:
        logger.warning(f"Import for account {account_id} failed, retrying: {result.error}")
        raise self.retry(countdown=60 * (self.request.retries + 1))
    return result.model_dump()


@celery_app.task(bind=True, max_retries=3)
def export_booking(self, booking_id: str) -> Dict:
    """Push a confirmed booking to the professional's calendar"""
    with session_scope() as db:
        result = ExportMapper(SqlAlchemyCalendarStore(db)).export_booking(booking_id)

    if not result.success and result.retryable:
        logger.warning(f"Export of booking {booking_id} failed, retrying: {result.error}")
        raise self.retry(countdown=60 * (self.request.retries + 1))
    return result.model_dump()


@celery_app.task(bind=True, max_retries=3)
def remove_booking_export(self, booking_id: str) -> Dict:
    """Delete the calendar event of a cancelled booking"""
    with session_scope() as db:
        result = ExportMapper(SqlAlchemyCalendarStore(db)).remove_booking_export(booking_id)

    if not result.success and result.retryable:
        logger.warning(f"Removal of booking {booking_id} event failed, retrying: {result.error}")
        raise self.retry(countdown=60 * (self.request.retries + 1))
    return result.model_dump()


@celery_app.task
def register_webhook_channel(account_id: str) -> Dict:
    with session_scope() as db:
        result = WebhookChannelManager(SqlAlchemyCalendarStore(db)).register_channel(account_id)
    if not result.success:
        logger.warning(f"Webhook registration for account {account_id} failed: {result.error}")
    return result.model_dump(mode="json")


@celery_app.task
def sync_all_connected_accounts() -> Dict:
    """Periodic pass over every syncable account (beat)"""
    scheduler = SyncScheduler(list_syncable_accounts, run_locked_import)
    return scheduler.sync_all_connected_accounts().model_dump()


@celery_app.task
def renew_webhook_channels() -> Dict:
    """Re-register channels that expire before the next renewal pass (beat)"""
    with session_scope() as db:
        summary = WebhookChannelManager(SqlAlchemyCalendarStore(db)).renew_expiring_channels()
    return summary.model_dump()
