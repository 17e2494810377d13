# calendar_sync/services/sync/scheduler.py
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from calendar_sync.config.settings import get_settings
from calendar_sync.schemas.calendar_events import ImportResult, SyncSummary
from calendar_sync.services.sync.store import CalendarStore

settings = get_settings()

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Fans the import out over every syncable account.

    Imports run on a bounded thread pool. An account still running after its
    deadline is counted as an error and left behind; the pool is shut down
    without waiting so one slow calendar cannot hold up the pass. `run_import`
    must open its own database session, it runs on a worker thread.
    """

    def __init__(
            self,
            list_accounts: Callable[[], List[str]],
            run_import: Callable[[str], ImportResult],
            max_workers: Optional[int] = None,
            account_timeout: Optional[float] = None,
            poll_interval: float = 0.5,
            monotonic: Callable[[], float] = time.monotonic,
    ):
        self.list_accounts = list_accounts
        self.run_import = run_import
        self.max_workers = max_workers or settings.SYNC_MAX_CONCURRENCY
        self.account_timeout = account_timeout or settings.SYNC_ACCOUNT_TIMEOUT_SECONDS
        self.poll_interval = poll_interval
        self.monotonic = monotonic

    @classmethod
    def for_store(cls, store: CalendarStore, run_import: Callable[[str], ImportResult], **kwargs) -> "SyncScheduler":
        return cls(store.list_syncable_account_ids, run_import, **kwargs)

    def sync_all_connected_accounts(self) -> SyncSummary:
        account_ids = self.list_accounts()
        summary = SyncSummary()
        if not account_ids:
            logger.info("No calendar connections to sync")
            return summary

        logger.info(f"Syncing {len(account_ids)} calendar connections")

        # account id -> monotonic start time, written by the worker thread
        started: Dict[str, float] = {}
        started_lock = threading.Lock()

        def run(account_id: str) -> ImportResult:
            with started_lock:
                started[account_id] = self.monotonic()
            return self.run_import(account_id)

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="calendar-sync")
        pending: Dict[Future, str] = {}
        abandoned: List[Future] = []
        try:
            for account_id in account_ids:
                pending[executor.submit(run, account_id)] = account_id

            while pending:
                done, _ = wait(list(pending), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for future in done:
                    self._tally(summary, pending.pop(future), future)

                now = self.monotonic()
                with started_lock:
                    overdue = [
                        future for future, account_id in pending.items()
                        if account_id in started and now - started[account_id] > self.account_timeout
                    ]
                for future in overdue:
                    account_id = pending.pop(future)
                    logger.error(f"Sync for account {account_id} exceeded {self.account_timeout}s, abandoning")
                    abandoned.append(future)
                    summary.errors += 1

                # every worker is stuck on an abandoned account, queued ones can never start
                if pending and sum(1 for future in abandoned if not future.done()) >= self.max_workers:
                    for future, account_id in list(pending.items()):
                        logger.error(f"Sync for account {account_id} could not start, all workers are stuck")
                        future.cancel()
                        summary.errors += 1
                    pending.clear()
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(f"Calendar sync complete: {summary.synced} synced, {summary.errors} errors")
        return summary

    @staticmethod
    def _tally(summary: SyncSummary, account_id: str, future: Future) -> None:
        try:
            result = future.result()
        except Exception as exc:
            logger.error(f"Sync crashed for account {account_id}: {exc}")
            summary.errors += 1
            return

        if result.success:
            summary.synced += 1
        else:
            logger.warning(f"Sync failed for account {account_id}: {result.error}")
            summary.errors += 1
