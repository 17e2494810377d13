# calendar_sync/services/sync/import_reconciler.py
"""
Import side of the sync: external busy time -> sync-tagged blocked time.

The forward window is replaced wholesale on every run, so running an import
twice against the same external state leaves the same set of rows.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calendar_sync.config.settings import get_settings
from calendar_sync.schemas.calendar_events import BlockedTime, ExternalEvent, ImportResult
from calendar_sync.services.calendar.exceptions import (
    CalendarSyncError,
    ReauthorizationRequired,
)
from calendar_sync.services.calendar.google_calendar_client import GoogleCalendarClient
from calendar_sync.services.calendar.token_manager import TokenLifecycleManager, utcnow
from calendar_sync.services.sync.store import CalendarStore

settings = get_settings()

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59)


def resolve_zone(name: Optional[str]) -> ZoneInfo:
    """ZoneInfo for `name`, falling back to DEFAULT_TIMEZONE for unknown names"""
    for candidate in (name, settings.DEFAULT_TIMEZONE, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown time zone {candidate!r}")
    return ZoneInfo("UTC")


def split_into_days(event: ExternalEvent, zone: ZoneInfo) -> List[BlockedTime]:
    """
    Blocked-time pieces for one event in local dates/times of `zone`.

    Single-day events give one start->end piece. Longer events give a
    start->23:59 piece, whole-day pieces for every interior day and a
    00:00->end piece, unless the event ends exactly at midnight.
    """
    start = event.start.astimezone(zone)
    end = event.end.astimezone(zone)

    if start.date() == end.date():
        return [BlockedTime(override_date=start.date(), start_time=start.time().replace(microsecond=0),
                            end_time=end.time().replace(microsecond=0))]

    pieces = [BlockedTime(override_date=start.date(), start_time=start.time().replace(microsecond=0),
                          end_time=END_OF_DAY)]

    day = start.date() + timedelta(days=1)
    while day < end.date():
        pieces.append(BlockedTime(override_date=day))
        day += timedelta(days=1)

    if end.time() != time(0, 0):
        pieces.append(BlockedTime(override_date=end.date(), start_time=time(0, 0),
                                  end_time=end.time().replace(microsecond=0)))
    return pieces


def build_blocked_times(events: Iterable[ExternalEvent], zone: ZoneInfo, today: date) -> List[BlockedTime]:
    blocks = []
    for event in events:
        blocks.extend(piece for piece in split_into_days(event, zone) if piece.override_date >= today)
    return blocks


class ImportReconciler:
    def __init__(
            self,
            store: CalendarStore,
            client: Optional[GoogleCalendarClient] = None,
            token_manager: Optional[TokenLifecycleManager] = None,
            clock: Callable[[], datetime] = utcnow,
            days_ahead: Optional[int] = None,
    ):
        self.store = store
        self.client = client or GoogleCalendarClient()
        self.token_manager = token_manager or TokenLifecycleManager(clock=clock)
        self.clock = clock
        self.days_ahead = days_ahead or settings.SYNC_DAYS_AHEAD

    def import_busy_times(self, account_id: str) -> ImportResult:
        """Replace the account's forward sync blocks with its current external busy time"""
        connection = self.store.get_connection(account_id)
        if connection is None:
            return ImportResult(success=False, skipped=True, error="No calendar connection found")
        if not connection.sync_enabled:
            return ImportResult(success=False, skipped=True, error="Calendar sync is disabled")
        if not connection.calendar_id:
            return ImportResult(success=False, skipped=True, error="No calendar selected")
        if connection.needs_reauth:
            return ImportResult(success=False, skipped=True, error="Calendar connection needs re-authorization")

        try:
            access_token = self.token_manager.access_token_for(self.store, connection)

            now = self.clock()
            window_end = now + timedelta(days=self.days_ahead)
            events = self.client.list_events(access_token, connection.calendar_id, now, window_end)

            zone = resolve_zone(connection.time_zone)
            today = now.astimezone(zone).date()
            blocks = build_blocked_times(events, zone, today)

            created = self.store.replace_sync_blocks(account_id, today, blocks)
            self.store.mark_synced(account_id, self.clock())
        except ReauthorizationRequired as exc:
            # token manager already flagged the connection
            return ImportResult(success=False, error=str(exc))
        except CalendarSyncError as exc:
            logger.error(f"Calendar import failed for account {account_id}: {exc}")
            self._record_error(account_id, str(exc))
            return ImportResult(success=False, error=str(exc), retryable=exc.retryable)

        logger.info(f"Imported {len(events)} events as {created} blocked times for account {account_id}")
        return ImportResult(success=True, events_processed=len(events))

    def _record_error(self, account_id: str, error: str) -> None:
        try:
            self.store.record_sync_error(account_id, error)
        except CalendarSyncError as exc:
            logger.error(f"Could not record sync error for account {account_id}: {exc}")
