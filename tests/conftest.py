"""Shared fixtures: an in-memory CalendarStore and a fake Google Calendar client."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import pytest

from calendar_sync.models import GOOGLE_CALENDAR_SYNC_REASON
from calendar_sync.schemas.calendar_events import (
    BlockedTime,
    BookingDetails,
    CalendarInfo,
    ConnectionState,
    EventDraft,
    ExternalEvent,
    WatchChannel,
)
from calendar_sync.services.calendar.exceptions import PersistenceError
from calendar_sync.services.calendar.token_manager import TokenLifecycleManager
from calendar_sync.services.sync.store import CalendarStore

UTC = timezone.utc

# 2025-03-10 09:00 UTC, a Monday
NOW = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


@dataclass
class OverrideRow:
    account_id: str
    override_date: date
    start_time: time | None
    end_time: time | None
    reason: str | None


class InMemoryCalendarStore(CalendarStore):
    def __init__(self) -> None:
        self.connections: dict[str, ConnectionState] = {}
        self.overrides: list[OverrideRow] = []
        self.bookings: dict[str, BookingDetails] = {}
        self.fail_replace = False

    # connections

    def get_connection(self, account_id):
        conn = self.connections.get(account_id)
        return conn.model_copy() if conn else None

    def get_connection_by_channel(self, channel_id, resource_id):
        for conn in self.connections.values():
            if conn.webhook_channel_id == channel_id and conn.webhook_resource_id == resource_id:
                return conn.model_copy()
        return None

    def list_syncable_account_ids(self):
        return [
            c.account_id
            for c in self.connections.values()
            if c.sync_enabled and c.calendar_id and not c.needs_reauth
        ]

    def list_channels_expiring_before(self, moment):
        return [
            c.model_copy()
            for c in self.connections.values()
            if c.sync_enabled
            and c.calendar_id
            and not c.needs_reauth
            and c.webhook_expiration is not None
            and c.webhook_expiration < moment
        ]

    def upsert_connection(self, account_id, access_token, refresh_token, expires_at, calendar_id, time_zone):
        existing = self.connections.get(account_id)
        conn = ConnectionState(
            id=existing.id if existing else str(uuid.uuid4()),
            account_id=account_id,
            access_token=access_token,
            refresh_token=refresh_token or (existing.refresh_token if existing else ""),
            token_expires_at=expires_at,
            token_version=existing.token_version + 1 if existing else 0,
            calendar_id=calendar_id,
            time_zone=time_zone,
        )
        self.connections[account_id] = conn
        return conn.model_copy()

    def update_connection(self, account_id, **fields):
        conn = self.connections.get(account_id)
        if conn is None:
            return False
        self.connections[account_id] = conn.model_copy(update=fields)
        return True

    def save_refreshed_token(self, account_id, expected_version, access_token, expires_at, refresh_token=None):
        conn = self.connections.get(account_id)
        if conn is None or conn.token_version != expected_version:
            return False
        update: dict[str, Any] = {
            "access_token": access_token,
            "token_expires_at": expires_at,
            "token_version": conn.token_version + 1,
        }
        if refresh_token:
            update["refresh_token"] = refresh_token
        self.connections[account_id] = conn.model_copy(update=update)
        return True

    def mark_needs_reauth(self, account_id, error):
        self.update_connection(account_id, needs_reauth=True, last_sync_error=error)

    def save_webhook_channel(self, account_id, channel_id, resource_id, expiration):
        self.update_connection(
            account_id,
            webhook_channel_id=channel_id,
            webhook_resource_id=resource_id,
            webhook_expiration=expiration,
        )

    def mark_synced(self, account_id, synced_at):
        self.update_connection(account_id, last_synced_at=synced_at, last_sync_error=None)

    def record_sync_error(self, account_id, error):
        self.update_connection(account_id, last_sync_error=error)

    def delete_connection(self, account_id):
        if account_id not in self.connections:
            return False
        del self.connections[account_id]
        self.overrides = [
            row for row in self.overrides
            if not (row.account_id == account_id and row.reason == GOOGLE_CALENDAR_SYNC_REASON)
        ]
        for booking_id, booking in self.bookings.items():
            if booking.professional_id == account_id:
                self.bookings[booking_id] = booking.model_copy(update={"external_event_id": None})
        return True

    # blocked time

    def replace_sync_blocks(self, account_id, from_date, blocks):
        blocks = list(blocks)
        if self.fail_replace:
            raise PersistenceError("Failed to create availability overrides: disk full")
        self.overrides = [
            row for row in self.overrides
            if not (
                row.account_id == account_id
                and row.reason == GOOGLE_CALENDAR_SYNC_REASON
                and row.override_date >= from_date
            )
        ]
        self.overrides.extend(
            OverrideRow(account_id, b.override_date, b.start_time, b.end_time, GOOGLE_CALENDAR_SYNC_REASON)
            for b in blocks
        )
        return len(blocks)

    def list_sync_blocks(self, account_id):
        rows = sorted(
            (r for r in self.overrides if r.account_id == account_id and r.reason == GOOGLE_CALENDAR_SYNC_REASON),
            key=lambda r: (r.override_date, r.start_time or time(0)),
        )
        return [BlockedTime(override_date=r.override_date, start_time=r.start_time, end_time=r.end_time) for r in rows]

    # bookings

    def get_booking(self, booking_id):
        booking = self.bookings.get(booking_id)
        return booking.model_copy() if booking else None

    def set_booking_event_id(self, booking_id, event_id):
        booking = self.bookings[booking_id]
        self.bookings[booking_id] = booking.model_copy(update={"external_event_id": event_id})


# ---------------------------------------------------------------------------
# Fake Google Calendar client
# ---------------------------------------------------------------------------


class FakeCalendarClient:
    """Records calls; behaves like Google for the subset the services use."""

    def __init__(self) -> None:
        self.events: list[ExternalEvent] = []
        self.calendars: list[CalendarInfo] = [
            CalendarInfo(id="primary@example.com", display_name="Work", is_primary=True, time_zone="UTC"),
        ]
        self.created: dict[str, EventDraft] = {}
        self.deleted: list[str] = []
        self.list_calls: list[tuple] = []
        self.watches: list[dict] = []
        self.stopped: list[tuple[str, str]] = []
        self.list_error: Exception | None = None
        self.create_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.watch_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.event_statuses: dict[str, str] = {}
        self.restored: list[str] = []
        self.watch_expiration: datetime | None = NOW + timedelta(days=7)

    def list_calendars(self, access_token):
        return list(self.calendars)

    def list_events(self, access_token, calendar_id, window_start, window_end):
        self.list_calls.append((access_token, calendar_id, window_start, window_end))
        if self.list_error:
            raise self.list_error
        return list(self.events)

    def create_event(self, access_token, calendar_id, draft):
        if self.create_error:
            raise self.create_error
        event_id = draft.event_id or f"evt{len(self.created)}"
        self.created[event_id] = draft
        return ExternalEvent(id=event_id, title=draft.summary, start=draft.start, end=draft.end)

    def get_event_status(self, access_token, calendar_id, event_id):
        return self.event_statuses.get(event_id)

    def restore_event(self, access_token, calendar_id, draft):
        self.restored.append(draft.event_id)
        self.event_statuses[draft.event_id] = "confirmed"
        return ExternalEvent(id=draft.event_id, title=draft.summary, start=draft.start, end=draft.end)

    def delete_event(self, access_token, calendar_id, event_id):
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(event_id)

    def register_webhook(self, access_token, calendar_id, channel_id, callback_url, ttl=None, channel_token=None):
        if self.watch_error:
            raise self.watch_error
        self.watches.append({
            "calendar_id": calendar_id,
            "channel_id": channel_id,
            "callback_url": callback_url,
            "ttl": ttl,
            "channel_token": channel_token,
        })
        return WatchChannel(channel_id=channel_id, resource_id=f"res-{channel_id}", expires_at=self.watch_expiration)

    def deregister_webhook(self, access_token, channel_id, resource_id):
        if self.stop_error:
            raise self.stop_error
        self.stopped.append((channel_id, resource_id))


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_connection(account_id: str = "acct-1", **overrides: Any) -> ConnectionState:
    fields: dict[str, Any] = {
        "id": f"conn-{account_id}",
        "account_id": account_id,
        "access_token": "stored-access",
        "refresh_token": "stored-refresh",
        "token_expires_at": NOW + timedelta(hours=1),
        "token_version": 0,
        "calendar_id": "primary@example.com",
        "time_zone": "UTC",
        "sync_enabled": True,
    }
    fields.update(overrides)
    return ConnectionState(**fields)


def make_booking(booking_id: str | None = None, **overrides: Any) -> BookingDetails:
    fields: dict[str, Any] = {
        "id": booking_id or str(uuid.uuid4()),
        "booking_number": "BK-1001",
        "professional_id": "acct-1",
        "start_time": datetime(2025, 3, 12, 15, 0, tzinfo=UTC),
        "end_time": datetime(2025, 3, 12, 16, 0, tzinfo=UTC),
        "consultation_type": "video",
        "client_name": "Jane Doe",
        "professional_name": "Dr. Smith",
        "time_zone": "UTC",
    }
    fields.update(overrides)
    return BookingDetails(**fields)


def make_event(event_id: str, start: datetime, end: datetime, title: str = "Busy") -> ExternalEvent:
    return ExternalEvent(id=event_id, title=title, start=start, end=end)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryCalendarStore:
    return InMemoryCalendarStore()


@pytest.fixture
def client() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def token_manager(clock) -> TokenLifecycleManager:
    return TokenLifecycleManager(client_id="client-id", client_secret="client-secret", timeout=5, clock=clock)
