# calendar_sync/schemas/calendar_events.py
from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, Literal
from datetime import date, datetime, time, timezone
from enum import Enum


class CalendarProvider(str, Enum):
    GOOGLE = "google"


class ConsultationType(str, Enum):
    VIDEO = "video"
    IN_PERSON = "in_person"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class TokenState(BaseModel):
    """Stored OAuth credentials for one connection"""
    access_token: str = Field(..., repr=False)
    refresh_token: str = Field(..., repr=False)
    expires_at: Optional[datetime] = Field(None, description="Access token expiry (UTC)")


class ValidToken(BaseModel):
    """Access token guaranteed to outlive the refresh margin"""
    access_token: str = Field(..., repr=False)
    refreshed: bool = False
    new_expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = Field(None, repr=False, description="Set when the provider rotated it")


# ---------------------------------------------------------------------------
# Provider payloads
# ---------------------------------------------------------------------------

class CalendarInfo(BaseModel):
    id: str
    display_name: str
    is_primary: bool = False
    time_zone: Optional[str] = None


class ExternalEvent(BaseModel):
    """A timed event on the external calendar"""
    id: str
    title: str = "(No title)"
    start: datetime
    end: datetime
    time_zone: Optional[str] = None

    @field_validator("end")
    @classmethod
    def end_not_before_start(cls, v: datetime, info) -> datetime:
        start = info.data.get("start")
        if start and v < start:
            raise ValueError("Event end must not be before its start")
        return v


class EventDraft(BaseModel):
    """Event to create on the external calendar"""
    summary: str
    description: str = ""
    start: datetime
    end: datetime
    time_zone: str
    event_id: Optional[str] = Field(None, description="Client-supplied id, makes creation idempotent")

    def to_google_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "summary": self.summary,
            "description": self.description,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.time_zone},
        }
        if self.event_id:
            body["id"] = self.event_id
        return body


class WatchChannel(BaseModel):
    channel_id: str
    resource_id: str
    expires_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------

class ConnectionState(BaseModel):
    """Decrypted view of a calendar connection"""
    id: str
    account_id: str
    provider: CalendarProvider = CalendarProvider.GOOGLE
    access_token: str = Field(..., repr=False)
    refresh_token: str = Field(..., repr=False)
    token_expires_at: Optional[datetime] = None
    token_version: int = 0
    calendar_id: Optional[str] = None
    time_zone: Optional[str] = None
    sync_enabled: bool = True
    needs_reauth: bool = False
    webhook_channel_id: Optional[str] = None
    webhook_resource_id: Optional[str] = None
    webhook_expiration: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def tokens(self) -> TokenState:
        return TokenState(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.token_expires_at,
        )


class BookingDetails(BaseModel):
    """Booking joined with the display data the export needs"""
    id: str
    booking_number: str
    professional_id: str
    start_time: datetime
    end_time: datetime
    consultation_type: str = ConsultationType.IN_PERSON.value
    client_notes: Optional[str] = None
    external_event_id: Optional[str] = None
    professional_name: str = ""
    client_name: str = ""
    time_zone: Optional[str] = None


class BlockedTime(BaseModel):
    """One sync-derived unavailable interval"""
    override_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class ImportResult(BaseModel):
    success: bool
    events_processed: int = 0
    error: Optional[str] = None
    skipped: bool = Field(False, description="Configuration problem, nothing was attempted")
    retryable: bool = False


class ExportResult(BaseModel):
    success: bool
    event_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False


class ChannelResult(BaseModel):
    success: bool
    error: Optional[str] = None
    channel_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class SyncSummary(BaseModel):
    synced: int = 0
    errors: int = 0


# ---------------------------------------------------------------------------
# Push notifications
# ---------------------------------------------------------------------------

class PushNotification(BaseModel):
    """Headers of a Google Calendar push notification"""
    channel_id: Optional[str] = None
    resource_id: Optional[str] = None
    resource_state: Optional[str] = None
    channel_token: Optional[str] = None
    message_number: Optional[str] = None


class SyncTrigger(BaseModel):
    """'Something changed, go re-pull' signal for one account"""
    account_id: str
    source: Literal["webhook", "schedule", "manual"] = "webhook"
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------

class ConnectionStatus(BaseModel):
    provider: CalendarProvider
    calendar_id: Optional[str] = None
    time_zone: Optional[str] = None
    sync_enabled: bool
    needs_reauth: bool
    last_synced_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    webhook_expiration: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, state: ConnectionState) -> "ConnectionStatus":
        return cls(**state.model_dump(include=set(cls.model_fields)))
