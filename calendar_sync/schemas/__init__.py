# calendar_sync/schemas/__init__.py
from .calendar_events import (
    CalendarProvider,
    ConsultationType,
    TokenState,
    ValidToken,
    CalendarInfo,
    ExternalEvent,
    EventDraft,
    WatchChannel,
    ConnectionState,
    BookingDetails,
    BlockedTime,
    ImportResult,
    ExportResult,
    ChannelResult,
    SyncSummary,
    PushNotification,
    SyncTrigger,
    ConnectionStatus,
)

__all__ = [
    "CalendarProvider",
    "ConsultationType",
    "TokenState",
    "ValidToken",
    "CalendarInfo",
    "ExternalEvent",
    "EventDraft",
    "WatchChannel",
    "ConnectionState",
    "BookingDetails",
    "BlockedTime",
    "ImportResult",
    "ExportResult",
    "ChannelResult",
    "SyncSummary",
    "PushNotification",
    "SyncTrigger",
    "ConnectionStatus",
]
