# calendar_sync/services/sync/export_mapper.py
"""Export side of the sync: confirmed bookings -> events on the external calendar"""
import logging
from typing import Optional

from calendar_sync.schemas.calendar_events import (
    BookingDetails,
    ConnectionState,
    ConsultationType,
    EventDraft,
    ExportResult,
)
from calendar_sync.services.calendar.exceptions import CalendarConflictError, CalendarSyncError
from calendar_sync.services.calendar.google_calendar_client import GoogleCalendarClient
from calendar_sync.services.calendar.token_manager import TokenLifecycleManager
from calendar_sync.services.sync.import_reconciler import resolve_zone
from calendar_sync.services.sync.store import CalendarStore

logger = logging.getLogger(__name__)


def event_id_for_booking(booking_id: str) -> str:
    """
    Deterministic event id for a booking.

    Google accepts client ids made of base32hex characters (a-v, 0-9), 5-1024
    long. A uuid's hex digits are a subset, so prefixing keeps it valid.
    """
    return "booking" + booking_id.replace("-", "").lower()


def build_event_draft(booking: BookingDetails) -> EventDraft:
    zone = resolve_zone(booking.time_zone)

    if booking.consultation_type == ConsultationType.VIDEO.value:
        type_label = "Video"
    else:
        type_label = "In-Person"
    client_name = booking.client_name or "Client"

    lines = [
        f"Booking #{booking.booking_number}",
        f"Client: {client_name}",
        f"Type: {type_label}",
    ]
    if booking.client_notes:
        lines.append(f"Notes: {booking.client_notes}")

    return EventDraft(
        summary=f"{type_label} Appointment - {client_name}",
        description="\n".join(lines),
        start=booking.start_time.astimezone(zone),
        end=booking.end_time.astimezone(zone),
        time_zone=zone.key,
        event_id=event_id_for_booking(booking.id),
    )


def _exportable(connection: Optional[ConnectionState]) -> bool:
    return (
        connection is not None
        and connection.sync_enabled
        and bool(connection.calendar_id)
        and not connection.needs_reauth
    )


class ExportMapper:
    def __init__(
            self,
            store: CalendarStore,
            client: Optional[GoogleCalendarClient] = None,
            token_manager: Optional[TokenLifecycleManager] = None,
    ):
        self.store = store
        self.client = client or GoogleCalendarClient()
        self.token_manager = token_manager or TokenLifecycleManager()

    def export_booking(self, booking_id: str) -> ExportResult:
        """Create the external event for a confirmed booking (at most once)"""
        booking = self.store.get_booking(booking_id)
        if booking is None:
            return ExportResult(success=False, error="Booking not found")

        if booking.external_event_id:
            return ExportResult(success=True, event_id=booking.external_event_id)

        connection = self.store.get_connection(booking.professional_id)
        if not _exportable(connection):
            logger.debug(f"No active calendar connection for professional {booking.professional_id}")
            return ExportResult(success=True)

        draft = build_event_draft(booking)
        try:
            access_token = self.token_manager.access_token_for(self.store, connection)
            try:
                event_id = self.client.create_event(access_token, connection.calendar_id, draft).id
            except CalendarConflictError:
                event_id = self._adopt_existing(access_token, connection.calendar_id, draft, booking_id)
            self.store.set_booking_event_id(booking_id, event_id)
        except CalendarSyncError as exc:
            logger.error(f"Failed to export booking {booking_id}: {exc}")
            return ExportResult(success=False, error=str(exc), retryable=exc.retryable)

        logger.info(f"Exported booking {booking_id} as event {event_id}")
        return ExportResult(success=True, event_id=event_id)

    def remove_booking_export(self, booking_id: str) -> ExportResult:
        """Delete the external event of a cancelled booking and clear the mapping"""
        booking = self.store.get_booking(booking_id)
        if booking is None or not booking.external_event_id:
            return ExportResult(success=True)

        event_id = booking.external_event_id
        connection = self.store.get_connection(booking.professional_id)

        try:
            if connection is None or not connection.calendar_id:
                self.store.set_booking_event_id(booking_id, None)
                return ExportResult(success=True)

            access_token = self.token_manager.access_token_for(self.store, connection)
            self.client.delete_event(access_token, connection.calendar_id, event_id)
            self.store.set_booking_event_id(booking_id, None)
        except CalendarSyncError as exc:
            logger.error(f"Failed to remove exported event {event_id} for booking {booking_id}: {exc}")
            return ExportResult(success=False, event_id=event_id, error=str(exc), retryable=exc.retryable)

        logger.info(f"Removed event {event_id} for booking {booking_id}")
        return ExportResult(success=True, event_id=event_id)

    def _adopt_existing(self, access_token: str, calendar_id: str, draft: EventDraft, booking_id: str) -> str:
        """
        Take over an event that already holds the booking's id.

        Either an earlier attempt created it before failing, or the booking was
        exported, removed and confirmed again. Google keeps deleted events as
        "cancelled" and still reserves their id, so those are restored.
        """
        status = self.client.get_event_status(access_token, calendar_id, draft.event_id)
        if status == "cancelled":
            logger.info(f"Restoring cancelled event {draft.event_id} for booking {booking_id}")
            return self.client.restore_event(access_token, calendar_id, draft).id

        logger.info(f"Event {draft.event_id} already exists, adopting it for booking {booking_id}")
        return draft.event_id
