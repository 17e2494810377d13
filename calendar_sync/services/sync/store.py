# calendar_sync/services/sync/store.py
"""
Data access for the sync engine.

Every service receives a CalendarStore explicitly; the SQLAlchemy store wraps
one Session and is the production implementation.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Iterable, List, Optional

from cryptography.fernet import Fernet
from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from calendar_sync.models import (
    AvailabilityOverride,
    Booking,
    CalendarConnection,
    GOOGLE_CALENDAR_SYNC_REASON,
    Professional,
)
from calendar_sync.schemas.calendar_events import (
    BlockedTime,
    BookingDetails,
    CalendarProvider,
    ConnectionState,
)
from calendar_sync.services.calendar.exceptions import PersistenceError
from calendar_sync.utils.encryption import decrypt_token, encrypt_token, get_cipher

logger = logging.getLogger(__name__)


def _single(value: Any) -> Any:
    """Collapse a joined value that may arrive as a list into one record (or None)"""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _parse_uuid(value) -> Optional[uuid.UUID]:
    """None for ids that cannot name a row (lookups then find nothing)"""
    try:
        return _as_uuid(value)
    except ValueError:
        return None


def _full_name(person) -> str:
    if person is None:
        return ""
    return f"{person.first_name} {person.last_name}".strip()


class CalendarStore(ABC):
    """Narrow data-access handle used by the sync services"""

    # Connections ---------------------------------------------------------

    @abstractmethod
    def get_connection(self, account_id: str) -> Optional[ConnectionState]:
        ...

    @abstractmethod
    def get_connection_by_channel(self, channel_id: str, resource_id: str) -> Optional[ConnectionState]:
        ...

    @abstractmethod
    def list_syncable_account_ids(self) -> List[str]:
        """Accounts with sync enabled, a calendar chosen and valid authorization"""

    @abstractmethod
    def list_channels_expiring_before(self, moment: datetime) -> List[ConnectionState]:
        ...

    @abstractmethod
    def upsert_connection(
            self,
            account_id: str,
            access_token: str,
            refresh_token: str,
            expires_at: Optional[datetime],
            calendar_id: Optional[str],
            time_zone: Optional[str],
    ) -> ConnectionState:
        ...

    @abstractmethod
    def update_connection(self, account_id: str, **fields) -> bool:
        """Plain column update (calendar_id, sync_enabled, time_zone ...)"""

    @abstractmethod
    def save_refreshed_token(
            self,
            account_id: str,
            expected_version: int,
            access_token: str,
            expires_at: Optional[datetime],
            refresh_token: Optional[str] = None,
    ) -> bool:
        """Compare-and-swap on token_version; False when another writer won"""

    @abstractmethod
    def mark_needs_reauth(self, account_id: str, error: str) -> None:
        ...

    @abstractmethod
    def save_webhook_channel(
            self,
            account_id: str,
            channel_id: Optional[str],
            resource_id: Optional[str],
            expiration: Optional[datetime],
    ) -> None:
        ...

    @abstractmethod
    def mark_synced(self, account_id: str, synced_at: datetime) -> None:
        ...

    @abstractmethod
    def record_sync_error(self, account_id: str, error: str) -> None:
        ...

    @abstractmethod
    def delete_connection(self, account_id: str) -> bool:
        """Delete the connection, its sync blocks and every stored event mapping"""

    # Blocked time --------------------------------------------------------

    @abstractmethod
    def replace_sync_blocks(self, account_id: str, from_date: date, blocks: Iterable[BlockedTime]) -> int:
        """Atomically swap sync-tagged rows dated >= from_date for `blocks`"""

    @abstractmethod
    def list_sync_blocks(self, account_id: str) -> List[BlockedTime]:
        ...

    # Bookings ------------------------------------------------------------

    @abstractmethod
    def get_booking(self, booking_id: str) -> Optional[BookingDetails]:
        ...

    @abstractmethod
    def set_booking_event_id(self, booking_id: str, event_id: Optional[str]) -> None:
        ...


class SqlAlchemyCalendarStore(CalendarStore):
    def __init__(self, db: Session, cipher: Optional[Fernet] = None, provider: str = CalendarProvider.GOOGLE.value):
        self.db = db
        self.cipher = cipher or get_cipher()
        self.provider = provider

    # helpers -------------------------------------------------------------

    def _connection_row(self, account_id: str) -> Optional[CalendarConnection]:
        account_uuid = _parse_uuid(account_id)
        if account_uuid is None:
            return None
        return self.db.execute(
            select(CalendarConnection).where(
                CalendarConnection.account_id == account_uuid,
                CalendarConnection.provider == self.provider,
            )
        ).scalar_one_or_none()

    def _to_state(self, row: CalendarConnection) -> ConnectionState:
        return ConnectionState(
            id=str(row.id),
            account_id=str(row.account_id),
            provider=row.provider,
            access_token=decrypt_token(row.access_token_encrypted, self.cipher) or "",
            refresh_token=decrypt_token(row.refresh_token_encrypted, self.cipher) or "",
            token_expires_at=row.token_expires_at,
            token_version=row.token_version or 0,
            calendar_id=row.calendar_id,
            time_zone=row.time_zone,
            sync_enabled=bool(row.sync_enabled),
            needs_reauth=bool(row.needs_reauth),
            webhook_channel_id=row.webhook_channel_id,
            webhook_resource_id=row.webhook_resource_id,
            webhook_expiration=row.webhook_expiration,
            last_synced_at=row.last_synced_at,
            last_sync_error=row.last_sync_error,
            created_at=row.created_at,
        )

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to {action}: {exc}")
            raise PersistenceError(f"Failed to {action}: {exc}") from exc

    # connections ---------------------------------------------------------

    def get_connection(self, account_id: str) -> Optional[ConnectionState]:
        row = self._connection_row(account_id)
        return self._to_state(row) if row else None

    def get_connection_by_channel(self, channel_id: str, resource_id: str) -> Optional[ConnectionState]:
        row = self.db.execute(
            select(CalendarConnection).where(
                CalendarConnection.webhook_channel_id == channel_id,
                CalendarConnection.webhook_resource_id == resource_id,
            )
        ).scalar_one_or_none()
        return self._to_state(row) if row else None

    def list_syncable_account_ids(self) -> List[str]:
        rows = self.db.execute(
            select(CalendarConnection.account_id).where(
                CalendarConnection.provider == self.provider,
                CalendarConnection.sync_enabled.is_(True),
                CalendarConnection.needs_reauth.is_(False),
                CalendarConnection.calendar_id.is_not(None),
            )
        ).scalars().all()
        return [str(account_id) for account_id in rows]

    def list_channels_expiring_before(self, moment: datetime) -> List[ConnectionState]:
        rows = self.db.execute(
            select(CalendarConnection).where(
                CalendarConnection.provider == self.provider,
                CalendarConnection.sync_enabled.is_(True),
                CalendarConnection.needs_reauth.is_(False),
                CalendarConnection.calendar_id.is_not(None),
                CalendarConnection.webhook_expiration.is_not(None),
                CalendarConnection.webhook_expiration < moment,
            )
        ).scalars().all()
        return [self._to_state(row) for row in rows]

    def upsert_connection(self, account_id, access_token, refresh_token, expires_at, calendar_id, time_zone):
        row = self._connection_row(account_id)
        if row is None:
            row = CalendarConnection(account_id=_as_uuid(account_id), provider=self.provider, token_version=0)
            self.db.add(row)
        else:
            row.token_version = (row.token_version or 0) + 1

        row.access_token_encrypted = encrypt_token(access_token, self.cipher)
        if refresh_token:
            row.refresh_token_encrypted = encrypt_token(refresh_token, self.cipher)
        row.token_expires_at = expires_at
        row.calendar_id = calendar_id
        row.time_zone = time_zone
        row.sync_enabled = True
        row.needs_reauth = False
        row.last_sync_error = None

        self._commit("save calendar connection")
        self.db.refresh(row)
        return self._to_state(row)

    def update_connection(self, account_id: str, **fields) -> bool:
        account_uuid = _parse_uuid(account_id)
        if account_uuid is None:
            return False
        result = self.db.execute(
            update(CalendarConnection)
            .where(
                CalendarConnection.account_id == account_uuid,
                CalendarConnection.provider == self.provider,
            )
            .values(**fields)
        )
        self._commit("update calendar connection")
        return result.rowcount > 0

    def save_refreshed_token(self, account_id, expected_version, access_token, expires_at, refresh_token=None):
        values = {
            "access_token_encrypted": encrypt_token(access_token, self.cipher),
            "token_expires_at": expires_at,
            "token_version": CalendarConnection.token_version + 1,
        }
        if refresh_token:
            values["refresh_token_encrypted"] = encrypt_token(refresh_token, self.cipher)

        account_uuid = _parse_uuid(account_id)
        if account_uuid is None:
            return False
        result = self.db.execute(
            update(CalendarConnection)
            .where(
                CalendarConnection.account_id == account_uuid,
                CalendarConnection.provider == self.provider,
                CalendarConnection.token_version == expected_version,
            )
            .values(**values)
        )
        self._commit("save refreshed token")
        return result.rowcount == 1

    def mark_needs_reauth(self, account_id: str, error: str) -> None:
        self.update_connection(account_id, needs_reauth=True, last_sync_error=error)

    def save_webhook_channel(self, account_id, channel_id, resource_id, expiration) -> None:
        self.update_connection(
            account_id,
            webhook_channel_id=channel_id,
            webhook_resource_id=resource_id,
            webhook_expiration=expiration,
        )

    def mark_synced(self, account_id: str, synced_at: datetime) -> None:
        self.update_connection(account_id, last_synced_at=synced_at, last_sync_error=None)

    def record_sync_error(self, account_id: str, error: str) -> None:
        self.update_connection(account_id, last_sync_error=error)

    def delete_connection(self, account_id: str) -> bool:
        row = self._connection_row(account_id)
        if row is None:
            return False
        account_uuid = row.account_id

        self.db.execute(
            update(Booking)
            .where(Booking.professional_id == account_uuid, Booking.external_event_id.is_not(None))
            .values(external_event_id=None)
        )
        self.db.execute(
            delete(AvailabilityOverride).where(
                AvailabilityOverride.account_id == account_uuid,
                AvailabilityOverride.reason == GOOGLE_CALENDAR_SYNC_REASON,
            )
        )
        self.db.delete(row)
        self._commit("delete calendar connection")
        return True

    # blocked time --------------------------------------------------------

    def replace_sync_blocks(self, account_id: str, from_date: date, blocks: Iterable[BlockedTime]) -> int:
        account_uuid = _as_uuid(account_id)
        rows = [
            AvailabilityOverride(
                account_id=account_uuid,
                override_date=block.override_date,
                is_available=False,
                start_time=block.start_time,
                end_time=block.end_time,
                reason=GOOGLE_CALENDAR_SYNC_REASON,
            )
            for block in blocks
        ]
        try:
            self.db.execute(
                delete(AvailabilityOverride).where(
                    AvailabilityOverride.account_id == account_uuid,
                    AvailabilityOverride.reason == GOOGLE_CALENDAR_SYNC_REASON,
                    AvailabilityOverride.override_date >= from_date,
                )
            )
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to create availability overrides: {exc}") from exc
        return len(rows)

    def list_sync_blocks(self, account_id: str) -> List[BlockedTime]:
        rows = self.db.execute(
            select(AvailabilityOverride)
            .where(
                AvailabilityOverride.account_id == _as_uuid(account_id),
                AvailabilityOverride.reason == GOOGLE_CALENDAR_SYNC_REASON,
            )
            .order_by(AvailabilityOverride.override_date, AvailabilityOverride.start_time)
        ).scalars().all()
        return [
            BlockedTime(override_date=row.override_date, start_time=row.start_time, end_time=row.end_time)
            for row in rows
        ]

    # bookings ------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Optional[BookingDetails]:
        booking_uuid = _parse_uuid(booking_id)
        if booking_uuid is None:
            return None
        booking = self.db.execute(
            select(Booking)
            .options(
                selectinload(Booking.professional).selectinload(Professional.locations),
                selectinload(Booking.client),
            )
            .where(Booking.id == booking_uuid)
        ).scalar_one_or_none()
        if booking is None:
            return None

        professional = _single(booking.professional)
        location = _single(professional.locations) if professional is not None else None

        return BookingDetails(
            id=str(booking.id),
            booking_number=booking.booking_number,
            professional_id=str(booking.professional_id),
            start_time=booking.start_time,
            end_time=booking.end_time,
            consultation_type=booking.consultation_type,
            client_notes=booking.client_notes,
            external_event_id=booking.external_event_id,
            professional_name=_full_name(professional),
            client_name=_full_name(_single(booking.client)),
            time_zone=location.timezone if location is not None else None,
        )

    def set_booking_event_id(self, booking_id: str, event_id: Optional[str]) -> None:
        self.db.execute(
            update(Booking).where(Booking.id == _as_uuid(booking_id)).values(external_event_id=event_id)
        )
        self._commit("store booking event mapping")
