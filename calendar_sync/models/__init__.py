# calendar_sync/models/__init__.py
from .base import Base
from .booking import Booking, Client, Professional, ProfessionalLocation
from .calendar_connection import CalendarConnection
from .availability import AvailabilityOverride, GOOGLE_CALENDAR_SYNC_REASON

__all__ = [
    "Base",
    "Booking",
    "Client",
    "Professional",
    "ProfessionalLocation",
    "CalendarConnection",
    "AvailabilityOverride",
    "GOOGLE_CALENDAR_SYNC_REASON",
]
