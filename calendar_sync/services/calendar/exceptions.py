# calendar_sync/services/calendar/exceptions.py
"""Errors raised by the calendar client, token manager and store"""
from typing import Optional


class CalendarSyncError(Exception):
    """Base class for calendar sync failures"""
    retryable = False


class CalendarAPIError(CalendarSyncError):
    """Non-2xx response from the calendar provider"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CalendarTransientError(CalendarAPIError):
    """Timeout, connection failure, rate limit or 5xx"""
    retryable = True


class CalendarConflictError(CalendarAPIError):
    """A client-supplied id already exists on the provider"""


class TokenRefreshError(CalendarSyncError):
    """Refresh token exchange failed for a reason that may go away on its own"""
    retryable = True


class ReauthorizationRequired(TokenRefreshError):
    """The provider rejected the refresh grant; the user has to connect again"""
    retryable = False


class PersistenceError(CalendarSyncError):
    """Writing sync state to the database failed"""
    retryable = True
