# ============================================================================
# FILE: calendar_sync/api/dependencies.py
# Request-scoped service wiring
# ============================================================================
from fastapi import Depends
from sqlalchemy.orm import Session

from calendar_sync.config.database import get_db
from calendar_sync.services.calendar.connection_service import CalendarConnectionService
from calendar_sync.services.sync.store import CalendarStore, SqlAlchemyCalendarStore


def get_calendar_store(db: Session = Depends(get_db)) -> CalendarStore:
    """One store per request, bound to the request's session"""
    return SqlAlchemyCalendarStore(db)


def get_connection_service(store: CalendarStore = Depends(get_calendar_store)) -> CalendarConnectionService:
    return CalendarConnectionService(store)
