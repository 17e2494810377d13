# calendar_sync/api/v1/calendar.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from calendar_sync.api.dependencies import get_connection_service
from calendar_sync.services.calendar.connection_service import CalendarConnectionService
from calendar_sync.services.calendar.exceptions import CalendarSyncError, ReauthorizationRequired
from calendar_sync.tasks.calendar_tasks import import_busy_times, register_webhook_channel

router = APIRouter(tags=["calendar"])
logger = logging.getLogger(__name__)


def _queue_sync(account_id: str) -> None:
    """Fire-and-forget: first import plus a fresh push channel"""
    import_busy_times.delay(account_id)
    register_webhook_channel.delay(account_id)


# ========== OAUTH ==========
@router.post("/google/authorize/{account_id}")
def initiate_google_auth(
        account_id: str,
        service: CalendarConnectionService = Depends(get_connection_service),
):
    """Returns authorization URL for the professional to visit"""
    return {"authorization_url": service.authorization_url(account_id)}


@router.get("/google/callback")
def google_callback(
        code: str,
        state: str,  # account_id
        service: CalendarConnectionService = Depends(get_connection_service),
):
    """Google redirects here after authorization"""
    try:
        connection = service.complete_authorization(code, state)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CalendarSyncError as e:
        logger.error(f"Calendar connect failed for account {state}: {e}")
        raise HTTPException(status_code=502, detail="Google Calendar request failed")

    _queue_sync(connection.account_id)

    return {
        "success": True,
        "connection_id": connection.id,
        "calendar_id": connection.calendar_id,
    }


# ========== CONNECTION ==========
@router.get("/{account_id}/connection")
def get_connection(
        account_id: str,
        service: CalendarConnectionService = Depends(get_connection_service),
):
    status = service.get_connection(account_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Calendar connection not found")
    return status


@router.get("/{account_id}/calendars")
def list_calendars(
        account_id: str,
        service: CalendarConnectionService = Depends(get_connection_service),
):
    try:
        calendars = service.list_calendars(account_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReauthorizationRequired:
        raise HTTPException(status_code=409, detail="Calendar connection needs re-authorization")
    except CalendarSyncError as e:
        logger.error(f"Listing calendars failed for account {account_id}: {e}")
        raise HTTPException(status_code=502, detail="Google Calendar request failed")
    return {"calendars": calendars}


@router.patch("/{account_id}/select-calendar")
def select_calendar(
        account_id: str,
        calendar_id: str = Query(...),
        service: CalendarConnectionService = Depends(get_connection_service),
):
    """Let the professional choose which Google calendar to sync"""
    try:
        status = service.select_calendar(account_id, calendar_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReauthorizationRequired:
        raise HTTPException(status_code=409, detail="Calendar connection needs re-authorization")
    except CalendarSyncError as e:
        logger.error(f"Selecting calendar failed for account {account_id}: {e}")
        raise HTTPException(status_code=502, detail="Google Calendar request failed")

    if status.sync_enabled:
        _queue_sync(account_id)
    return status


@router.patch("/{account_id}/sync")
def toggle_sync(
        account_id: str,
        enabled: bool = Query(...),
        service: CalendarConnectionService = Depends(get_connection_service),
):
    try:
        status = service.set_sync_enabled(account_id, enabled)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if enabled:
        _queue_sync(account_id)
    return status


@router.post("/{account_id}/sync-now")
def trigger_sync(
        account_id: str,
        service: CalendarConnectionService = Depends(get_connection_service),
):
    if service.get_connection(account_id) is None:
        raise HTTPException(status_code=404, detail="Calendar connection not found")
    task = import_busy_times.delay(account_id)
    return {"success": True, "task_id": task.id}


@router.delete("/{account_id}/connection")
def disconnect(
        account_id: str,
        service: CalendarConnectionService = Depends(get_connection_service),
):
    if not service.disconnect(account_id):
        raise HTTPException(status_code=404, detail="Calendar connection not found")
    return {"success": True}
