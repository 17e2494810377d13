# calendar_sync/webhooks/calendar_handler.py
"""Google Calendar push notifications - queuing only"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response

from calendar_sync.api.dependencies import get_calendar_store
from calendar_sync.schemas.calendar_events import PushNotification
from calendar_sync.services.sync.store import CalendarStore
from calendar_sync.services.sync.webhook_channels import resolve_notification
from calendar_sync.tasks.calendar_tasks import import_busy_times

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/google")
def handle_google_notification(
        x_goog_channel_id: Optional[str] = Header(None),
        x_goog_resource_id: Optional[str] = Header(None),
        x_goog_resource_state: Optional[str] = Header(None),
        x_goog_channel_token: Optional[str] = Header(None),
        x_goog_message_number: Optional[str] = Header(None),
        store: CalendarStore = Depends(get_calendar_store),
):
    """Resolve the channel to an account and queue an import; the body is ignored"""
    if not x_goog_channel_id or not x_goog_resource_id:
        raise HTTPException(status_code=400, detail="Missing channel headers")

    notification = PushNotification(
        channel_id=x_goog_channel_id,
        resource_id=x_goog_resource_id,
        resource_state=x_goog_resource_state,
        channel_token=x_goog_channel_token,
        message_number=x_goog_message_number,
    )

    trigger = resolve_notification(store, notification)
    if trigger is None:
        return {"status": "ignored"}

    import_busy_times.delay(trigger.account_id)
    logger.info(f"Queued calendar import for account {trigger.account_id} (channel {x_goog_channel_id})")

    return Response(status_code=200)
