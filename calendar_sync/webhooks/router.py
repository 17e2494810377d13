# calendar_sync/webhooks/router.py
from fastapi import APIRouter

webhook_router = APIRouter()


# Import handlers inside a function to avoid circular imports
def register_handlers():
    from calendar_sync.webhooks import calendar_handler
    webhook_router.include_router(calendar_handler.router, prefix="/calendar")


register_handlers()


@webhook_router.get("/")
async def webhook_info():
    return {
        "endpoints": {
            "google_calendar": "/webhooks/calendar/google",
        },
        "note": "Google Calendar push notifications, POST only"
    }
