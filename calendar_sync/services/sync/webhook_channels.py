# calendar_sync/services/sync/webhook_channels.py
"""
Push notification channels.

A channel tells us *that* a calendar changed, never *what* changed. Inbound
notifications are reduced to a SyncTrigger and the import re-pulls.
"""
import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from calendar_sync.config.settings import get_settings
from calendar_sync.schemas.calendar_events import (
    ChannelResult,
    ConnectionState,
    PushNotification,
    SyncSummary,
    SyncTrigger,
)
from calendar_sync.services.calendar.exceptions import CalendarSyncError
from calendar_sync.services.calendar.google_calendar_client import GoogleCalendarClient
from calendar_sync.services.calendar.token_manager import TokenLifecycleManager, utcnow
from calendar_sync.services.sync.store import CalendarStore

settings = get_settings()

logger = logging.getLogger(__name__)

CHANNEL_ID_PREFIX = "calsync-"

# Sent once when a channel is created, carries no change
HANDSHAKE_STATE = "sync"


def new_channel_id() -> str:
    return f"{CHANNEL_ID_PREFIX}{uuid.uuid4().hex}"


def channel_token_for(channel_id: str, secret: Optional[str] = None) -> str:
    secret = secret if secret is not None else settings.SECRET_KEY
    return hmac.new(secret.encode("utf-8"), channel_id.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_channel_token(channel_id: str, token: Optional[str], secret: Optional[str] = None) -> bool:
    if not token:
        return False
    return hmac.compare_digest(channel_token_for(channel_id, secret), token)


def resolve_notification(
        store: CalendarStore,
        notification: PushNotification,
        secret: Optional[str] = None,
) -> Optional[SyncTrigger]:
    """Map an inbound push to the account that needs re-syncing, or None to ignore it"""
    if notification.resource_state == HANDSHAKE_STATE:
        logger.info(f"Channel {notification.channel_id} handshake received")
        return None

    if not notification.channel_id or not notification.resource_id:
        return None

    if not verify_channel_token(notification.channel_id, notification.channel_token, secret):
        logger.warning(f"Rejected notification for channel {notification.channel_id}: bad channel token")
        return None

    connection = store.get_connection_by_channel(notification.channel_id, notification.resource_id)
    if connection is None:
        logger.warning(f"No connection found for channel {notification.channel_id}")
        return None

    return SyncTrigger(account_id=connection.account_id, source="webhook")


class WebhookChannelManager:
    def __init__(
            self,
            store: CalendarStore,
            client: Optional[GoogleCalendarClient] = None,
            token_manager: Optional[TokenLifecycleManager] = None,
            clock: Callable[[], datetime] = utcnow,
            callback_url: Optional[str] = None,
            ttl_seconds: Optional[int] = None,
    ):
        self.store = store
        self.client = client or GoogleCalendarClient()
        self.token_manager = token_manager or TokenLifecycleManager(clock=clock)
        self.clock = clock
        self.callback_url = callback_url or settings.webhook_callback_url
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.WEBHOOK_CHANNEL_TTL_SECONDS

    def register_channel(self, account_id: str) -> ChannelResult:
        """Open a fresh channel for the account's calendar, replacing any existing one"""
        connection = self.store.get_connection(account_id)
        if connection is None or not connection.calendar_id:
            return ChannelResult(success=False, error="No calendar connection or calendar selected")

        channel_id = new_channel_id()
        try:
            access_token = self.token_manager.access_token_for(self.store, connection)
            channel = self.client.register_webhook(
                access_token,
                connection.calendar_id,
                channel_id,
                self.callback_url,
                ttl=self.ttl_seconds or None,
                channel_token=channel_token_for(channel_id),
            )
            self.store.save_webhook_channel(
                account_id, channel.channel_id, channel.resource_id, channel.expires_at
            )
        except CalendarSyncError as exc:
            # the previous channel, if any, stays live and stored
            logger.error(f"Failed to register webhook for account {account_id}: {exc}")
            return ChannelResult(success=False, error=str(exc))

        # old channel is stopped only once its replacement is saved
        if connection.webhook_channel_id and connection.webhook_resource_id:
            try:
                self.client.deregister_webhook(
                    access_token, connection.webhook_channel_id, connection.webhook_resource_id
                )
            except CalendarSyncError as exc:
                logger.warning(f"Could not stop old channel {connection.webhook_channel_id}: {exc}")

        logger.info(f"Registered channel {channel.channel_id} for account {account_id}, expires {channel.expires_at}")
        return ChannelResult(success=True, channel_id=channel.channel_id, expires_at=channel.expires_at)

    def renew_expiring_channels(self, within: Optional[timedelta] = None) -> SyncSummary:
        within = within if within is not None else timedelta(hours=settings.WEBHOOK_RENEWAL_WINDOW_HOURS)
        cutoff = self.clock() + within

        summary = SyncSummary()
        for connection in self.store.list_channels_expiring_before(cutoff):
            try:
                result = self.register_channel(connection.account_id)
            except Exception as exc:
                logger.exception(f"Channel renewal crashed for account {connection.account_id}: {exc}")
                summary.errors += 1
                continue

            if result.success:
                summary.synced += 1
            else:
                summary.errors += 1

        logger.info(f"Channel renewal complete: {summary.synced} renewed, {summary.errors} errors")
        return summary

    def stop_channel(self, connection: ConnectionState) -> None:
        """Best-effort: a channel we cannot stop simply expires"""
        if not connection.webhook_channel_id or not connection.webhook_resource_id:
            return
        try:
            access_token = self.token_manager.access_token_for(self.store, connection)
        except CalendarSyncError as exc:
            logger.warning(f"Cannot stop channel {connection.webhook_channel_id}: {exc}")
            return
        self.client.deregister_webhook(access_token, connection.webhook_channel_id, connection.webhook_resource_id)
