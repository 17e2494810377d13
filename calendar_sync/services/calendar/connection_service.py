# calendar_sync/services/calendar/connection_service.py
import logging
from datetime import timezone
from typing import Callable, List, Optional

from google_auth_oauthlib.flow import Flow

from calendar_sync.config.settings import get_settings
from calendar_sync.schemas.calendar_events import CalendarInfo, ConnectionState, ConnectionStatus
from calendar_sync.services.calendar.google_calendar_client import GoogleCalendarClient
from calendar_sync.services.calendar.token_manager import GOOGLE_TOKEN_URI, TokenLifecycleManager
from calendar_sync.services.sync.store import CalendarStore
from calendar_sync.services.sync.webhook_channels import WebhookChannelManager

settings = get_settings()

logger = logging.getLogger(__name__)


class CalendarConnectionService:
    """OAuth handshake and connection settings for a professional's Google Calendar"""

    SCOPES = [
        "https://www.googleapis.com/auth/calendar.events",
        "https://www.googleapis.com/auth/calendar.readonly",
    ]

    def __init__(
            self,
            store: CalendarStore,
            client: Optional[GoogleCalendarClient] = None,
            token_manager: Optional[TokenLifecycleManager] = None,
            channel_manager: Optional[WebhookChannelManager] = None,
            flow_factory: Optional[Callable[[], Flow]] = None,
            redirect_uri: Optional[str] = None,
    ):
        self.store = store
        self.client = client or GoogleCalendarClient()
        self.token_manager = token_manager or TokenLifecycleManager()
        self.channel_manager = channel_manager or WebhookChannelManager(
            store, client=self.client, token_manager=self.token_manager
        )
        self.redirect_uri = redirect_uri or settings.GOOGLE_REDIRECT_URI
        self.flow_factory = flow_factory or self._build_flow

        if not self.redirect_uri:
            raise ValueError("GOOGLE_REDIRECT_URI is not set")

    def _build_flow(self) -> Flow:
        client_config = {
            "web": {
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "redirect_uris": [self.redirect_uri],
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": GOOGLE_TOKEN_URI,
            }
        }
        # The callback builds a new Flow, so no PKCE verifier can survive between the two
        return Flow.from_client_config(
            client_config,
            scopes=self.SCOPES,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, account_id: str) -> str:
        """Step 1: consent URL; the account id rides along in `state`"""
        flow = self.flow_factory()
        url, _ = flow.authorization_url(
            access_type="offline",  # gets a refresh token
            include_granted_scopes="true",
            prompt="consent",  # force consent so the refresh token is issued again
            state=account_id,
        )
        logger.info(f"Generated Google authorization URL for account {account_id}")
        return url

    def complete_authorization(self, code: str, state: str) -> ConnectionState:
        """Step 2: exchange the code, pick the primary calendar, store the connection"""
        account_id = state
        if not code or not account_id:
            raise ValueError("Missing authorization code or state")

        flow = self.flow_factory()
        try:
            flow.fetch_token(code=code)
        except Exception as exc:
            logger.error(f"Failed to exchange authorization code for account {account_id}: {exc}")
            raise ValueError("Failed to exchange authorization code") from exc
        credentials = flow.credentials

        if not credentials.refresh_token:
            raise ValueError("Google did not return a refresh token")

        calendars = self.client.list_calendars(credentials.token)
        if not calendars:
            raise ValueError("No calendars found on the Google account")
        selected = next((cal for cal in calendars if cal.is_primary), calendars[0])

        expires_at = credentials.expiry.replace(tzinfo=timezone.utc) if credentials.expiry else None
        connection = self.store.upsert_connection(
            account_id,
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expires_at=expires_at,
            calendar_id=selected.id,
            time_zone=selected.time_zone,
        )
        logger.info(f"Connected Google calendar {selected.id} for account {account_id}")
        return connection

    def get_connection(self, account_id: str) -> Optional[ConnectionStatus]:
        connection = self.store.get_connection(account_id)
        return ConnectionStatus.from_state(connection) if connection else None

    def _require_connection(self, account_id: str) -> ConnectionState:
        connection = self.store.get_connection(account_id)
        if connection is None:
            raise LookupError("No calendar connection found")
        return connection

    def list_calendars(self, account_id: str) -> List[CalendarInfo]:
        connection = self._require_connection(account_id)
        access_token = self.token_manager.access_token_for(self.store, connection)
        return self.client.list_calendars(access_token)

    def select_calendar(self, account_id: str, calendar_id: str) -> ConnectionStatus:
        """Point the connection at another calendar; its channel must be re-registered"""
        connection = self._require_connection(account_id)
        calendars = self.list_calendars(account_id)
        selected = next((cal for cal in calendars if cal.id == calendar_id), None)
        if selected is None:
            raise ValueError(f"Calendar {calendar_id} is not on this Google account")

        self.channel_manager.stop_channel(connection)
        self.store.update_connection(
            account_id,
            calendar_id=selected.id,
            time_zone=selected.time_zone,
            webhook_channel_id=None,
            webhook_resource_id=None,
            webhook_expiration=None,
        )
        return self.get_connection(account_id)

    def set_sync_enabled(self, account_id: str, enabled: bool) -> ConnectionStatus:
        self._require_connection(account_id)
        self.store.update_connection(account_id, sync_enabled=enabled)
        return self.get_connection(account_id)

    def disconnect(self, account_id: str) -> bool:
        connection = self.store.get_connection(account_id)
        if connection is None:
            return False
        self.channel_manager.stop_channel(connection)
        deleted = self.store.delete_connection(account_id)
        logger.info(f"Disconnected Google calendar for account {account_id}")
        return deleted
