# calendar_sync/services/calendar/token_manager.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from calendar_sync.config.settings import get_settings
from calendar_sync.schemas.calendar_events import ConnectionState, TokenState, ValidToken
from calendar_sync.services.calendar.exceptions import ReauthorizationRequired, TokenRefreshError

settings = get_settings()

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimeoutRequest(Request):
    """google-auth transport that always applies our request timeout"""

    def __init__(self, timeout: float, session: Optional[requests.Session] = None):
        super().__init__(session=session)
        self.timeout = timeout

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(
            url, method=method, body=body, headers=headers, timeout=timeout or self.timeout, **kwargs
        )


class TokenLifecycleManager:
    """Hands out access tokens that stay valid past the refresh margin"""

    REFRESH_MARGIN = timedelta(minutes=5)

    def __init__(
            self,
            client_id: Optional[str] = None,
            client_secret: Optional[str] = None,
            token_uri: str = GOOGLE_TOKEN_URI,
            timeout: Optional[float] = None,
            clock: Callable[[], datetime] = utcnow,
            session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.GOOGLE_CLIENT_SECRET
        self.token_uri = token_uri
        self.timeout = timeout or settings.GOOGLE_HTTP_TIMEOUT_SECONDS
        self.clock = clock
        self.session = session

    def needs_refresh(self, expires_at: Optional[datetime]) -> bool:
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at - self.clock() < self.REFRESH_MARGIN

    def get_valid_access_token(self, tokens: TokenState) -> ValidToken:
        """Return the stored token, or exchange the refresh token for a new one"""
        if not self.needs_refresh(tokens.expires_at):
            return ValidToken(access_token=tokens.access_token, refreshed=False)
        return self.refresh(tokens.refresh_token)

    def refresh(self, refresh_token: str) -> ValidToken:
        """POST grant_type=refresh_token to the token endpoint"""
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )

        try:
            credentials.refresh(TimeoutRequest(self.timeout, session=self.session))
        except TransportError as exc:
            raise TokenRefreshError(f"Token refresh failed: {exc}") from exc
        except RefreshError as exc:
            if getattr(exc, "retryable", False):
                raise TokenRefreshError(f"Token refresh failed: {exc}") from exc
            raise ReauthorizationRequired(f"Refresh grant rejected: {exc}") from exc

        if credentials.expiry is not None:
            # google-auth reports expiry as naive UTC
            new_expires_at = credentials.expiry.replace(tzinfo=timezone.utc)
        else:
            new_expires_at = self.clock() + timedelta(hours=1)

        rotated = credentials.refresh_token if credentials.refresh_token != refresh_token else None
        return ValidToken(
            access_token=credentials.token,
            refreshed=True,
            new_expires_at=new_expires_at,
            refresh_token=rotated,
        )

    def access_token_for(self, store, connection: ConnectionState) -> str:
        """
        Valid access token for a stored connection.

        A refresh is persisted before the token is returned, guarded by a
        compare-and-swap on token_version. When another worker refreshed first
        its token is adopted. A rejected grant flags the connection for
        re-authorization and re-raises.
        """
        try:
            valid = self.get_valid_access_token(connection.tokens)
        except ReauthorizationRequired as exc:
            logger.warning(f"Calendar connection for account {connection.account_id} needs re-authorization")
            store.mark_needs_reauth(connection.account_id, str(exc))
            raise

        if not valid.refreshed:
            return valid.access_token

        saved = store.save_refreshed_token(
            connection.account_id,
            expected_version=connection.token_version,
            access_token=valid.access_token,
            expires_at=valid.new_expires_at,
            refresh_token=valid.refresh_token,
        )
        if saved:
            logger.info(f"Refreshed access token for account {connection.account_id}")
            return valid.access_token

        latest = store.get_connection(connection.account_id)
        if latest is None:
            return valid.access_token
        logger.info(f"Concurrent token refresh for account {connection.account_id}, using stored token")
        return latest.access_token
