"""Tests for TokenLifecycleManager: refresh margin, refresh errors, CAS persistence."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError, TransportError

from calendar_sync.schemas.calendar_events import TokenState
from calendar_sync.services.calendar.exceptions import ReauthorizationRequired, TokenRefreshError
from calendar_sync.services.calendar.token_manager import TokenLifecycleManager
from tests.conftest import NOW, make_connection

CREDENTIALS = "calendar_sync.services.calendar.token_manager.Credentials"


def _credentials(token: str = "fresh-access", expires_in: timedelta = timedelta(hours=1), refresh_token: str = "stored-refresh"):
    creds = MagicMock()

    def _refresh(request):
        creds.token = token
        # google-auth stores expiry as naive UTC
        creds.expiry = (NOW + expires_in).replace(tzinfo=None)

    creds.refresh.side_effect = _refresh
    creds.refresh_token = refresh_token
    return creds


# ---------------------------------------------------------------------------
# Refresh margin
# ---------------------------------------------------------------------------


def test_token_expiring_in_four_minutes_is_refreshed(token_manager):
    tokens = TokenState(access_token="old", refresh_token="stored-refresh", expires_at=NOW + timedelta(minutes=4))

    with patch(CREDENTIALS, return_value=_credentials()) as credentials_cls:
        result = token_manager.get_valid_access_token(tokens)

    assert result.refreshed is True
    assert result.access_token == "fresh-access"
    assert result.new_expires_at == NOW + timedelta(hours=1)
    assert result.new_expires_at.tzinfo is not None
    assert credentials_cls.call_args.kwargs["refresh_token"] == "stored-refresh"
    assert credentials_cls.call_args.kwargs["client_id"] == "client-id"


def test_token_expiring_in_ten_minutes_is_returned_unchanged(token_manager):
    tokens = TokenState(access_token="old", refresh_token="r", expires_at=NOW + timedelta(minutes=10))

    with patch(CREDENTIALS) as credentials_cls:
        result = token_manager.get_valid_access_token(tokens)

    assert result.refreshed is False
    assert result.access_token == "old"
    credentials_cls.assert_not_called()


def test_missing_expiry_forces_refresh(token_manager):
    tokens = TokenState(access_token="old", refresh_token="r", expires_at=None)

    with patch(CREDENTIALS, return_value=_credentials()):
        assert token_manager.get_valid_access_token(tokens).refreshed is True


def test_naive_expiry_is_treated_as_utc(token_manager):
    naive = (NOW + timedelta(minutes=30)).replace(tzinfo=None)
    assert token_manager.needs_refresh(naive) is False


def test_rotated_refresh_token_is_returned(token_manager):
    tokens = TokenState(access_token="old", refresh_token="stored-refresh", expires_at=None)

    with patch(CREDENTIALS, return_value=_credentials(refresh_token="rotated-refresh")):
        result = token_manager.get_valid_access_token(tokens)

    assert result.refresh_token == "rotated-refresh"


# ---------------------------------------------------------------------------
# Refresh failures
# ---------------------------------------------------------------------------


def test_rejected_grant_requires_reauthorization(token_manager):
    creds = MagicMock()
    creds.refresh.side_effect = RefreshError("invalid_grant: Token has been expired or revoked.")

    with patch(CREDENTIALS, return_value=creds):
        with pytest.raises(ReauthorizationRequired):
            token_manager.refresh("revoked")


def test_transport_failure_is_transient(token_manager):
    creds = MagicMock()
    creds.refresh.side_effect = TransportError("connection reset")

    with patch(CREDENTIALS, return_value=creds):
        with pytest.raises(TokenRefreshError) as exc_info:
            token_manager.refresh("stored-refresh")

    assert not isinstance(exc_info.value, ReauthorizationRequired)
    assert exc_info.value.retryable is True


def test_retryable_refresh_error_is_transient(token_manager):
    error = RefreshError("temporarily unavailable", retryable=True)
    creds = MagicMock()
    creds.refresh.side_effect = error

    with patch(CREDENTIALS, return_value=creds):
        with pytest.raises(TokenRefreshError) as exc_info:
            token_manager.refresh("stored-refresh")

    assert not isinstance(exc_info.value, ReauthorizationRequired)


# ---------------------------------------------------------------------------
# Persisting refreshed tokens
# ---------------------------------------------------------------------------


def test_refresh_is_persisted_before_use(store, token_manager):
    store.connections["acct-1"] = make_connection(token_expires_at=NOW + timedelta(minutes=2))

    with patch(CREDENTIALS, return_value=_credentials()):
        token = token_manager.access_token_for(store, store.get_connection("acct-1"))

    saved = store.get_connection("acct-1")
    assert token == "fresh-access"
    assert saved.access_token == "fresh-access"
    assert saved.token_expires_at == NOW + timedelta(hours=1)
    assert saved.token_version == 1


def test_lost_refresh_race_adopts_stored_token(store, token_manager):
    store.connections["acct-1"] = make_connection(token_expires_at=NOW + timedelta(minutes=2))
    stale = store.get_connection("acct-1")

    # another worker refreshed first
    store.save_refreshed_token(
        "acct-1", expected_version=0, access_token="winner-access", expires_at=NOW + timedelta(hours=1)
    )

    with patch(CREDENTIALS, return_value=_credentials(token="loser-access")):
        token = token_manager.access_token_for(store, stale)

    assert token == "winner-access"
    assert store.get_connection("acct-1").access_token == "winner-access"
    assert store.get_connection("acct-1").token_version == 1


def test_rejected_grant_flags_connection(store, token_manager):
    store.connections["acct-1"] = make_connection(token_expires_at=NOW - timedelta(minutes=1))
    creds = MagicMock()
    creds.refresh.side_effect = RefreshError("invalid_grant")

    with patch(CREDENTIALS, return_value=creds):
        with pytest.raises(ReauthorizationRequired):
            token_manager.access_token_for(store, store.get_connection("acct-1"))

    conn = store.get_connection("acct-1")
    assert conn.needs_reauth is True
    assert "invalid_grant" in conn.last_sync_error


def test_default_clock_is_timezone_aware():
    manager = TokenLifecycleManager(client_id="id", client_secret="secret")
    assert manager.clock().tzinfo is not None
    assert isinstance(manager.clock(), datetime)
