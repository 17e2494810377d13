"""Tests for the SyncScheduler fan-out."""

from __future__ import annotations

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

from google.auth.exceptions import RefreshError

from calendar_sync.schemas.calendar_events import ImportResult
from calendar_sync.services.sync.import_reconciler import ImportReconciler
from calendar_sync.services.sync.scheduler import SyncScheduler
from tests.conftest import NOW, make_connection


def test_one_failed_refresh_does_not_stop_the_others(store, client, token_manager, clock):
    store.connections["acct-1"] = make_connection("acct-1")
    store.connections["acct-2"] = make_connection("acct-2", token_expires_at=NOW - timedelta(minutes=1))
    store.connections["acct-3"] = make_connection("acct-3")
    reconciler = ImportReconciler(store, client=client, token_manager=token_manager, clock=clock)

    rejected = MagicMock()
    rejected.refresh.side_effect = RefreshError("invalid_grant")

    scheduler = SyncScheduler.for_store(store, reconciler.import_busy_times, max_workers=2, poll_interval=0.01)
    with patch("calendar_sync.services.calendar.token_manager.Credentials", return_value=rejected):
        summary = scheduler.sync_all_connected_accounts()

    assert (summary.synced, summary.errors) == (2, 1)
    assert store.get_connection("acct-1").last_synced_at == NOW
    assert store.get_connection("acct-3").last_synced_at == NOW
    assert store.get_connection("acct-2").needs_reauth is True


def test_accounts_needing_reauth_or_disabled_are_not_scheduled(store):
    store.connections["ok"] = make_connection("ok")
    store.connections["reauth"] = make_connection("reauth", needs_reauth=True)
    store.connections["off"] = make_connection("off", sync_enabled=False)
    seen = []

    def run_import(account_id):
        seen.append(account_id)
        return ImportResult(success=True)

    summary = SyncScheduler.for_store(store, run_import, poll_interval=0.01).sync_all_connected_accounts()

    assert seen == ["ok"]
    assert summary.synced == 1


def test_exceptions_are_counted_as_errors():
    def run_import(account_id):
        if account_id == "boom":
            raise RuntimeError("unexpected")
        return ImportResult(success=account_id != "failed", error=None if account_id != "failed" else "nope")

    scheduler = SyncScheduler(lambda: ["a", "boom", "failed", "b"], run_import, max_workers=3, poll_interval=0.01)

    summary = scheduler.sync_all_connected_accounts()

    assert (summary.synced, summary.errors) == (2, 2)


def test_empty_pass():
    summary = SyncScheduler(lambda: [], MagicMock()).sync_all_connected_accounts()
    assert (summary.synced, summary.errors) == (0, 0)


def test_slow_account_is_abandoned_after_its_deadline():
    release = threading.Event()

    def run_import(account_id):
        if account_id == "slow":
            release.wait(5)
        return ImportResult(success=True)

    scheduler = SyncScheduler(
        lambda: ["slow", "fast"], run_import, max_workers=2, account_timeout=0.2, poll_interval=0.02
    )
    try:
        summary = scheduler.sync_all_connected_accounts()
    finally:
        release.set()

    assert (summary.synced, summary.errors) == (1, 1)


def test_queued_accounts_fail_when_every_worker_is_stuck():
    release = threading.Event()
    ran = []

    def run_import(account_id):
        ran.append(account_id)
        release.wait(5)
        return ImportResult(success=True)

    scheduler = SyncScheduler(
        lambda: ["stuck", "queued"], run_import, max_workers=1, account_timeout=0.1, poll_interval=0.02
    )
    try:
        summary = scheduler.sync_all_connected_accounts()
    finally:
        release.set()

    assert (summary.synced, summary.errors) == (0, 2)
    assert ran == ["stuck"]
