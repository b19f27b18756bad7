"""Tests for the Supabase client's read error handling."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from grantdesk.billing import WebhookReconciler
from grantdesk.db import DatabaseReadError, SupabaseDatabaseClient


class _Query:
    def __init__(self, table, failing_tables):
        self._table = table
        self._failing_tables = failing_tables

    def select(self, *args, **kwargs):
        return self

    def eq(self, *args):
        return self

    def limit(self, *args):
        return self

    def execute(self):
        if self._table in self._failing_tables:
            raise ConnectionError("PostgREST timed out")
        return SimpleNamespace(data=[], count=0)


class FlakySupabase:
    """Supabase stand-in whose queries against ``failing_tables`` raise."""

    def __init__(self, *failing_tables):
        self.failing_tables = set(failing_tables)

    def table(self, name):
        return _Query(name, self.failing_tables)


def test_lookup_failure_reads_as_miss_by_default() -> None:
    db = SupabaseDatabaseClient(None, None, client=FlakySupabase("profiles", "stripe_webhook_events"))

    assert db.get_profile("user-1") is None
    assert db.get_profile_by_customer_id("cus_1") is None
    assert db.has_webhook_event("evt_1") is False


def test_lookup_failure_raises_when_requested() -> None:
    db = SupabaseDatabaseClient(None, None, client=FlakySupabase("profiles", "stripe_webhook_events"))

    with pytest.raises(DatabaseReadError):
        db.get_profile("user-1", raise_on_error=True)
    with pytest.raises(DatabaseReadError):
        db.get_profile_by_customer_id("cus_1", raise_on_error=True)
    with pytest.raises(DatabaseReadError):
        db.has_webhook_event("evt_1", raise_on_error=True)


def test_missing_row_is_not_an_error() -> None:
    db = SupabaseDatabaseClient(None, None, client=FlakySupabase())

    assert db.get_profile_by_customer_id("cus_unknown", raise_on_error=True) is None


def test_reconciler_does_not_orphan_event_when_profile_lookup_fails() -> None:
    db = SupabaseDatabaseClient(None, None, client=FlakySupabase("profiles"))
    event = {
        "id": "evt_1",
        "type": "invoice.payment_failed",
        "created": 1_735_689_600,
        "data": {"object": {"id": "in_1", "customer": "cus_known"}},
    }

    with pytest.raises(DatabaseReadError):
        WebhookReconciler(db).apply(event)
