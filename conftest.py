"""Repository-wide pytest fixtures."""

from __future__ import annotations

import copy
from collections.abc import Generator
from typing import Any, Dict, List, Optional

import pytest

from grantdesk.db import DatabaseReadError, DatabaseWriteError


@pytest.fixture(autouse=True)
def _set_default_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep tests independent from any real Supabase/Stripe credentials."""

    monkeypatch.setenv("ENV", "test")
    for name in (
        "SUPABASE_URL",
        "NEXT_PUBLIC_SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "SUPABASE_SERVICE_ROLE_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_PORTAL_RETURN_URL",
        "STRIPE_CHECKOUT_SUCCESS_URL",
        "STRIPE_CHECKOUT_CANCEL_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
    yield


class InMemoryBillingDB:
    """Dict-backed stand-in for ``SupabaseDatabaseClient``."""

    def __init__(self, profiles: Optional[List[Dict[str, Any]]] = None):
        self.profiles: Dict[str, Dict[str, Any]] = {p["id"]: dict(p) for p in profiles or []}
        self.history: List[Dict[str, Any]] = []
        self.webhook_events: Dict[str, Dict[str, Any]] = {}
        self.settings: Dict[str, Any] = {}
        self.roles: Dict[str, List[str]] = {}
        self.row_counts: Dict[tuple, int] = {}
        self.fail_writes = False
        self.fail_reads = False

    def _read_failed(self, what, raise_on_error):
        if not self.fail_reads:
            return False
        if raise_on_error:
            raise DatabaseReadError(f"Failed to read {what}")
        return True

    def get_profile(self, user_id, *, raise_on_error=False):
        if self._read_failed("profiles", raise_on_error):
            return None
        profile = self.profiles.get(user_id)
        return copy.deepcopy(profile) if profile else None

    def get_profile_by_email(self, email):
        return next((copy.deepcopy(p) for p in self.profiles.values() if p.get("email") == email), None)

    def get_profile_by_customer_id(self, customer_id, *, raise_on_error=False):
        if self._read_failed("profiles", raise_on_error):
            return None
        return next(
            (copy.deepcopy(p) for p in self.profiles.values() if p.get("stripe_customer_id") == customer_id),
            None,
        )

    def update_profile(self, user_id, updates):
        if self.fail_writes:
            raise DatabaseWriteError(f"Failed to update profile {user_id}")
        if user_id in self.profiles:
            self.profiles[user_id].update(updates)
        return self.get_profile(user_id)

    def add_ai_tokens(self, user_id, tokens):
        total = int(self.profiles[user_id].get("ai_tokens_used") or 0) + tokens
        self.update_profile(user_id, {"ai_tokens_used": total})
        return total

    def insert_subscription_history(self, entry):
        if self.fail_writes:
            raise DatabaseWriteError("Failed to append subscription history")
        self.history.append(dict(entry))

    def list_subscription_history(self, user_id, limit=10):
        return [row for row in reversed(self.history) if row.get("user_id") == user_id][:limit]

    def has_webhook_event(self, stripe_event_id, *, raise_on_error=False):
        if self._read_failed("stripe_webhook_events", raise_on_error):
            return False
        return stripe_event_id in self.webhook_events

    def record_webhook_event(self, *, stripe_event_id, event_type, user_id, outcome):
        self.webhook_events[stripe_event_id] = {
            "event_type": event_type,
            "user_id": user_id,
            "outcome": outcome,
        }

    def count_user_rows(self, table, user_id):
        return self.row_counts.get((table, user_id), 0)

    def get_platform_setting(self, key):
        return copy.deepcopy(self.settings.get(key))

    def upsert_platform_setting(self, key, value):
        if self.fail_writes:
            raise DatabaseWriteError(f"Failed to store platform setting {key}")
        self.settings[key] = copy.deepcopy(value)

    def get_user_roles(self, user_id):
        return list(self.roles.get(user_id, []))


@pytest.fixture
def memory_db() -> InMemoryBillingDB:
    return InMemoryBillingDB(
        [
            {
                "id": "user-1",
                "email": "ana@example.com",
                "full_name": "Ana",
                "country": "CL",
                "subscription_tier": "free",
                "subscription_status": None,
                "stripe_customer_id": None,
                "stripe_subscription_id": None,
                "ai_tokens_used": 0,
                "last_billing_event_at": None,
                "subscription_cancelled_at": None,
            }
        ]
    )
