"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from grantdesk import config


@pytest.fixture(autouse=True)
def _restore_config(monkeypatch: pytest.MonkeyPatch):
    yield
    monkeypatch.undo()
    config.reload_config()


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BILLING_DISCARD_STALE_EVENTS", raising=False)
    monkeypatch.delenv("ADMIN_ROLE", raising=False)
    monkeypatch.delenv("STRIPE_PRODUCT_PREFIX", raising=False)

    config.reload_config()

    assert config.CONFIG.environment == "test"
    assert config.CONFIG.billing_discard_stale_events is True
    assert config.CONFIG.admin_role == "admin"
    assert config.CONFIG.stripe_product_prefix == "Grantdesk"
    assert config.CONFIG.stripe_configured is False
    assert config.CONFIG.supabase_configured is False


def test_reads_overrides_and_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NEXT_PUBLIC_SUPABASE_URL", "https://demo.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("BILLING_DISCARD_STALE_EVENTS", "off")
    monkeypatch.setenv("ADMIN_ROLE", "Support")
    monkeypatch.setenv("API_CORS_ORIGINS", "https://a.example.com, https://b.example.com,")

    config.reload_config()

    assert config.CONFIG.supabase_url == "https://demo.supabase.co"
    assert config.CONFIG.supabase_configured is True
    assert config.CONFIG.stripe_configured is True
    assert config.CONFIG.billing_discard_stale_events is False
    assert config.CONFIG.admin_role == "support"
    assert config.CONFIG.api_cors_origins == ("https://a.example.com", "https://b.example.com")


def test_unknown_environment_falls_back_to_prod(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENV", "staging")

    config.reload_config()

    assert config.CONFIG.environment == "prod"
    assert config.ENVIRONMENT == "prod"
