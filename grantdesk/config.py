"""Environment-driven runtime settings for the billing service."""

from __future__ import annotations

import os
from types import SimpleNamespace
from typing import Optional, Sequence, Tuple


def _env_str(
    name: str,
    default: Optional[str] = None,
    *,
    alias: Optional[str] = None,
    empty_to_none: bool = True,
) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    value = raw.strip()
    if not value and empty_to_none:
        return None if default is None else default
    return value if value else default


def _env_bool(name: str, default: bool, *, alias: Optional[str] = None) -> bool:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_tuple(name: str, default: Sequence[str]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return tuple(default)
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or tuple(default)


class Settings(SimpleNamespace):
    """Simple attribute container used throughout the codebase."""

CONFIG = Settings()


def _compute_values() -> tuple[dict[str, object], dict[str, object]]:
    # -----------------------------------------------------------------------
    # RUNTIME ENVIRONMENT
    # -----------------------------------------------------------------------
    environment = _env_str("ENV", "prod", empty_to_none=False).lower()
    if environment not in {"dev", "test", "prod"}:
        environment = "prod"
    is_development = environment == "dev"

    api_title = _env_str("API_TITLE", "Grantdesk Billing API", empty_to_none=False)
    api_version = _env_str("API_VERSION", "1.0.0", empty_to_none=False)
    api_cors_origins = _env_tuple("API_CORS_ORIGINS", ())
    app_base_url = _env_str("APP_BASE_URL", None, alias="NEXT_PUBLIC_APP_URL")

    # -----------------------------------------------------------------------
    # SUPABASE
    # -----------------------------------------------------------------------
    supabase_url = _env_str("SUPABASE_URL", None, alias="NEXT_PUBLIC_SUPABASE_URL")
    supabase_anon_key = _env_str("SUPABASE_ANON_KEY", None, alias="NEXT_PUBLIC_SUPABASE_ANON_KEY")
    supabase_service_role_key = _env_str("SUPABASE_SERVICE_ROLE_KEY", None)
    supabase_jwt_secret = _env_str("SUPABASE_JWT_SECRET", None)
    supabase_configured = bool(supabase_url) and bool(supabase_service_role_key or supabase_anon_key)

    # -----------------------------------------------------------------------
    # BILLING / STRIPE
    # -----------------------------------------------------------------------
    stripe_secret_key = _env_str("STRIPE_SECRET_KEY", None)
    stripe_webhook_secret = _env_str("STRIPE_WEBHOOK_SECRET", None)
    stripe_checkout_success_url = _env_str("STRIPE_CHECKOUT_SUCCESS_URL", None)
    stripe_checkout_cancel_url = _env_str("STRIPE_CHECKOUT_CANCEL_URL", None)
    stripe_portal_return_url = _env_str("STRIPE_PORTAL_RETURN_URL", None)
    stripe_standard_price_id = _env_str("STRIPE_STANDARD_PRICE_ID", None)
    stripe_max_price_id = _env_str("STRIPE_MAX_PRICE_ID", None)
    stripe_product_prefix = _env_str("STRIPE_PRODUCT_PREFIX", "Grantdesk", empty_to_none=False)
    stripe_configured = bool(stripe_secret_key)

    billing_discard_stale_events = _env_bool("BILLING_DISCARD_STALE_EVENTS", True)

    # -----------------------------------------------------------------------
    # ACCESS CONTROL
    # -----------------------------------------------------------------------
    admin_role = _env_str("ADMIN_ROLE", "admin", empty_to_none=False).lower()

    globals_map = {
        "ENVIRONMENT": environment,
        "IS_DEVELOPMENT": is_development,
        "API_TITLE": api_title,
        "API_VERSION": api_version,
        "API_CORS_ORIGINS": api_cors_origins,
        "APP_BASE_URL": app_base_url,
        "SUPABASE_URL": supabase_url,
        "SUPABASE_ANON_KEY": supabase_anon_key,
        "SUPABASE_SERVICE_ROLE_KEY": supabase_service_role_key,
        "SUPABASE_JWT_SECRET": supabase_jwt_secret,
        "STRIPE_SECRET_KEY": stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": stripe_webhook_secret,
        "STRIPE_CHECKOUT_SUCCESS_URL": stripe_checkout_success_url,
        "STRIPE_CHECKOUT_CANCEL_URL": stripe_checkout_cancel_url,
        "STRIPE_PORTAL_RETURN_URL": stripe_portal_return_url,
        "STRIPE_STANDARD_PRICE_ID": stripe_standard_price_id,
        "STRIPE_MAX_PRICE_ID": stripe_max_price_id,
        "STRIPE_PRODUCT_PREFIX": stripe_product_prefix,
        "BILLING_DISCARD_STALE_EVENTS": billing_discard_stale_events,
        "ADMIN_ROLE": admin_role,
    }

    config_map = {
        "environment": environment,
        "is_development": is_development,
        "api_title": api_title,
        "api_version": api_version,
        "api_cors_origins": api_cors_origins,
        "app_base_url": app_base_url,
        "supabase_url": supabase_url,
        "supabase_anon_key": supabase_anon_key,
        "supabase_service_role_key": supabase_service_role_key,
        "supabase_jwt_secret": supabase_jwt_secret,
        "supabase_configured": supabase_configured,
        "stripe_secret_key": stripe_secret_key,
        "stripe_webhook_secret": stripe_webhook_secret,
        "stripe_checkout_success_url": stripe_checkout_success_url,
        "stripe_checkout_cancel_url": stripe_checkout_cancel_url,
        "stripe_portal_return_url": stripe_portal_return_url,
        "stripe_standard_price_id": stripe_standard_price_id,
        "stripe_max_price_id": stripe_max_price_id,
        "stripe_product_prefix": stripe_product_prefix,
        "stripe_configured": stripe_configured,
        "billing_discard_stale_events": billing_discard_stale_events,
        "admin_role": admin_role,
    }

    return globals_map, config_map


def reload_config() -> None:
    globals_map, config_map = _compute_values()
    globals().update(globals_map)
    CONFIG.__dict__.update(config_map)


def load_envs(global_dir: str) -> None:
    """Load environment variables from the project ``.env`` file and refresh CONFIG."""
    from dotenv import load_dotenv

    load_dotenv(os.path.join(global_dir, ".env"))
    reload_config()


# Load once on import so downstream modules can use CONFIG immediately.
reload_config()
