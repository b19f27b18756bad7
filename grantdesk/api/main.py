"""FastAPI application exposing the billing JSON API."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from ..auth import AuthManager, create_auth_manager
from ..billing import StripeBillingService
from ..config import CONFIG, reload_config
from ..db import DatabaseClient, create_database_client
from .routes import admin, billing, profile

logger = logging.getLogger(__name__)


def _configure_cors(api_app: FastAPI, origins: tuple) -> None:
    if not origins:
        return

    api_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _build_database(settings: Any) -> Optional[DatabaseClient]:
    if not getattr(settings, "supabase_configured", False):
        logger.warning("Supabase is not configured; database-backed routes will return 503")
        return None
    return create_database_client(settings)


def _build_billing_service(settings: Any) -> Optional[StripeBillingService]:
    if not getattr(settings, "stripe_configured", False):
        logger.warning("STRIPE_SECRET_KEY not set; billing routes will return 503")
        return None
    if not getattr(settings, "stripe_webhook_secret", None):
        logger.warning("STRIPE_WEBHOOK_SECRET not set; webhook deliveries will be rejected")
    return StripeBillingService(
        settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        product_prefix=settings.stripe_product_prefix,
    )


def _build_auth_manager(settings: Any) -> Optional[AuthManager]:
    if not getattr(settings, "supabase_configured", False):
        return None
    return create_auth_manager(settings)


def create_app(
    settings: Any = None,
    *,
    database: Optional[DatabaseClient] = None,
    billing_service: Optional[StripeBillingService] = None,
    auth_manager: Optional[AuthManager] = None,
) -> FastAPI:
    """Build the API with its clients attached to ``app.state``.

    Clients passed in are used as-is; the rest are built from ``settings``
    (``CONFIG`` by default) when the matching secrets are configured.
    """

    settings = settings if settings is not None else CONFIG

    api_app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=(
            "Billing API for grantdesk: plans, Stripe checkout and portal sessions, "
            "and the Stripe webhook that keeps subscription profiles in sync. "
            "Authenticate using a Supabase JWT in the Authorization header."
        ),
    )
    api_app.state.settings = settings
    api_app.state.database = database if database is not None else _build_database(settings)
    api_app.state.billing_service = (
        billing_service if billing_service is not None else _build_billing_service(settings)
    )
    api_app.state.auth_manager = auth_manager if auth_manager is not None else _build_auth_manager(settings)

    _configure_cors(api_app, tuple(getattr(settings, "api_cors_origins", ()) or ()))

    @api_app.get("/health", tags=["health"])  # pragma: no cover - trivial fast check
    def healthcheck() -> dict[str, str]:
        """Simple health endpoint for load balancers and smoke tests."""

        return {"status": "ok"}

    api_app.include_router(billing.router, prefix="/v1", tags=["billing"])
    api_app.include_router(profile.router, prefix="/v1", tags=["profile"])
    api_app.include_router(admin.router, prefix="/v1", tags=["admin"])
    return api_app


def create_app_from_env() -> FastAPI:
    """Entry point for ``uvicorn --factory``: read ``.env`` then build the app."""

    load_dotenv()
    reload_config()
    return create_app()
