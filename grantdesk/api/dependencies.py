"""FastAPI dependencies shared across the billing API.

Clients are built once by ``create_app`` and stored on ``app.state``; these
helpers hand them to routes and turn a missing client into a 503.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import Depends, Header, HTTPException, Request, status

from ..auth import AuthManager, has_role, require_auth
from ..billing import BillingManager, StripeBillingService, SubscriptionSync, WebhookReconciler
from ..db import DatabaseClient


def get_settings(request: Request) -> Any:
    return request.app.state.settings


def get_auth_manager(request: Request) -> AuthManager:
    manager = getattr(request.app.state, "auth_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )
    return manager


def get_database(request: Request) -> DatabaseClient:
    """Return the shared database client instance."""

    db = getattr(request.app.state, "database", None)
    if db is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database is not configured",
        )
    return db


def get_billing_service(request: Request) -> StripeBillingService:
    service = getattr(request.app.state, "billing_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not configured",
        )
    return service


def get_authenticated_user(
    authorization: str = Header(None),
    auth_manager: AuthManager = Depends(get_auth_manager),
) -> Dict[str, Any]:
    """Return authenticated Supabase user details (ID, email, metadata, app metadata)."""

    user_info = require_auth(auth_manager, authorization)

    metadata = user_info.get("metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}
    app_metadata = user_info.get("app_metadata") or {}
    if not isinstance(app_metadata, dict):
        app_metadata = {}

    return {
        "id": user_info.get("id"),
        "email": user_info.get("email"),
        "metadata": metadata,
        "app_metadata": app_metadata,
    }


def get_current_user_id(user: Dict[str, Any] = Depends(get_authenticated_user)) -> str:
    """Resolve the authenticated Supabase user id from the Authorization header."""

    return user["id"]


def require_admin(
    user: Dict[str, Any] = Depends(get_authenticated_user),
    db: DatabaseClient = Depends(get_database),
    settings: Any = Depends(get_settings),
) -> Dict[str, Any]:
    """Allow the request only for users holding the configured admin role."""

    role = getattr(settings, "admin_role", "admin")
    if has_role(user, role):
        return user
    if has_role(user, role, stored_roles=db.get_user_roles(user["id"])):
        return user
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


def get_billing_manager(db: DatabaseClient = Depends(get_database)) -> BillingManager:
    return BillingManager(db)


def get_reconciler(
    db: DatabaseClient = Depends(get_database),
    billing: StripeBillingService = Depends(get_billing_service),
    settings: Any = Depends(get_settings),
) -> WebhookReconciler:
    return WebhookReconciler(
        db,
        billing,
        discard_stale=bool(getattr(settings, "billing_discard_stale_events", True)),
    )


def get_subscription_sync(
    db: DatabaseClient = Depends(get_database),
    billing: StripeBillingService = Depends(get_billing_service),
    settings: Any = Depends(get_settings),
) -> SubscriptionSync:
    return SubscriptionSync(
        db,
        billing,
        standard_price_id=getattr(settings, "stripe_standard_price_id", None),
        max_price_id=getattr(settings, "stripe_max_price_id", None),
    )
