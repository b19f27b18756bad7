"""
Admin endpoints for subscription support and plan configuration.

Every route requires the configured admin role (token app metadata or the
``user_roles`` table).
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...billing import BillingManager, ProfileNotFoundError, StripeError, SubscriptionSync
from ...db import DatabaseWriteError
from ...logger import log
from ..dependencies import get_billing_manager, get_subscription_sync, require_admin
from ..schemas import (
    PlanCatalogResponse,
    PlanOverride,
    SubscriptionSyncRequest,
    SubscriptionSyncResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/admin/billing/check", status_code=status.HTTP_200_OK)
def check_subscription(
    email: str = Query(..., min_length=3),
    admin: Dict[str, Any] = Depends(require_admin),
    sync: SubscriptionSync = Depends(get_subscription_sync),
) -> Dict[str, Any]:
    """Compare a user's stored subscription with what Stripe reports."""

    try:
        return sync.check(email.strip())
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found") from exc


@router.post("/admin/billing/sync", response_model=SubscriptionSyncResponse, status_code=status.HTTP_200_OK)
def sync_subscription(
    payload: SubscriptionSyncRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    sync: SubscriptionSync = Depends(get_subscription_sync),
) -> SubscriptionSyncResponse:
    """Overwrite a user's subscription fields with the state found in Stripe."""

    email = str(payload.email)
    log("[admin] subscription sync requested", email=email, admin=admin.get("id"))
    try:
        result = sync.sync(email)
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found") from exc
    except (StripeError, DatabaseWriteError) as exc:
        logger.error("Subscription sync for %s failed: %s", email, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to sync subscription", "details": str(exc)},
        ) from exc
    return SubscriptionSyncResponse(**result.to_dict())


@router.get("/admin/plans", response_model=PlanCatalogResponse, status_code=status.HTTP_200_OK)
def get_plan_catalog(
    admin: Dict[str, Any] = Depends(require_admin),
    manager: BillingManager = Depends(get_billing_manager),
) -> PlanCatalogResponse:
    return PlanCatalogResponse(**manager.get_plan_catalog())


@router.put("/admin/plans", response_model=PlanCatalogResponse, status_code=status.HTTP_200_OK)
def update_plan_catalog(
    overrides: Dict[str, PlanOverride],
    admin: Dict[str, Any] = Depends(require_admin),
    manager: BillingManager = Depends(get_billing_manager),
) -> PlanCatalogResponse:
    """Store the plan override blob. Pricing and reconciliation keep using the static catalog."""

    blob = {plan_id: override.model_dump(exclude_none=True) for plan_id, override in overrides.items()}
    try:
        catalog = manager.save_plan_overrides(blob)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DatabaseWriteError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store plan overrides",
        ) from exc
    log("[admin] plan overrides updated", plans=sorted(blob), admin=admin.get("id"))
    return PlanCatalogResponse(**catalog)
