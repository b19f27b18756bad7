"""Billing-related API endpoints (Stripe checkout, portal, webhook, plan info)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ...billing import (
    BillingManager,
    BillingNotConfiguredError,
    BillingPortalNotConfiguredError,
    StripeBillingService,
    StripeError,
    WebhookReconciler,
    WebhookSignatureError,
    adjusted_price,
    get_plan,
)
from ...billing.plans import DEFAULT_COUNTRY, PAID_PLAN_IDS, RESOURCES
from ...db import DatabaseClient, DatabaseReadError, DatabaseWriteError
from ...logger import log
from ..dependencies import (
    get_authenticated_user,
    get_billing_manager,
    get_billing_service,
    get_current_user_id,
    get_database,
    get_reconciler,
    get_settings,
)
from ..schemas import (
    BillingPlanResponse,
    BillingPortalResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    LimitCheckResponse,
    PublicPricingResponse,
    WebhookResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_LOCALE = "es"


def _base_url(request: Request, settings: Any) -> str:
    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")
    configured = getattr(settings, "app_base_url", None)
    if configured:
        return configured.rstrip("/")
    host = request.headers.get("host")
    if host:
        protocol = request.headers.get("x-forwarded-proto") or "https"
        return f"{protocol}://{host}"
    return str(request.base_url).rstrip("/")


def _billing_return_url(base_url: str, locale: Optional[str], outcome: str) -> str:
    prefix = f"/{locale}" if locale and locale != DEFAULT_LOCALE else ""
    return f"{base_url}{prefix}/dashboard/billing?subscription={outcome}"


def _provider_error_detail(message: str, exc: Exception) -> Dict[str, Any]:
    return {
        "error": message,
        "code": getattr(exc, "code", None),
        "type": type(exc).__name__,
    }


@router.get("/billing/plan", response_model=BillingPlanResponse, status_code=status.HTTP_200_OK)
def get_billing_plan(
    user_id: str = Depends(get_current_user_id),
    manager: BillingManager = Depends(get_billing_manager),
) -> BillingPlanResponse:
    return BillingPlanResponse(**manager.get_billing_summary(user_id))


@router.get("/billing/pricing", response_model=PublicPricingResponse, status_code=status.HTTP_200_OK)
def get_public_pricing(
    country: Optional[str] = Query(default=None, max_length=8),
) -> PublicPricingResponse:
    code = (country or DEFAULT_COUNTRY).strip().upper() or DEFAULT_COUNTRY
    return PublicPricingResponse(country=code, plans=BillingManager.pricing_for(code))


@router.get("/billing/limits/{resource}", response_model=LimitCheckResponse, status_code=status.HTTP_200_OK)
def get_resource_limit(
    resource: str,
    user_id: str = Depends(get_current_user_id),
    manager: BillingManager = Depends(get_billing_manager),
) -> LimitCheckResponse:
    if resource not in RESOURCES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown resource; expected one of {', '.join(RESOURCES)}",
        )
    return LimitCheckResponse(**manager.check_resource_limit(user_id, resource))


@router.post("/billing/checkout", response_model=CheckoutSessionResponse, status_code=status.HTTP_200_OK)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    request: Request,
    user: Dict[str, Any] = Depends(get_authenticated_user),
    db: DatabaseClient = Depends(get_database),
    billing: StripeBillingService = Depends(get_billing_service),
    settings: Any = Depends(get_settings),
) -> CheckoutSessionResponse:
    plan = get_plan(payload.plan_id)
    if plan is None or plan.id not in PAID_PLAN_IDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid plan")

    user_id = user["id"]
    profile = db.get_profile(user_id) or {}
    if not profile:
        logger.warning("Checkout for user %s without a profile row; using defaults", user_id)
    country = profile.get("country") or DEFAULT_COUNTRY
    price = adjusted_price(plan.base_price_usd, country)

    base_url = _base_url(request, settings)
    success_url = (
        payload.success_url
        or getattr(settings, "stripe_checkout_success_url", None)
        or _billing_return_url(base_url, payload.locale, "success")
    )
    cancel_url = (
        payload.cancel_url
        or getattr(settings, "stripe_checkout_cancel_url", None)
        or _billing_return_url(base_url, payload.locale, "cancelled")
    )

    try:
        customer_id = profile.get("stripe_customer_id")
        if not customer_id:
            customer_id = billing.create_customer(
                email=profile.get("email") or user.get("email"),
                name=profile.get("full_name"),
                user_id=user_id,
            )
            try:
                db.update_profile(user_id, {"stripe_customer_id": customer_id})
            except DatabaseWriteError:
                logger.error("Could not store Stripe customer %s for user %s", customer_id, user_id)

        session = billing.create_checkout_session(
            customer_id=customer_id,
            plan_name=plan.name,
            plan_description=plan.description,
            unit_amount_usd=price,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"user_id": user_id, "plan_id": plan.id, "country": country},
        )
    except StripeError as exc:
        logger.error("Stripe checkout failed for user %s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_provider_error_detail("Failed to create checkout session", exc),
        ) from exc

    log("[billing] checkout session created", session["id"], user_id=user_id, plan=plan.id, price=price)
    return CheckoutSessionResponse(session_id=session["id"], url=session["url"])


@router.post("/billing/portal", response_model=BillingPortalResponse, status_code=status.HTTP_200_OK)
def create_billing_portal_session(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: DatabaseClient = Depends(get_database),
    billing: StripeBillingService = Depends(get_billing_service),
    settings: Any = Depends(get_settings),
) -> BillingPortalResponse:
    profile = db.get_profile(user_id) or {}
    customer_id = profile.get("stripe_customer_id")
    if not customer_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No subscription found")

    return_url = getattr(settings, "stripe_portal_return_url", None) or (
        f"{_base_url(request, settings)}/dashboard/profile"
    )
    try:
        session = billing.create_billing_portal_session(customer_id=customer_id, return_url=return_url)
    except BillingPortalNotConfiguredError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe billing portal is not configured",
        ) from exc
    except StripeError as exc:
        logger.error("Stripe portal session failed for user %s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_provider_error_detail("Failed to create portal session", exc),
        ) from exc

    log("[billing] portal session created", user_id=user_id)
    return BillingPortalResponse(url=session["url"])


@router.post("/billing/webhook", response_model=WebhookResponse, status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> WebhookResponse:
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")

    try:
        event = reconciler.verify(payload, signature)
    except WebhookSignatureError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BillingNotConfiguredError as exc:
        logger.error("Stripe webhook received but verification is not configured: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook verification is not configured",
        ) from exc

    try:
        result = await asyncio.to_thread(reconciler.apply, event)
    except DatabaseReadError as exc:
        logger.error("Webhook %s (%s) could not read billing state: %s", event.get("id"), event.get("type"), exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        ) from exc
    except DatabaseWriteError as exc:
        logger.error("Webhook %s (%s) could not be persisted: %s", event.get("id"), event.get("type"), exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        ) from exc
    except Exception as exc:
        logger.exception("Webhook %s (%s) failed", event.get("id"), event.get("type"))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        ) from exc

    return WebhookResponse(received=True, status=result.status)
