"""Billing: plan catalog, Stripe integration and webhook reconciliation."""

from .manager import BillingManager
from .plans import (
    PLANS,
    LimitCheck,
    PlanDefinition,
    PlanLimits,
    SubscriptionStatus,
    adjusted_price,
    check_limit,
    get_plan,
)
from .reconciler import ReconcileResult, WebhookReconciler
from .stripe_service import (
    BillingNotConfiguredError,
    BillingPortalNotConfiguredError,
    StripeBillingService,
    StripeError,
    WebhookSignatureError,
)
from .sync import ProfileNotFoundError, SubscriptionSync, SyncResult, diagnose

__all__ = [
    "BillingManager",
    "PLANS",
    "LimitCheck",
    "PlanDefinition",
    "PlanLimits",
    "SubscriptionStatus",
    "adjusted_price",
    "check_limit",
    "get_plan",
    "ReconcileResult",
    "WebhookReconciler",
    "BillingNotConfiguredError",
    "BillingPortalNotConfiguredError",
    "StripeBillingService",
    "StripeError",
    "WebhookSignatureError",
    "ProfileNotFoundError",
    "SubscriptionSync",
    "SyncResult",
    "diagnose",
]
