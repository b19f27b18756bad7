"""Operator tooling: compare a profile with Stripe and pull Stripe state back in."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..db import DatabaseClient
from ..logger import log
from .plans import DEFAULT_PLAN_ID, PLANS, SubscriptionStatus
from .stripe_service import StripeBillingService
from .timestamps import timestamp_to_iso

logger = logging.getLogger(__name__)

SYNCED = "synced"
DOWNGRADED_TO_FREE = "downgraded_to_free"
NO_CHANGE = "no_change"


class ProfileNotFoundError(LookupError):
    """Raised when no profile matches the requested e-mail."""


@dataclass
class SyncResult:
    success: bool
    action: Optional[str]
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action,
            "message": self.message,
            "details": self.details,
        }


class SubscriptionSync:
    """Diagnoses and repairs drift between ``profiles`` and Stripe."""

    def __init__(
        self,
        db: DatabaseClient,
        billing: StripeBillingService,
        *,
        standard_price_id: Optional[str] = None,
        max_price_id: Optional[str] = None,
    ):
        self._db = db
        self._billing = billing
        self._standard_price_id = standard_price_id
        self._max_price_id = max_price_id

    def _require_profile(self, email: str) -> Dict[str, Any]:
        profile = self._db.get_profile_by_email(email)
        if not profile:
            raise ProfileNotFoundError(f"Profile not found for {email}")
        return profile

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------
    def check(self, email: str) -> Dict[str, Any]:
        """Collect the profile, its Stripe view and a list of diagnosis lines."""

        profile = self._require_profile(email)

        subscriptions: List[Dict[str, Any]] = []
        customer_id = profile.get("stripe_customer_id")
        if customer_id:
            try:
                subscriptions = [_describe(sub) for sub in self._billing.list_subscriptions(customer_id)]
            except Exception as exc:
                logger.error("Stripe lookup for customer %s failed: %s", customer_id, exc)

        customers_by_email: List[Dict[str, Any]] = []
        try:
            for customer in self._billing.list_customers_by_email(email):
                customers_by_email.append(
                    {
                        "customer_id": customer["id"],
                        "name": customer.get("name"),
                        "created": timestamp_to_iso(customer.get("created")),
                        "subscriptions": [
                            _describe(sub) for sub in self._billing.list_subscriptions(customer["id"])
                        ],
                    }
                )
        except Exception as exc:
            logger.error("Stripe customer search for %s failed: %s", email, exc)

        return {
            "profile": {
                key: profile.get(key)
                for key in (
                    "id",
                    "email",
                    "full_name",
                    "subscription_tier",
                    "subscription_status",
                    "stripe_customer_id",
                    "stripe_subscription_id",
                    "subscription_period_start",
                    "subscription_period_end",
                    "last_billing_event_at",
                    "subscription_cancelled_at",
                )
            },
            "stripe_subscriptions": subscriptions,
            "stripe_customers_by_email": customers_by_email,
            "subscription_history": self._db.list_subscription_history(profile["id"]),
            "diagnosis": diagnose(profile, subscriptions, customers_by_email),
        }

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    def sync(self, email: str) -> SyncResult:
        """Overwrite the profile's subscription fields with what Stripe reports."""

        profile = self._require_profile(email)
        log("[billing] syncing subscription", email=email, tier=profile.get("subscription_tier"))

        customers = self._billing.list_customers_by_email(email)
        if not customers:
            return SyncResult(
                success=False,
                action=None,
                message="No Stripe customers found with this email",
                details={
                    "subscription_tier": profile.get("subscription_tier"),
                    "subscription_status": profile.get("subscription_status"),
                },
            )

        active: Optional[Dict[str, Any]] = None
        active_customer_id: Optional[str] = None
        for customer in customers:
            subscriptions = self._billing.list_subscriptions(customer["id"], status="active", limit=5)
            if subscriptions:
                active = subscriptions[0]
                active_customer_id = customer["id"]
                break

        if active is None:
            if profile.get("subscription_tier") != DEFAULT_PLAN_ID:
                self._db.update_profile(
                    profile["id"],
                    {
                        "subscription_tier": DEFAULT_PLAN_ID,
                        "subscription_status": SubscriptionStatus.CANCELLED.value,
                        "stripe_customer_id": customers[0]["id"] or profile.get("stripe_customer_id"),
                    },
                )
                return SyncResult(
                    success=True,
                    action=DOWNGRADED_TO_FREE,
                    message="No active Stripe subscription found. Profile updated to free tier.",
                )
            return SyncResult(
                success=True,
                action=NO_CHANGE,
                message="No active Stripe subscription found and profile is already on free tier.",
            )

        plan_id = self.resolve_plan_id(active)
        period_start = timestamp_to_iso(active.get("current_period_start"))
        period_end = timestamp_to_iso(active.get("current_period_end"))
        updates: Dict[str, Any] = {
            "subscription_tier": plan_id,
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "stripe_customer_id": active_customer_id,
            "stripe_subscription_id": active["id"],
        }
        if period_start:
            updates["subscription_period_start"] = period_start
        if period_end:
            updates["subscription_period_end"] = period_end
        self._db.update_profile(profile["id"], updates)
        log("[billing] subscription synced", email=email, plan=plan_id, subscription=active["id"])

        return SyncResult(
            success=True,
            action=SYNCED,
            message=f"Subscription synced! Profile updated to {plan_id} plan.",
            details={
                "previous_tier": profile.get("subscription_tier"),
                "new_tier": plan_id,
                "stripe_subscription_id": active["id"],
                "stripe_customer_id": active_customer_id,
                "period_end": period_end,
            },
        )

    def resolve_plan_id(self, subscription: Mapping[str, Any]) -> str:
        """Map a Stripe subscription onto a paid plan id.

        Configured price ids win; otherwise anything priced at or above the
        max plan is ``max`` and everything else ``standard``.
        """

        price_id = subscription.get("price_id")
        if price_id and price_id == self._standard_price_id:
            return "standard"
        if price_id and price_id == self._max_price_id:
            return "max"
        unit_amount = subscription.get("unit_amount")
        if unit_amount and unit_amount >= PLANS["max"].base_price_usd * 100:
            return "max"
        return "standard"


def diagnose(
    profile: Mapping[str, Any],
    subscriptions: List[Mapping[str, Any]],
    customers_by_email: List[Mapping[str, Any]],
) -> List[str]:
    issues: List[str] = []
    tier = profile.get("subscription_tier")
    customer_id = profile.get("stripe_customer_id")

    if tier == DEFAULT_PLAN_ID:
        active_by_id = next((sub for sub in subscriptions if sub.get("status") == "active"), None)
        if active_by_id:
            issues.append(f"ISSUE: Profile shows 'free' but Stripe has active subscription {active_by_id['id']}")
            issues.append("FIX: Webhook may not have fired. Need to update profile.subscription_tier")

        for customer in customers_by_email:
            has_active = any(sub.get("status") == "active" for sub in customer.get("subscriptions") or [])
            if has_active and customer_id != customer.get("customer_id"):
                issues.append(
                    f"ISSUE: Stripe customer {customer.get('customer_id')} has active subscription "
                    "but profile uses different customer ID"
                )
                issues.append("FIX: Need to update profile.stripe_customer_id and subscription_tier")

    if not customer_id and customers_by_email:
        issues.append(
            f"ISSUE: Profile missing stripe_customer_id but Stripe has {len(customers_by_email)} "
            "customer(s) with this email"
        )
        issues.append("FIX: Need to link profile to Stripe customer")

    if tier and tier != DEFAULT_PLAN_ID and profile.get("subscription_status") != SubscriptionStatus.ACTIVE.value:
        issues.append(f"ISSUE: Profile has tier '{tier}' but status is '{profile.get('subscription_status')}'")

    if not issues:
        issues.append("No issues detected. Profile and Stripe appear to be in sync.")
    return issues


def _describe(subscription: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": subscription.get("id"),
        "status": subscription.get("status"),
        "plan": subscription.get("price_id"),
        "current_period_start": timestamp_to_iso(subscription.get("current_period_start")),
        "current_period_end": timestamp_to_iso(subscription.get("current_period_end")),
        "created": timestamp_to_iso(subscription.get("created")),
    }
