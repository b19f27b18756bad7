"""High-level billing helpers for resolving plans, enforcing limits, and metering AI usage."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..db import DatabaseClient
from .plans import (
    DEFAULT_PLAN_ID,
    PLANS,
    UNLIMITED,
    LimitCheck,
    PlanDefinition,
    adjusted_price,
    apply_plan_overrides,
    check_limit,
    get_plan,
)
from .timestamps import parse_timestamp

logger = logging.getLogger(__name__)

PLANS_SETTING_KEY = "plans"

# Tables whose rows count against the plan limits.
_RESOURCE_TABLES = {
    "projects": "projects",
    "applications": "applications",
}


class BillingManager:
    """Facade that knows how to resolve plans, enforce quotas, and record usage."""

    def __init__(self, db: DatabaseClient):
        self._db = db

    # ------------------------------------------------------------------
    # Plan resolution
    # ------------------------------------------------------------------
    def resolve_plan(self, profile: Optional[Mapping[str, Any]]) -> PlanDefinition:
        """Entitled plan of a profile. Unknown or missing tiers fall back to free."""

        plan_id = (profile or {}).get("subscription_tier") or DEFAULT_PLAN_ID
        plan = get_plan(plan_id)
        if plan is None:
            logger.warning("Profile carries unknown subscription tier %r; treating as free", plan_id)
            return PLANS[DEFAULT_PLAN_ID]
        return plan

    def get_billing_summary(self, user_id: str) -> Dict[str, Any]:
        profile = self._db.get_profile(user_id) or {}
        plan = self.resolve_plan(profile)
        tokens_used = _coerce_int(profile.get("ai_tokens_used"))
        token_limit = plan.limits.ai_tokens_per_month

        period_start = parse_timestamp(profile.get("subscription_period_start"))
        period_end = parse_timestamp(profile.get("subscription_period_end"))
        reset_at = parse_timestamp(profile.get("ai_tokens_reset_at"))

        return {
            "plan": plan.to_dict(),
            "status": profile.get("subscription_status") or "active",
            "has_customer": bool(profile.get("stripe_customer_id")),
            "subscription_id": profile.get("stripe_subscription_id"),
            "period_start": period_start.isoformat() if period_start else None,
            "period_end": period_end.isoformat() if period_end else None,
            "ai_tokens": {
                "used": tokens_used,
                "limit": token_limit,
                "remaining": UNLIMITED if token_limit == UNLIMITED else max(0, token_limit - tokens_used),
                "reset_at": reset_at.isoformat() if reset_at else None,
            },
        }

    # ------------------------------------------------------------------
    # Enforcement helpers
    # ------------------------------------------------------------------
    def current_usage(self, user_id: str, resource: str, profile: Optional[Mapping[str, Any]] = None) -> int:
        if resource == "ai_tokens":
            profile = profile if profile is not None else self._db.get_profile(user_id) or {}
            return _coerce_int(profile.get("ai_tokens_used"))
        table = _RESOURCE_TABLES.get(resource)
        if table is None:
            raise ValueError(f"Unknown plan resource: {resource}")
        return self._db.count_user_rows(table, user_id)

    def check_resource_limit(self, user_id: str, resource: str) -> Dict[str, Any]:
        """Limit check for ``resource`` against the user's current plan."""

        profile = self._db.get_profile(user_id) or {}
        plan = self.resolve_plan(profile)
        current = self.current_usage(user_id, resource, profile)
        result: LimitCheck = check_limit(plan, resource, current)
        payload = result.to_dict()
        payload.update({"resource": resource, "current": current, "plan": plan.id})
        return payload

    # ------------------------------------------------------------------
    # Usage logging
    # ------------------------------------------------------------------
    def record_ai_tokens(self, user_id: str, tokens: int) -> Dict[str, Any]:
        """Add consumed AI tokens to the profile counter and report what is left."""

        if tokens < 0:
            raise ValueError("tokens must be non-negative")
        total = self._db.add_ai_tokens(user_id, tokens)
        profile = self._db.get_profile(user_id) or {}
        plan = self.resolve_plan(profile)
        limit = plan.limits.ai_tokens_per_month
        if limit != UNLIMITED and total > limit:
            logger.info("User %s exceeded AI token allowance (%s/%s)", user_id, total, limit)
        return {
            "used": total,
            "limit": limit,
            "remaining": UNLIMITED if limit == UNLIMITED else max(0, limit - total),
        }

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    @staticmethod
    def pricing_for(country_code: Optional[str]) -> List[Dict[str, Any]]:
        """Every plan with its country-adjusted monthly price."""

        pricing = []
        for plan in PLANS.values():
            entry = plan.to_dict()
            entry["price"] = adjusted_price(plan.base_price_usd, country_code)
            pricing.append(entry)
        return pricing

    def get_plan_catalog(self) -> Dict[str, Any]:
        """Static catalog merged with the admin override stored in platform settings."""

        overrides = self._db.get_platform_setting(PLANS_SETTING_KEY)
        return {
            "plans": [plan.to_dict() for plan in apply_plan_overrides(overrides)],
            "overrides": overrides if isinstance(overrides, dict) else {},
        }

    def save_plan_overrides(self, overrides: Mapping[str, Any]) -> Dict[str, Any]:
        unknown = sorted(key for key in overrides if key not in PLANS)
        if unknown:
            raise ValueError(f"Unknown plan ids: {', '.join(unknown)}")
        self._db.upsert_platform_setting(PLANS_SETTING_KEY, dict(overrides))
        logger.info("Stored plan overrides for %s", ", ".join(sorted(overrides)) or "no plans")
        return self.get_plan_catalog()


def _coerce_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
