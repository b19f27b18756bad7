"""Plan catalog, country pricing and plan-limit checks."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

UNLIMITED = -1
DEFAULT_PLAN_ID = "free"


class SubscriptionStatus(str, Enum):
    """Normalized subscription status codes stored on the profile."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


# Stripe spells it "canceled"; the profile stores "cancelled".
_PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "canceled": SubscriptionStatus.CANCELLED.value,
}


def normalize_provider_status(value: Optional[str]) -> Optional[str]:
    """Map a provider subscription status onto the profile vocabulary.

    Statuses without a mapping (``trialing``, ``incomplete``...) pass through.
    """

    if value is None:
        return None
    raw = str(value).strip().lower()
    return _PROVIDER_STATUS_MAP.get(raw, raw)


@dataclass(frozen=True)
class PlanLimits:
    """Resource limits of a plan. ``-1`` means unlimited."""

    max_projects: int
    max_applications: int
    ai_tokens_per_month: int

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]], *, fallback: "PlanLimits") -> "PlanLimits":
        if not isinstance(payload, Mapping):
            return fallback
        return cls(
            max_projects=_coerce_limit(payload.get("max_projects", payload.get("maxProjects")), fallback.max_projects),
            max_applications=_coerce_limit(
                payload.get("max_applications", payload.get("maxApplications")), fallback.max_applications
            ),
            ai_tokens_per_month=_coerce_limit(
                payload.get("ai_tokens_per_month", payload.get("aiTokensPerMonth")), fallback.ai_tokens_per_month
            ),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "max_projects": self.max_projects,
            "max_applications": self.max_applications,
            "ai_tokens_per_month": self.ai_tokens_per_month,
        }


@dataclass(frozen=True)
class PlanDefinition:
    id: str
    name: str
    description: str
    base_price_usd: int
    limits: PlanLimits
    features: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_paid(self) -> bool:
        return self.base_price_usd > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "base_price_usd": self.base_price_usd,
            "limits": self.limits.to_dict(),
            "features": list(self.features),
        }


PLANS: Dict[str, PlanDefinition] = {
    "free": PlanDefinition(
        id="free",
        name="Free",
        description="Para empezar a explorar",
        base_price_usd=0,
        limits=PlanLimits(max_projects=1, max_applications=1, ai_tokens_per_month=10_000),
        features=(
            "1 proyecto",
            "1 postulación activa",
            "Asistente IA (limitado)",
            "Catálogo de fondos",
        ),
    ),
    "standard": PlanDefinition(
        id="standard",
        name="Standard",
        description="Para equipos en crecimiento",
        base_price_usd=50,
        limits=PlanLimits(max_projects=5, max_applications=5, ai_tokens_per_month=100_000),
        features=(
            "Hasta 5 proyectos",
            "Hasta 5 postulaciones activas",
            "Asistente IA completo",
            "Auto-llenado con IA",
            "Investigación con IA",
            "Soporte por email",
        ),
    ),
    "max": PlanDefinition(
        id="max",
        name="Max",
        description="Para empresas y agencias",
        base_price_usd=100,
        limits=PlanLimits(max_projects=UNLIMITED, max_applications=UNLIMITED, ai_tokens_per_month=UNLIMITED),
        features=(
            "Proyectos ilimitados",
            "Postulaciones ilimitadas",
            "Asistente IA ilimitado",
            "Auto-llenado con IA",
            "Investigación con IA",
            "Soporte prioritario",
            "Acceso anticipado a nuevas funciones",
        ),
    ),
}

PAID_PLAN_IDS = frozenset(plan_id for plan_id, plan in PLANS.items() if plan.is_paid)

COUNTRY_MULTIPLIERS: Dict[str, float] = {
    # Latin America (discounted)
    "CL": 0.6,
    "MX": 0.5,
    "CO": 0.5,
    "AR": 0.4,
    "PE": 0.5,
    "BR": 0.5,
    "US": 1.0,
    "DEFAULT": 1.0,
}

DEFAULT_COUNTRY = "US"

_RESOURCE_LIMIT_FIELDS = {
    "projects": "max_projects",
    "applications": "max_applications",
    "ai_tokens": "ai_tokens_per_month",
}
RESOURCES = tuple(_RESOURCE_LIMIT_FIELDS)


def get_plan(plan_id: Optional[str]) -> Optional[PlanDefinition]:
    """Return the plan for ``plan_id`` or ``None`` when the id is unknown."""

    if not plan_id:
        return None
    return PLANS.get(str(plan_id))


def country_multiplier(country_code: Optional[str]) -> float:
    code = (country_code or "").strip().upper()
    return COUNTRY_MULTIPLIERS.get(code, COUNTRY_MULTIPLIERS["DEFAULT"])


def adjusted_price(base_price_usd: float, country_code: Optional[str]) -> int:
    """Country-adjusted price rounded to the nearest whole currency unit (halves up)."""

    return int(math.floor(base_price_usd * country_multiplier(country_code) + 0.5))


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    limit: int
    remaining: int

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "limit": self.limit, "remaining": self.remaining}


def check_limit(plan: PlanDefinition, resource: str, current_count: int) -> LimitCheck:
    """Check whether one more ``resource`` may be created under ``plan``.

    Must run before the new resource is created: ``current_count == limit``
    is already at the cap and yields ``allowed=False``.
    """

    field_name = _RESOURCE_LIMIT_FIELDS.get(resource)
    if field_name is None:
        raise ValueError(f"Unknown plan resource: {resource}")

    limit = getattr(plan.limits, field_name)
    if limit == UNLIMITED:
        return LimitCheck(allowed=True, limit=UNLIMITED, remaining=UNLIMITED)

    remaining = max(0, limit - current_count)
    return LimitCheck(allowed=remaining > 0, limit=limit, remaining=remaining)


def apply_plan_overrides(overrides: Optional[Mapping[str, Any]]) -> List[PlanDefinition]:
    """Merge the admin ``plans`` settings blob onto the static catalog.

    Only known plan ids are honoured; unknown keys and malformed values are
    dropped so a bad blob never removes a plan.
    """

    merged: List[PlanDefinition] = []
    overrides = overrides if isinstance(overrides, Mapping) else {}
    for plan_id, plan in PLANS.items():
        override = overrides.get(plan_id)
        if not isinstance(override, Mapping):
            merged.append(plan)
            continue
        features = override.get("features")
        merged.append(
            PlanDefinition(
                id=plan.id,
                name=str(override.get("name") or plan.name),
                description=str(override.get("description") or plan.description),
                base_price_usd=_coerce_limit(override.get("price", override.get("base_price_usd")), plan.base_price_usd),
                limits=PlanLimits.from_dict(override.get("limits"), fallback=plan.limits),
                features=tuple(str(item) for item in features) if isinstance(features, list) else plan.features,
            )
        )
    return merged


def _coerce_limit(value: Any, default: int) -> int:
    if value in (None, "", "null", "None"):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
