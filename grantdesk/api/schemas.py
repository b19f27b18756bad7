"""Pydantic schemas for the billing API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)


class PlanLimitsSchema(BaseModel):
    max_projects: int
    max_applications: int
    ai_tokens_per_month: int


class PlanSchema(BaseModel):
    id: str
    name: str
    description: str
    base_price_usd: int
    limits: PlanLimitsSchema
    features: List[str] = Field(default_factory=list)


class PricedPlan(PlanSchema):
    price: int


class PublicPricingResponse(BaseModel):
    country: str
    plans: List[PricedPlan]


class AiTokenUsage(BaseModel):
    used: int = 0
    limit: int
    remaining: int
    reset_at: Optional[datetime] = None


class BillingPlanResponse(BaseModel):
    plan: PlanSchema
    status: str
    has_customer: bool = False
    subscription_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    ai_tokens: AiTokenUsage


class LimitCheckResponse(BaseModel):
    resource: str
    plan: str
    allowed: bool
    limit: int
    remaining: int
    current: int


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(..., min_length=1, alias="planId")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")
    locale: Optional[str] = None

    @field_validator("plan_id", mode="before")
    @classmethod
    def normalize_plan_id(cls, value: Optional[str]) -> str:
        return str(value or "").strip().lower()

    @field_validator("locale", mode="before")
    @classmethod
    def normalize_locale(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        candidate = str(value).strip().lower()
        return candidate or None


class CheckoutSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    url: str


class BillingPortalResponse(BaseModel):
    url: str


class WebhookResponse(BaseModel):
    received: bool = True
    status: str


class UserProfile(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    country: Optional[str] = None
    subscription_tier: str = "free"
    subscription_status: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    subscription_period_start: Optional[datetime] = None
    subscription_period_end: Optional[datetime] = None
    ai_tokens_used: int = 0
    ai_tokens_reset_at: Optional[datetime] = None


class SubscriptionSyncRequest(BaseModel):
    email: EmailStr


class SubscriptionSyncResponse(BaseModel):
    success: bool
    action: Optional[str] = None
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PlanOverride(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    limits: Optional[Dict[str, int]] = None
    features: Optional[List[str]] = None

    @field_validator("limits")
    @classmethod
    def validate_limits(cls, value: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
        if value is None:
            return None
        for key, limit in value.items():
            if limit < -1:
                raise ValueError(f"limit {key} must be -1 (unlimited) or non-negative")
        return value


class PlanCatalogResponse(BaseModel):
    plans: List[PlanSchema]
    overrides: Dict[str, Any] = Field(default_factory=dict)
