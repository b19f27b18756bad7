"""Thin wrapper around the Stripe SDK used for subscription management."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import stripe

logger = logging.getLogger(__name__)

StripeError = getattr(stripe, "StripeError", None) or stripe.error.StripeError
InvalidRequestError = getattr(stripe, "InvalidRequestError", None) or stripe.error.InvalidRequestError


class BillingNotConfiguredError(RuntimeError):
    """Raised when Stripe secrets are missing for the requested operation."""


class BillingPortalNotConfiguredError(RuntimeError):
    """Raised when the Stripe billing portal is not configured for the account."""


class WebhookSignatureError(ValueError):
    """Raised when a webhook payload cannot be authenticated."""


class StripeBillingService:
    """Handles the Stripe interactions required for hosted billing.

    Built once by the application factory and injected into routes; the API
    key travels with every call instead of living on the ``stripe`` module.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        webhook_secret: Optional[str] = None,
        product_prefix: str = "Grantdesk",
    ):
        if not secret_key:
            raise BillingNotConfiguredError("Stripe secret key is required")
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._product_prefix = product_prefix

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    def create_customer(self, *, email: Optional[str], name: Optional[str], user_id: str) -> str:
        customer = stripe.Customer.create(
            api_key=self._secret_key,
            email=email,
            name=name or None,
            metadata={"supabase_user_id": user_id},
        )
        logger.info("Created Stripe customer %s for user %s", customer["id"], user_id)
        return customer["id"]

    def get_or_create_customer(self, *, email: str, name: Optional[str], user_id: str) -> str:
        existing = self.list_customers_by_email(email, limit=1)
        if existing:
            return existing[0]["id"]
        return self.create_customer(email=email, name=name, user_id=user_id)

    def list_customers_by_email(self, email: str, *, limit: int = 10) -> List[Dict[str, Any]]:
        if not email:
            return []
        result = stripe.Customer.list(api_key=self._secret_key, email=email, limit=limit)
        customers = []
        for customer in _to_plain(result).get("data") or []:
            customers.append(
                {
                    "id": customer.get("id"),
                    "email": customer.get("email"),
                    "name": customer.get("name"),
                    "created": customer.get("created"),
                }
            )
        return customers

    # ------------------------------------------------------------------
    # Checkout & Portal
    # ------------------------------------------------------------------
    def create_checkout_session(
        self,
        *,
        customer_id: str,
        plan_name: str,
        plan_description: str,
        unit_amount_usd: int,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> Dict[str, Any]:
        """Create a subscription-mode hosted checkout page with an inline monthly price."""

        session = stripe.checkout.Session.create(
            api_key=self._secret_key,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": f"{self._product_prefix} {plan_name} Plan",
                            "description": plan_description,
                        },
                        "unit_amount": int(unit_amount_usd) * 100,
                        "recurring": {"interval": "month"},
                    },
                    "quantity": 1,
                }
            ],
            metadata=metadata,
            subscription_data={"metadata": metadata},
            success_url=success_url,
            cancel_url=cancel_url,
            allow_promotion_codes=True,
        )
        return {"id": session["id"], "url": session["url"]}

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, Any]:
        if not customer_id:
            raise ValueError("Billing portal requires an existing Stripe customer id")
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self._secret_key,
                customer=customer_id,
                return_url=return_url,
            )
        except InvalidRequestError as exc:  # pragma: no cover - requires live Stripe API
            error_message = (str(exc) or "").lower()
            if "portal" in error_message and "configuration" in error_message:
                raise BillingPortalNotConfiguredError("Stripe billing portal configuration is missing") from exc
            raise
        return {"id": session["id"], "url": session["url"]}

    # ------------------------------------------------------------------
    # Webhooks & subscriptions
    # ------------------------------------------------------------------
    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Validate the ``Stripe-Signature`` header and decode the event body."""

        if not self._webhook_secret:
            raise BillingNotConfiguredError("Stripe webhook secret is not configured; cannot verify signatures")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        body = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
        try:
            stripe.WebhookSignature.verify_header(body, signature, self._webhook_secret)
        except Exception as exc:
            raise WebhookSignatureError(f"Invalid signature: {exc}") from exc

        try:
            event = json.loads(body)
        except ValueError as exc:
            raise WebhookSignatureError(f"Invalid webhook payload: {exc}") from exc
        if not isinstance(event, dict):
            raise WebhookSignatureError("Invalid webhook payload: expected a JSON object")
        return event

    def list_subscriptions(
        self,
        customer_id: str,
        *,
        status: str = "all",
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        if not customer_id:
            return []
        result = stripe.Subscription.list(
            api_key=self._secret_key,
            customer=customer_id,
            status=status,
            limit=limit,
        )
        return [subscription_snapshot(item) for item in _to_plain(result).get("data") or []]

    def get_subscription_status(self, customer_id: str) -> Dict[str, Any]:
        """Latest subscription of a customer, or status ``none`` when there is none."""

        subscriptions = self.list_subscriptions(customer_id, limit=1)
        if not subscriptions:
            return {"status": "none", "subscription": None, "current_period_end": None}
        latest = subscriptions[0]
        return {
            "status": latest["status"],
            "subscription": latest,
            "current_period_end": latest["current_period_end"],
        }

    def cancel_subscription(self, subscription_id: str, *, at_period_end: bool = True) -> Dict[str, Any]:
        if at_period_end:
            result = stripe.Subscription.modify(
                subscription_id,
                api_key=self._secret_key,
                cancel_at_period_end=True,
            )
        else:
            result = stripe.Subscription.cancel(subscription_id, api_key=self._secret_key)
        return subscription_snapshot(result)


def subscription_snapshot(subscription: Any) -> Dict[str, Any]:
    """Flatten a Stripe subscription into the fields the billing code reads.

    Recent API versions carry the billing period on the subscription item, so
    the first item wins and the top-level fields are the fallback.
    """

    data = _to_plain(subscription)
    items = (data.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or first_item.get("plan") or {}
    customer = data.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    return {
        "id": data.get("id"),
        "customer": customer,
        "status": data.get("status"),
        "price_id": price.get("id"),
        "unit_amount": price.get("unit_amount", price.get("amount")),
        "current_period_start": first_item.get("current_period_start") or data.get("current_period_start"),
        "current_period_end": first_item.get("current_period_end") or data.get("current_period_end"),
        "created": data.get("created"),
        "metadata": data.get("metadata") or {},
    }


def _to_plain(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if type(obj) is dict:
        return obj
    converter = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    if callable(converter):
        return converter()
    return dict(obj)
