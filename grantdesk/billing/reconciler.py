"""Apply Stripe webhook events to the locally stored subscription profile.

Every transition overwrites absolute field values, so re-delivering an event
is safe. The only counter touched (``ai_tokens_used``) is reset to zero,
which is idempotent too.

Outcomes reported back to the webhook route:

``applied``    the profile was updated
``duplicate``  the event id was already applied
``stale``      the event is older than the newest event applied to the profile;
               a checkout is only stale when older than the last cancellation
``orphaned``   no profile matches the customer/user referenced by the event
``ignored``    the event lacks the metadata needed to act on it
``unhandled``  the event type is not part of the reconciliation flow
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..db import DatabaseClient
from ..logger import log
from .plans import DEFAULT_PLAN_ID, SubscriptionStatus, get_plan, normalize_provider_status
from .stripe_service import BillingNotConfiguredError, StripeBillingService
from .timestamps import parse_timestamp, timestamp_to_iso

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"
ORPHANED = "orphaned"
IGNORED = "ignored"
UNHANDLED = "unhandled"


@dataclass
class ReconcileResult:
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    user_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == APPLIED


class WebhookReconciler:
    """Verifies webhook deliveries and applies the subscription transitions."""

    def __init__(
        self,
        db: DatabaseClient,
        billing: Optional[StripeBillingService] = None,
        *,
        discard_stale: bool = True,
    ):
        self._db = db
        self._billing = billing
        self._discard_stale = discard_stale
        self._handlers: Dict[str, Callable[[Dict[str, Any]], ReconcileResult]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_updated,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Authenticate a raw delivery. Raises ``WebhookSignatureError`` when it cannot."""

        if self._billing is None:
            raise BillingNotConfiguredError("A billing service is required to verify webhook signatures")
        return self._billing.parse_event(payload, signature)

    def process(self, payload: bytes, signature: Optional[str]) -> ReconcileResult:
        """Verify a raw delivery and apply it.

        Raises ``WebhookSignatureError`` for unauthenticated payloads,
        ``DatabaseReadError`` when the profile or ledger lookup fails and
        ``DatabaseWriteError`` when a transition could not be persisted.
        """

        return self.apply(self.verify(payload, signature))

    def apply(self, event: Dict[str, Any]) -> ReconcileResult:
        event_id = event.get("id")
        event_type = event.get("type") or "unknown"
        log("[billing] received event", event_type, event_id=event_id)

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Stripe event type: %s", event_type)
            return ReconcileResult(UNHANDLED, event_id=event_id, event_type=event_type)

        if event_id and self._db.has_webhook_event(event_id, raise_on_error=True):
            return ReconcileResult(DUPLICATE, event_id=event_id, event_type=event_type)

        result = handler(event)
        result.event_id = event_id
        result.event_type = event_type

        if result.applied and event_id:
            self._db.record_webhook_event(
                stripe_event_id=event_id,
                event_type=event_type,
                user_id=result.user_id,
                outcome=result.status,
            )
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _handle_checkout_completed(self, event: Dict[str, Any]) -> ReconcileResult:
        session = _event_object(event)
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id") or metadata.get("userId")
        plan_id = metadata.get("plan_id") or metadata.get("planId")

        if not user_id or not plan_id:
            logger.error("Checkout session %s is missing user_id/plan_id metadata", session.get("id"))
            return ReconcileResult(IGNORED, detail="missing metadata")

        plan = get_plan(plan_id)
        if plan is None:
            logger.error("Checkout session %s references unknown plan %s", session.get("id"), plan_id)
            return ReconcileResult(IGNORED, user_id=user_id, detail=f"unknown plan {plan_id}")

        profile = self._db.get_profile(user_id, raise_on_error=True)
        if not profile:
            return self._orphaned(event, f"user {user_id}")
        if self._predates_cancellation(profile, event):
            return self._stale(profile, event, since="subscription_cancelled_at")

        subscription_id = _object_id(session.get("subscription"))
        updates: Dict[str, Any] = {
            "subscription_tier": plan.id,
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "stripe_subscription_id": subscription_id,
        }
        customer_id = _object_id(session.get("customer"))
        if customer_id and not profile.get("stripe_customer_id"):
            updates["stripe_customer_id"] = customer_id
        self._write(profile, event, updates)

        amount_total = session.get("amount_total")
        self._db.insert_subscription_history(
            {
                "user_id": user_id,
                "stripe_subscription_id": subscription_id,
                "plan": plan.id,
                "status": SubscriptionStatus.ACTIVE.value,
                "amount": amount_total / 100 if amount_total else 0,
                "currency": session.get("currency") or "usd",
            }
        )
        log("[billing] checkout completed", user_id=user_id, plan=plan.id)
        return ReconcileResult(APPLIED, user_id=user_id)

    def _handle_subscription_updated(self, event: Dict[str, Any]) -> ReconcileResult:
        subscription = _event_object(event)
        profile = self._resolve_customer_profile(subscription)
        if not profile:
            return self._orphaned(event, f"customer {_object_id(subscription.get('customer'))}")
        if self._is_stale(profile, event):
            return self._stale(profile, event)

        period_start, period_end = _subscription_period(subscription)
        status = normalize_provider_status(subscription.get("status"))
        updates = {
            "subscription_status": status,
            "stripe_subscription_id": subscription.get("id"),
            "subscription_period_start": period_start,
            "subscription_period_end": period_end,
        }
        self._write(profile, event, updates)
        log("[billing] subscription status updated", user_id=profile["id"], status=status)
        return ReconcileResult(APPLIED, user_id=profile["id"])

    def _handle_subscription_deleted(self, event: Dict[str, Any]) -> ReconcileResult:
        subscription = _event_object(event)
        profile = self._resolve_customer_profile(subscription)
        if not profile:
            return self._orphaned(event, f"customer {_object_id(subscription.get('customer'))}")
        if self._is_stale(profile, event):
            return self._stale(profile, event)

        updates = {
            "subscription_tier": DEFAULT_PLAN_ID,
            "subscription_status": SubscriptionStatus.CANCELLED.value,
            "stripe_subscription_id": None,
        }
        event_time = _event_time(event)
        if event_time is not None:
            updates["subscription_cancelled_at"] = event_time.isoformat()
        self._write(profile, event, updates)
        self._db.insert_subscription_history(
            {
                "user_id": profile["id"],
                "stripe_subscription_id": subscription.get("id"),
                "plan": DEFAULT_PLAN_ID,
                "status": SubscriptionStatus.CANCELLED.value,
            }
        )
        log("[billing] subscription cancelled", user_id=profile["id"])
        return ReconcileResult(APPLIED, user_id=profile["id"])

    def _handle_payment_succeeded(self, event: Dict[str, Any]) -> ReconcileResult:
        invoice = _event_object(event)
        profile = self._resolve_customer_profile(invoice)
        if not profile:
            return self._orphaned(event, f"customer {_object_id(invoice.get('customer'))}")
        if self._is_stale(profile, event):
            return self._stale(profile, event)

        reset_at = _event_time(event) or datetime.now(timezone.utc)
        updates = {
            "ai_tokens_used": 0,
            "ai_tokens_reset_at": reset_at.isoformat(),
            "subscription_status": SubscriptionStatus.ACTIVE.value,
        }
        self._write(profile, event, updates)
        log("[billing] payment succeeded, AI tokens reset", user_id=profile["id"])
        return ReconcileResult(APPLIED, user_id=profile["id"])

    def _handle_payment_failed(self, event: Dict[str, Any]) -> ReconcileResult:
        invoice = _event_object(event)
        profile = self._resolve_customer_profile(invoice)
        if not profile:
            return self._orphaned(event, f"customer {_object_id(invoice.get('customer'))}")
        if self._is_stale(profile, event):
            return self._stale(profile, event)

        self._write(profile, event, {"subscription_status": SubscriptionStatus.PAST_DUE.value})
        log("[billing] payment failed", user_id=profile["id"])
        return ReconcileResult(APPLIED, user_id=profile["id"])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _resolve_customer_profile(self, obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        customer_id = _object_id(obj.get("customer"))
        if not customer_id:
            return None
        return self._db.get_profile_by_customer_id(customer_id, raise_on_error=True)

    def _is_stale(self, profile: Dict[str, Any], event: Dict[str, Any]) -> bool:
        if not self._discard_stale:
            return False
        event_time = _event_time(event)
        last_applied = parse_timestamp(profile.get("last_billing_event_at"))
        if event_time is None or last_applied is None:
            return False
        return event_time < last_applied

    def _predates_cancellation(self, profile: Dict[str, Any], event: Dict[str, Any]) -> bool:
        """Checkout skips the newest-event guard but never outruns a later cancellation."""
        if not self._discard_stale:
            return False
        event_time = _event_time(event)
        cancelled_at = parse_timestamp(profile.get("subscription_cancelled_at"))
        if event_time is None or cancelled_at is None:
            return False
        return event_time < cancelled_at

    def _write(self, profile: Dict[str, Any], event: Dict[str, Any], updates: Dict[str, Any]) -> None:
        payload = dict(updates)
        event_time = _event_time(event)
        last_applied = parse_timestamp(profile.get("last_billing_event_at"))
        if event_time is not None and (last_applied is None or event_time > last_applied):
            payload["last_billing_event_at"] = event_time.isoformat()
        self._db.update_profile(profile["id"], payload)

    def _orphaned(self, event: Dict[str, Any], reference: str) -> ReconcileResult:
        logger.warning(
            "Orphaned Stripe event %s (%s): no profile found for %s",
            event.get("id"),
            event.get("type"),
            reference,
        )
        return ReconcileResult(ORPHANED, detail=f"no profile for {reference}")

    def _stale(
        self,
        profile: Dict[str, Any],
        event: Dict[str, Any],
        *,
        since: str = "last_billing_event_at",
    ) -> ReconcileResult:
        logger.warning(
            "Discarding stale Stripe event %s (%s) for user %s: older than %s",
            event.get("id"),
            event.get("type"),
            profile.get("id"),
            profile.get(since),
        )
        return ReconcileResult(STALE, user_id=profile.get("id"), detail=f"older than {since}")


def _event_object(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _object_id(value: Any) -> Optional[str]:
    """Stripe fields may be an id string or an expanded object."""

    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _event_time(event: Dict[str, Any]) -> Optional[datetime]:
    return parse_timestamp(event.get("created"))


def _subscription_period(subscription: Dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    items = (subscription.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    start = first_item.get("current_period_start") or subscription.get("current_period_start")
    end = first_item.get("current_period_end") or subscription.get("current_period_end")
    return timestamp_to_iso(start), timestamp_to_iso(end)
