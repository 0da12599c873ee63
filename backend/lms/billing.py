"""
Stripe billing: hosted checkout sessions and webhook handling.

Why:
    Subscriptions are paid through Stripe Checkout. The app only needs two
    calls: create a checkout session (REST, form-encoded) and verify signed
    webhook payloads. Both are plain HTTP/HMAC, so they run over `httpx` and
    `hmac` without an SDK.

Behavior:
    - Webhook events are applied with the service-role datastore; the caller
      is Stripe, not a signed-in user.
    - Unknown event types are acknowledged and ignored.
    - E-mail notifications are best effort and never fail the webhook.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field, ValidationError

from backend.datastore.ports import DatastoreError, DatastoreProtocol

from .email import Mailer

logger = logging.getLogger("clearcourse.billing")

STRIPE_API_BASE = "https://api.stripe.com/v1"
BILLING_CYCLES = ("monthly", "yearly")
DEFAULT_TOLERANCE_SECONDS = 300


class BillingError(Exception):
    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class SignatureVerificationError(BillingError):
    def __init__(self, message: str) -> None:
        super().__init__("invalid_signature", message)


def price_id_for(plan: dict, billing_cycle: str) -> Optional[str]:
    return plan.get(f"stripe_price_id_{billing_cycle}")


def _form_encode(prefix: str, value: Any, out: list[tuple[str, str]]) -> None:
    """Flatten nested dicts/lists into Stripe's bracketed form keys."""
    if isinstance(value, dict):
        for key, item in value.items():
            _form_encode(f"{prefix}[{key}]" if prefix else str(key), item, out)
    elif isinstance(value, (list, tuple)):
        for idx, item in enumerate(value):
            _form_encode(f"{prefix}[{idx}]", item, out)
    elif isinstance(value, bool):
        out.append((prefix, "true" if value else "false"))
    elif value is not None:
        out.append((prefix, str(value)))


def encode_form(params: dict) -> list[tuple[str, str]]:
    out: list[tuple[str, str]] = []
    _form_encode("", params, out)
    return out


@dataclass
class StripeClient:
    secret_key: str
    client: Optional[httpx.Client] = None
    timeout: float = 15.0

    def create_checkout_session(
        self,
        *,
        plan: dict,
        organization: dict,
        billing_cycle: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> str:
        """Create a subscription checkout session and return its hosted URL."""
        if billing_cycle not in BILLING_CYCLES:
            raise BillingError("invalid_billing_cycle", "Invalid billing cycle")
        price_id = price_id_for(plan, billing_cycle)
        if not isinstance(price_id, str) or not price_id.startswith("price_"):
            raise BillingError("invalid_price_id", "Invalid price ID format")
        if not self.secret_key:
            raise BillingError("not_configured", "Stripe is not configured")

        params = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": {
                "organization_id": organization["id"],
                "plan_id": plan["id"],
                "billing_cycle": billing_cycle,
            },
            "subscription_data": {"metadata": {"organization_id": organization["id"], "plan_id": plan["id"]}},
        }
        url = f"{STRIPE_API_BASE}/checkout/sessions"
        # Stripe wants bracketed keys with repeats, so the body is encoded here.
        body = urlencode(encode_form(params))
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        try:
            if self.client is not None:
                resp = self.client.post(url, content=body, headers=headers, auth=(self.secret_key, ""))
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(url, content=body, headers=headers, auth=(self.secret_key, ""))
        except httpx.HTTPError as exc:
            logger.error("billing.checkout.http_error org=%s err=%s", organization.get("id"), type(exc).__name__)
            raise BillingError("checkout_failed", "Failed to create checkout session") from exc
        if resp.status_code >= 400:
            logger.error("billing.checkout.rejected org=%s status=%s", organization.get("id"), resp.status_code)
            raise BillingError("checkout_failed", "Failed to create checkout session")
        session = resp.json()
        checkout_url = session.get("url")
        if not checkout_url:
            raise BillingError("checkout_failed", "Checkout session has no URL")
        logger.info("billing.checkout.created org=%s session=%s", organization.get("id"), session.get("id"))
        return checkout_url


class WebhookEventData(BaseModel):
    object: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    """Envelope of a Stripe event; the object payload stays a plain dict."""

    id: Optional[str] = None
    type: str = Field(..., min_length=1)
    data: WebhookEventData = Field(default_factory=WebhookEventData)


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """Build a `Stripe-Signature` header value for `payload`."""
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def construct_event(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    *,
    now: Optional[float] = None,
) -> dict:
    """Verify the Stripe signature header and return the decoded event."""
    if not signature_header:
        raise SignatureVerificationError("No signature provided")
    if not secret:
        raise SignatureVerificationError("Webhook secret not configured")
    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureVerificationError("Malformed timestamp") from None
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise SignatureVerificationError("Malformed signature header")

    expected = sign_payload(payload, secret, timestamp).split("v1=", 1)[1]
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise SignatureVerificationError("Signature mismatch")
    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp) > tolerance:
        raise SignatureVerificationError("Timestamp outside tolerance")
    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise SignatureVerificationError("Invalid payload") from None
    try:
        WebhookEvent.model_validate(event)
    except ValidationError:
        raise SignatureVerificationError("Invalid payload") from None
    return event


def _object_id(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _iso_from_epoch(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), timezone.utc).isoformat()


@dataclass
class WebhookHandler:
    """Applies Stripe events to subscriptions and organizations."""

    ds: DatastoreProtocol
    mailer: Optional[Mailer] = None
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    def handle_event(self, event: dict) -> bool:
        """Return True when the event type was handled."""
        event_type = event.get("type")
        obj = ((event.get("data") or {}).get("object")) or {}
        handler = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "customer.subscription.trial_will_end": self._trial_will_end,
            "invoice.payment_failed": self._payment_failed,
            "invoice.payment_succeeded": self._payment_succeeded,
        }.get(str(event_type))
        if handler is None:
            logger.debug("billing.webhook.ignored type=%s", event_type)
            return False
        logger.info("billing.webhook.received type=%s id=%s", event_type, event.get("id"))
        handler(obj)
        return True

    # --- helpers -------------------------------------------------------------

    def _set_org_status(self, organization_id: str, status: str, **extra: Any) -> Optional[dict]:
        rows = self.ds.update("organizations", {"id": organization_id}, {"subscription_status": status, **extra})
        return rows[0] if rows else None

    def _org_for_subscription(self, stripe_subscription_id: Optional[str]) -> Optional[str]:
        if not stripe_subscription_id:
            return None
        row = self.ds.select_one("subscriptions", {"stripe_subscription_id": stripe_subscription_id})
        return row.get("organization_id") if row else None

    def _owner_email(self, organization: Optional[dict]) -> Optional[str]:
        if not organization or not organization.get("owner_id"):
            return None
        owner = self.ds.select_one("profiles", {"id": organization["owner_id"]})
        return owner.get("email") if owner else None

    # --- event handlers ------------------------------------------------------

    def _checkout_completed(self, session: dict) -> None:
        metadata = session.get("metadata") or {}
        organization_id = metadata.get("organization_id")
        plan_id = metadata.get("plan_id")
        billing_cycle = metadata.get("billing_cycle") or "monthly"
        if not organization_id or not plan_id:
            logger.error("billing.checkout.missing_metadata session=%s", session.get("id"))
            return
        now = self.clock()
        days = 365 if billing_cycle == "yearly" else 30
        try:
            self.ds.insert(
                "subscriptions",
                {
                    "organization_id": organization_id,
                    "plan_id": plan_id,
                    "stripe_subscription_id": _object_id(session.get("subscription")),
                    "stripe_customer_id": _object_id(session.get("customer")),
                    "status": "active",
                    "billing_cycle": billing_cycle,
                    "current_period_start": now.isoformat(),
                    "current_period_end": (now + timedelta(days=days)).isoformat(),
                },
            )
        except DatastoreError as exc:
            logger.error("billing.subscription.insert_failed org=%s code=%s", organization_id, exc.code)
            raise
        org = self._set_org_status(organization_id, "active", trial_ends_at=None)

        email = self._owner_email(org)
        if self.mailer is not None and org and email:
            plan = self.ds.select_one("subscription_plans", {"id": plan_id}) or {}
            self.mailer.send_subscription_activated(email, org.get("name") or "", plan.get("name") or "")

    def _subscription_updated(self, subscription: dict) -> None:
        stripe_id = subscription.get("id")
        status = subscription.get("status")
        self.ds.update(
            "subscriptions",
            {"stripe_subscription_id": stripe_id},
            {
                "status": status,
                "current_period_start": _iso_from_epoch(subscription.get("current_period_start")),
                "current_period_end": _iso_from_epoch(subscription.get("current_period_end")),
                "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
            },
        )
        organization_id = self._org_for_subscription(stripe_id)
        if organization_id:
            org_status = status if status in ("active", "past_due") else "canceled"
            self._set_org_status(organization_id, org_status)

    def _subscription_deleted(self, subscription: dict) -> None:
        stripe_id = subscription.get("id")
        organization_id = self._org_for_subscription(stripe_id)
        if not organization_id:
            return
        self.ds.update(
            "subscriptions",
            {"stripe_subscription_id": stripe_id},
            {"status": "canceled", "canceled_at": self.clock().isoformat()},
        )
        self._set_org_status(organization_id, "canceled")

    def _trial_will_end(self, subscription: dict) -> None:
        organization_id = self._org_for_subscription(subscription.get("id"))
        if not organization_id or self.mailer is None:
            return
        org = self.ds.select_one("organizations", {"id": organization_id})
        email = self._owner_email(org)
        if not org or not email:
            return
        days_left = 0
        if subscription.get("trial_end"):
            remaining = datetime.fromtimestamp(int(subscription["trial_end"]), timezone.utc) - self.clock()
            days_left = max(0, math.ceil(remaining.total_seconds() / 86400))
        self.mailer.send_trial_ending(email, org.get("name") or "", days_left)

    def _payment_failed(self, invoice: dict) -> None:
        organization_id = self._org_for_subscription(_object_id(invoice.get("subscription")))
        if not organization_id:
            return
        org = self._set_org_status(organization_id, "past_due")
        email = self._owner_email(org)
        if self.mailer is not None and org and email:
            self.mailer.send_payment_failed(email, org.get("name") or "")

    def _payment_succeeded(self, invoice: dict) -> None:
        organization_id = self._org_for_subscription(_object_id(invoice.get("subscription")))
        if organization_id:
            self._set_org_status(organization_id, "active")


__all__ = [
    "BillingError",
    "SignatureVerificationError",
    "StripeClient",
    "WebhookEvent",
    "WebhookEventData",
    "WebhookHandler",
    "construct_event",
    "encode_form",
    "price_id_for",
    "sign_payload",
]
