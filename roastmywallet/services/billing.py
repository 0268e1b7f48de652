"""
Payment-processor seam: credential leases and webhook reconciliation.

Checkout, subscriptions and invoices live with Stripe. This module only
verifies incoming events and copies their outcome onto the user row
(tier, one-time report entitlement, billing ids).
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import requests
import stripe
from sqlalchemy.orm import Session

from .. import crud, models
from ..config import settings
from ..errors import UpstreamError, ValidationFailed

logger = logging.getLogger("roastmywallet.services.billing")

ANNUAL_REPORT_PRODUCT = "annual_report"
ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")
SIGNATURE_TOLERANCE_SECONDS = 300

_lease = None


@dataclass
class CredentialLease:
    """The webhook signing secret plus how long it may be reused.

    The connector does not promise the secret stays valid between calls, so
    leases default to a zero TTL and every webhook re-fetches.
    """

    webhook_secret: str = ""
    issued_at: float = field(default_factory=time.time)
    ttl_seconds: int = 0

    def is_valid(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.issued_at < self.ttl_seconds


def fetch_credentials() -> CredentialLease:
    """Fetch a fresh lease from the connector, or from the environment when none is configured."""
    ttl = settings.billing_credential_ttl
    if not settings.billing_connector_url:
        return CredentialLease(webhook_secret=settings.billing_webhook_secret, ttl_seconds=ttl)

    try:
        response = requests.get(
            settings.billing_connector_url,
            headers={"Accept": "application/json", "X-Connector-Token": settings.billing_connector_token},
            timeout=10,
        )
        response.raise_for_status()
        items = response.json().get("items") or [{}]
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Billing connector request failed: {e}")
        raise UpstreamError("Billing service unavailable")

    connection = items[0].get("settings") or {}
    if not connection.get("secret"):
        raise UpstreamError("Billing connection not found")
    return CredentialLease(
        webhook_secret=connection.get("webhook_secret") or settings.billing_webhook_secret,
        ttl_seconds=ttl,
    )


def get_credentials() -> CredentialLease:
    """Reuse the current lease while it is valid, otherwise fetch a new one."""
    global _lease
    if _lease is None or not _lease.is_valid():
        _lease = fetch_credentials()
    return _lease


def construct_event(payload: bytes, header: Optional[str], lease: CredentialLease) -> dict:
    """Verify the Stripe-Signature header and decode the event.

    Without a webhook secret the body is decoded unverified (development only).
    """
    if not lease.webhook_secret:
        logger.warning("No billing webhook secret configured; skipping signature check")
        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationFailed("Webhook body must be JSON", field="body")
    else:
        if not header:
            raise ValidationFailed("Missing signature header", field="signature")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, header, lease.webhook_secret, SIGNATURE_TOLERANCE_SECONDS)
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Rejected billing webhook: {e}")
            raise ValidationFailed("Invalid signature", field="signature")
        except ValueError:
            raise ValidationFailed("Webhook body must be JSON", field="body")

    if not isinstance(event, dict):
        raise ValidationFailed("Webhook body must be a JSON object", field="body")
    return event


def handle_webhook(db: Session, payload: bytes, header: Optional[str]) -> bool:
    """Verify one webhook delivery and reconcile it. Blocking; run it off the event loop."""
    event = construct_event(payload, header, get_credentials())
    return apply_event(db, event)


def _find_user(db: Session, obj: dict) -> Optional[models.User]:
    metadata = obj.get("metadata") or {}
    user_id = obj.get("client_reference_id") or metadata.get("user_id")
    if user_id:
        db_user = crud.get_user(db, user_id)
        if db_user is not None:
            return db_user
    customer_id = obj.get("customer")
    if customer_id:
        return crud.get_user_by_billing_customer(db, customer_id)
    return None


def apply_event(db: Session, event: dict) -> bool:
    """Reconcile one processor event onto the matching user. Returns True if a user changed."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    db_user = _find_user(db, obj)
    if db_user is None:
        logger.info(f"Billing event {event_type} did not match a user")
        return False

    if event_type == "checkout.session.completed":
        metadata = obj.get("metadata") or {}
        fields = {}
        if obj.get("customer"):
            fields["billing_customer_id"] = obj["customer"]
        if obj.get("mode") == "subscription":
            fields["tier"] = models.TIER_PREMIUM
            if obj.get("subscription"):
                fields["billing_subscription_id"] = obj["subscription"]
        elif metadata.get("product") == ANNUAL_REPORT_PRODUCT:
            fields["has_annual_report"] = True
        if not fields:
            return False
        crud.update_billing(db, db_user, **fields)

    elif event_type == "customer.subscription.updated":
        tier = models.TIER_PREMIUM if obj.get("status") in ACTIVE_SUBSCRIPTION_STATUSES else models.TIER_FREE
        crud.update_billing(db, db_user, tier=tier, billing_subscription_id=obj.get("id"))

    elif event_type == "customer.subscription.deleted":
        crud.update_billing(db, db_user, tier=models.TIER_FREE, billing_subscription_id=None)

    else:
        logger.debug(f"Ignoring billing event {event_type}")
        return False

    logger.info(f"Applied billing event {event_type} to user {db_user.id} (tier={db_user.tier})")
    return True
