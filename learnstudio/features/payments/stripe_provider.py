"""
Stripe payment provider implementation.

Implements PaymentProvider using the Stripe SDK's webhook signature
verification; events are parsed from the verified raw body.
"""
import json
import os
from typing import Dict, Any, Optional

import stripe

from learnstudio.core.config import settings
from learnstudio.features.payments.provider import (
    AccountUpdatedData,
    CheckoutCompletedData,
    PaymentWebhookError,
    PaymentWebhookResult,
)

COURSE_PURCHASE = "course_purchase"


class StripeProvider:
    """Stripe implementation of PaymentProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
        """
        self.secret_key = secret_key or os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET") or settings.STRIPE_WEBHOOK_SECRET
        )

        if self.secret_key:
            stripe.api_key = self.secret_key

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> PaymentWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise PaymentWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise PaymentWebhookError("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret)
            event = json.loads(payload)
        except stripe.SignatureVerificationError as e:
            raise PaymentWebhookError(f"Invalid signature: {e}")
        except ValueError as e:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors
            raise PaymentWebhookError(f"Invalid payload: {e}")

        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise PaymentWebhookError("Invalid payload: missing event id or type")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> PaymentWebhookResult:
        """Parse Stripe event into normalized PaymentWebhookResult."""
        event_type = event["type"]
        data = (event.get("data") or {}).get("object") or {}
        metadata = data.get("metadata") or {}

        result = PaymentWebhookResult(
            event_id=event["id"],
            event_type=event_type,
            metadata=metadata,
        )

        if event_type == "checkout.session.completed":
            result.checkout = self._parse_checkout(data, metadata)
        elif event_type == "account.updated":
            result.account = AccountUpdatedData(
                account_id=data.get("id", ""),
                org_id=metadata.get("orgId"),
                charges_enabled=bool(data.get("charges_enabled")),
                payouts_enabled=bool(data.get("payouts_enabled")),
                details_submitted=bool(data.get("details_submitted")),
            )

        return result

    def _parse_checkout(self, data: Dict[str, Any], metadata: Dict[str, Any]) -> Optional[CheckoutCompletedData]:
        if metadata.get("type") != COURSE_PURCHASE:
            return None
        if not (metadata.get("orgId") and metadata.get("userId") and metadata.get("courseId")):
            raise PaymentWebhookError("Invalid payload: course_purchase metadata incomplete")

        payment_intent = data.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")

        return CheckoutCompletedData(
            session_id=data.get("id", ""),
            payment_intent_id=payment_intent,
            org_id=metadata["orgId"],
            user_id=metadata["userId"],
            course_id=metadata["courseId"],
            amount_paid=int(data.get("amount_total") or 0),
            currency=(data.get("currency") or "usd"),
            customer_email=data.get("customer_email"),
        )
