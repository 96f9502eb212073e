"""
Payments webhook orchestrator.

Coordinates:
- Signature verification (delegated to the provider)
- Idempotency on the provider event id (payment_events)
- Enrollment creation/reactivation for course purchases
- Connected-account onboarding status for organizations

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from learnstudio.core.config import settings
from learnstudio.core.database import (
    get_db_session,
    enrollments,
    organizations,
    payment_events,
)
from learnstudio.core.errors import UpstreamFailure
from learnstudio.features.payments.provider import (
    AccountUpdatedData,
    CheckoutCompletedData,
    PaymentProvider,
    PaymentWebhookError,
    PaymentWebhookResult,
)
from learnstudio.features.payments.stripe_provider import StripeProvider
from learnstudio.features.usage.service import track_active_student

logger = logging.getLogger("learnstudio.payments")

REACTIVATABLE_STATUSES = ("cancelled", "expired")


@dataclass
class WebhookOutcome:
    result: PaymentWebhookResult
    duplicate: bool = False
    action: Optional[str] = None  # "enrollment_created", "enrollment_reactivated", ...


def payments_enabled() -> bool:
    """Webhook handling needs a signing secret."""
    return bool(os.getenv("STRIPE_WEBHOOK_SECRET") or settings.STRIPE_WEBHOOK_SECRET)


def get_provider() -> Optional[PaymentProvider]:
    if not payments_enabled():
        return None
    return StripeProvider()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def apply_course_purchase(checkout: CheckoutCompletedData) -> str:
    """
    Create an active enrollment, or reactivate a cancelled/expired one.

    Active and completed enrollments are left untouched. The student is
    tracked as active either way.
    """
    now = _utcnow()
    action = "enrollment_unchanged"

    with get_db_session() as session:
        existing = session.execute(
            select(enrollments.c.id, enrollments.c.status).where(
                enrollments.c.user_id == checkout.user_id,
                enrollments.c.course_id == checkout.course_id,
            )
        ).fetchone()

        if existing is None:
            session.execute(
                insert(enrollments).values(
                    org_id=checkout.org_id,
                    user_id=checkout.user_id,
                    course_id=checkout.course_id,
                    status="active",
                    progress_percent=0,
                    stripe_payment_id=checkout.payment_intent_id,
                    amount_paid=checkout.amount_paid,
                    currency=checkout.currency.upper(),
                    enrolled_at=now,
                    created_at=now,
                    updated_at=now,
                )
            )
            action = "enrollment_created"
        elif existing.status in REACTIVATABLE_STATUSES:
            session.execute(
                update(enrollments)
                .where(enrollments.c.id == existing.id)
                .values(
                    status="active",
                    stripe_payment_id=checkout.payment_intent_id,
                    amount_paid=checkout.amount_paid,
                    currency=checkout.currency.upper(),
                    enrolled_at=now,
                    updated_at=now,
                )
            )
            action = "enrollment_reactivated"

    track_active_student(checkout.org_id, checkout.user_id, course_id=checkout.course_id)

    logger.info(
        "payments.course_purchase",
        extra={"org_id": checkout.org_id, "user_id": checkout.user_id, "course_id": checkout.course_id, "action": action},
    )
    return action


def apply_account_update(account: AccountUpdatedData) -> str:
    """Sync organizations.stripe_onboarded from the connected account."""
    if not account.org_id:
        return "ignored"

    values = {"stripe_onboarded": account.onboarded}
    if account.account_id:
        values["stripe_account_id"] = account.account_id

    with get_db_session() as session:
        session.execute(
            update(organizations)
            .where(organizations.c.id == account.org_id)
            .values(**values)
        )

    logger.info(
        "payments.account_updated",
        extra={"org_id": account.org_id, "onboarded": account.onboarded},
    )
    return "org_onboarding_updated"


def _record_event(result: PaymentWebhookResult, payload_hash: str) -> bool:
    """
    Record the event for idempotency. Returns False when it is a duplicate.

    A previously failed delivery (error recorded, not processed) is retried.
    """
    with get_db_session() as session:
        existing = session.execute(
            select(payment_events.c.processed, payment_events.c.error).where(
                payment_events.c.provider_event_id == result.event_id
            )
        ).fetchone()

        if existing is not None:
            if existing.processed or existing.error is None:
                return False
            session.execute(
                update(payment_events)
                .where(payment_events.c.provider_event_id == result.event_id)
                .values(error=None)
            )
            return True

    try:
        with get_db_session() as session:
            session.execute(
                insert(payment_events).values(
                    provider_event_id=result.event_id,
                    event_type=result.event_type,
                    payload_hash=payload_hash,
                    processed=False,
                )
            )
    except IntegrityError:
        # Race condition: another delivery already inserted this event
        return False
    return True


def process_webhook_event(headers: Dict[str, str], body: bytes) -> WebhookOutcome:
    """
    Process payments webhook event (idempotent).

    1. Verify signature
    2. Check idempotency (skip if already processed)
    3. Apply state changes
    4. Mark as processed

    Raises:
        PaymentWebhookError: not configured, signature invalid or payload malformed
        UpstreamFailure: processing failed after verification (error recorded)
    """
    provider = get_provider()
    if not provider:
        raise PaymentWebhookError("Payments webhook not configured")

    result = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    if not _record_event(result, payload_hash):
        logger.info(
            "payments.webhook_duplicate",
            extra={"event_type": result.event_type, "provider_event_id": result.event_id},
        )
        return WebhookOutcome(result=result, duplicate=True)

    try:
        if result.checkout is not None:
            action = apply_course_purchase(result.checkout)
        elif result.account is not None:
            action = apply_account_update(result.account)
        else:
            action = "ignored"

        with get_db_session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.provider_event_id == result.event_id)
                .values(processed=True, processed_at=_utcnow())
            )
    except Exception as e:
        logger.error(
            "payments.webhook_failed",
            exc_info=True,
            extra={"event_type": result.event_type, "error_code": "webhook_processing_failed"},
        )
        with get_db_session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.provider_event_id == result.event_id)
                .values(error=str(e)[:1000])
            )
        raise UpstreamFailure("Webhook processing failed") from e

    logger.info(
        "payments.webhook_processed",
        extra={"event_type": result.event_type, "provider_event_id": result.event_id, "action": action},
    )
    return WebhookOutcome(result=result, action=action)
