"""
Payments API routes.

- POST /payments/webhook: Handle Stripe webhooks (course purchases, Connect account updates)
"""
from fastapi import APIRouter, Request

from learnstudio.core.errors import ValidationError
from learnstudio.features.payments.provider import PaymentWebhookError
from learnstudio.features.payments.service import process_webhook_event


router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook")
async def handle_webhook(request: Request):
    """
    Handle Stripe webhook events.

    Verifies signature, processes event idempotently, and applies enrollment
    or organization onboarding changes.

    Signature verification uses STRIPE_WEBHOOK_SECRET.
    Event deduplication uses the provider event id (payment_events table).

    Returns:
        {"success": true, "data": {"received": true, "event_id": ..., "duplicate": bool}}

    Errors:
        400: Missing/invalid signature, malformed payload, webhook not configured
        500: Processing failed after verification (the provider retries)
    """
    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    try:
        outcome = process_webhook_event(headers, body)
    except PaymentWebhookError as e:
        raise ValidationError(str(e), code="invalid_webhook")

    return {
        "success": True,
        "data": {
            "received": True,
            "event_id": outcome.result.event_id,
            "event_type": outcome.result.event_type,
            "duplicate": outcome.duplicate,
            "action": outcome.action,
        },
    }
