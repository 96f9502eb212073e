"""
Payment provider protocol.

Defines the webhook-facing interface for payment providers (Stripe, etc.)
so the webhook service does not depend on a specific SDK.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field


@dataclass
class CheckoutCompletedData:
    """A completed course purchase checkout."""
    session_id: str
    payment_intent_id: Optional[str]
    org_id: str
    user_id: str
    course_id: str
    amount_paid: int  # minor units
    currency: str
    customer_email: Optional[str] = None


@dataclass
class AccountUpdatedData:
    """Connected-account status for an organization."""
    account_id: str
    org_id: Optional[str]
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool

    @property
    def onboarded(self) -> bool:
        return self.charges_enabled and self.payouts_enabled and self.details_submitted


@dataclass
class PaymentWebhookResult:
    """Verified, normalized webhook event."""
    event_id: str
    event_type: str
    checkout: Optional[CheckoutCompletedData] = None
    account: Optional[AccountUpdatedData] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must verify the webhook signature against the raw body
    before parsing anything out of it.
    """

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> PaymentWebhookResult:
        """
        Verify webhook signature and parse event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Returns:
            Parsed webhook result

        Raises:
            PaymentWebhookError: If signature invalid or parsing fails
        """
        ...


class PaymentProviderError(Exception):
    """Base exception for payment provider errors."""
    pass


class PaymentWebhookError(PaymentProviderError):
    """Webhook could not be verified or parsed."""
    pass
