"""Invoice notification seam. Delivery (email, webhook) lives outside this service."""

from typing import Protocol

from learnstudio.core.logging import log_event
from learnstudio.models.invoice import Invoice


class InvoiceNotifier(Protocol):
    def notify(self, invoice: Invoice) -> None:
        ...


class LoggingInvoiceNotifier:
    """Default notifier: records the send in the logs."""

    def notify(self, invoice: Invoice) -> None:
        log_event(
            "info",
            "invoice.sent",
            org_id=invoice.org_id,
            invoice_id=invoice.id,
            extra={"amount_due": invoice.amount_due, "due_date": invoice.due_date},
            logger_name="learnstudio.invoices",
        )


def get_notifier() -> InvoiceNotifier:
    return LoggingInvoiceNotifier()
