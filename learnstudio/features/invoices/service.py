"""
learnstudio/features/invoices/service.py

Invoice lifecycle.

Handles:
- Billing period resolution (defaults to the previous calendar month)
- Draft creation from aggregated usage and resolved pricing
- Transitions: draft -> open (send), draft|open -> paid (mark paid)
- Invoice reads for the admin screens

Database failures surface as UpstreamFailure; the state machine and
duplicate-period checks surface as 400-class errors.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from learnstudio.core.config import settings
from learnstudio.core.database import get_db_session, invoices, organizations
from learnstudio.core.errors import (
    AppError,
    DuplicatePeriodError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamFailure,
    ValidationError,
)
from learnstudio.features.invoices.calculator import compute_line_items
from learnstudio.features.invoices.notifier import InvoiceNotifier, get_notifier
from learnstudio.features.pricing.service import resolve_pricing
from learnstudio.features.usage.aggregator import add_months, first_of_month, get_usage
from learnstudio.models.invoice import Invoice, InvoiceStatus, can_transition

logger = logging.getLogger("learnstudio.invoices")

MAX_LIST_LIMIT = 500


def resolve_billing_period(
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    today: Optional[date] = None,
):
    """
    Resolve a half-open billing period [start, end).

    - neither given: the previous calendar month
    - only start: end is the first day of the following month
    - only end: start is the first day of the month before end
    """
    today = today or datetime.now(timezone.utc).date()

    if period_start is None and period_end is None:
        this_month = first_of_month(today)
        period_start, period_end = add_months(this_month, -1), this_month
    elif period_end is None:
        period_end = add_months(period_start, 1)
    elif period_start is None:
        period_start = add_months(first_of_month(period_end), -1)

    if period_end <= period_start:
        raise ValidationError("period_end must be after period_start")

    return period_start, period_end


def _fetch_invoice(session, invoice_id: str):
    return session.execute(select(invoices).where(invoices.c.id == invoice_id)).first()


def _upstream(action: str, exc: Exception, **context) -> UpstreamFailure:
    logger.error(f"invoice.{action}_failed", exc_info=exc, extra={"error_code": "upstream_failure", **context})
    return UpstreamFailure("Failed to process invoice request")


def create_invoice(
    org_id: str,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
) -> Invoice:
    """
    Create a draft invoice for an organization's billing period.

    Raises:
        NotFoundError: unknown org
        DuplicatePeriodError: an invoice already exists for (org_id, period_start)
        ValidationError: invalid period
        UpstreamFailure: storage failure
    """
    period_start, period_end = resolve_billing_period(period_start, period_end)

    try:
        with get_db_session() as session:
            org = session.execute(
                select(organizations.c.id).where(organizations.c.id == org_id)
            ).first()
            if org is None:
                raise NotFoundError("Organization not found")

            existing = session.execute(
                select(invoices.c.id).where(
                    invoices.c.org_id == org_id,
                    invoices.c.period_start == period_start,
                )
            ).first()
            if existing is not None:
                raise DuplicatePeriodError("Invoice already exists for this period")

        usage = get_usage(org_id, period_start, period_end)
        pricing = resolve_pricing()
        result = compute_line_items(usage, pricing)

        invoice_id = str(uuid4())
        now = datetime.now(timezone.utc)
        with get_db_session() as session:
            session.execute(
                insert(invoices).values(
                    id=invoice_id,
                    org_id=org_id,
                    period_start=period_start,
                    period_end=period_end,
                    currency=pricing.currency,
                    line_items=[item.model_dump() for item in result.line_items],
                    subtotal=result.total,
                    total=result.total,
                    amount_due=result.total,
                    amount_paid=0,
                    status=InvoiceStatus.DRAFT.value,
                    pricing_config_id=pricing.id,
                    created_at=now,
                    updated_at=now,
                )
            )
            row = _fetch_invoice(session, invoice_id)
            invoice = Invoice.from_row(row)
    except IntegrityError:
        # A concurrent create won the (org_id, period_start) unique constraint
        logger.warning(
            "invoice.duplicate_period_race",
            extra={"org_id": org_id, "error_code": "duplicate_period"},
        )
        raise DuplicatePeriodError("Invoice already exists for this period")
    except SQLAlchemyError as exc:
        raise _upstream("create", exc, org_id=org_id)

    logger.info(
        "invoice.created",
        extra={"org_id": org_id, "invoice_id": invoice.id, "amount_due": invoice.amount_due},
    )
    return invoice


def _transition(
    invoice_id: str,
    target: InvoiceStatus,
    values_for,
) -> Invoice:
    """Apply a guarded status transition; `values_for(row)` returns the columns to set."""
    with get_db_session() as session:
        row = _fetch_invoice(session, invoice_id)
        if row is None:
            raise NotFoundError("Invoice not found")

        current = InvoiceStatus(row.status)
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot move invoice from {current.value} to {target.value}"
            )

        values = values_for(row)
        values["status"] = target.value
        values["updated_at"] = datetime.now(timezone.utc)

        # Guard on the observed status so a concurrent transition is not overwritten
        result = session.execute(
            update(invoices)
            .where(invoices.c.id == invoice_id, invoices.c.status == current.value)
            .values(**values)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Cannot move invoice from {current.value} to {target.value}"
            )
        return Invoice.from_row(_fetch_invoice(session, invoice_id))


def send_invoice(
    invoice_id: str,
    notifier: Optional[InvoiceNotifier] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """Move a draft to open, set the due date, then notify. Notifier errors are logged only."""
    now = now or datetime.now(timezone.utc)
    due_date = now.date() + timedelta(days=settings.INVOICE_DUE_DAYS)

    try:
        invoice = _transition(
            invoice_id,
            InvoiceStatus.OPEN,
            lambda row: {"due_date": due_date, "sent_at": now},
        )
    except AppError:
        raise
    except SQLAlchemyError as exc:
        raise _upstream("send", exc, invoice_id=invoice_id)

    logger.info(
        "invoice.opened",
        extra={"org_id": invoice.org_id, "invoice_id": invoice.id, "status": invoice.status.value},
    )

    try:
        (notifier or get_notifier()).notify(invoice)
    except Exception:
        logger.error(
            "invoice.notify_failed",
            exc_info=True,
            extra={"org_id": invoice.org_id, "invoice_id": invoice.id, "error_code": "notify_failed"},
        )

    return invoice


def mark_invoice_paid(
    invoice_id: str,
    amount_paid: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """
    Mark a draft or open invoice as paid.

    amount_paid defaults to amount_due. Partial or over-payment is not
    reconciled: the invoice always becomes paid.
    """
    if amount_paid is not None and amount_paid < 0:
        raise ValidationError("amount_paid must be non-negative")

    now = now or datetime.now(timezone.utc)

    try:
        invoice = _transition(
            invoice_id,
            InvoiceStatus.PAID,
            lambda row: {
                "paid_at": now,
                "amount_paid": row.amount_due if amount_paid is None else amount_paid,
            },
        )
    except AppError:
        raise
    except SQLAlchemyError as exc:
        raise _upstream("mark_paid", exc, invoice_id=invoice_id)

    if invoice.amount_paid != invoice.amount_due:
        logger.warning(
            "invoice.amount_mismatch",
            extra={
                "org_id": invoice.org_id,
                "invoice_id": invoice.id,
                "amount_due": invoice.amount_due,
                "amount_paid": invoice.amount_paid,
            },
        )

    logger.info(
        "invoice.paid",
        extra={"org_id": invoice.org_id, "invoice_id": invoice.id, "status": invoice.status.value},
    )
    return invoice


def get_invoice(invoice_id: str) -> Invoice:
    with get_db_session() as session:
        row = _fetch_invoice(session, invoice_id)
        if row is None:
            raise NotFoundError("Invoice not found")
        return Invoice.from_row(row)


def list_invoices(
    org_id: Optional[str] = None,
    statuses: Optional[Sequence[str]] = None,
    limit: int = 50,
) -> List[Invoice]:
    """Newest periods first."""
    limit = max(1, min(limit, MAX_LIST_LIMIT))

    query = select(invoices)
    if org_id:
        query = query.where(invoices.c.org_id == org_id)
    if statuses:
        try:
            values = [InvoiceStatus(status).value for status in statuses]
        except ValueError:
            raise ValidationError(f"Unknown invoice status in {list(statuses)}")
        query = query.where(invoices.c.status.in_(values))

    query = query.order_by(invoices.c.period_start.desc(), invoices.c.created_at.desc()).limit(limit)

    with get_db_session() as session:
        rows = session.execute(query).all()
        return [Invoice.from_row(row) for row in rows]
