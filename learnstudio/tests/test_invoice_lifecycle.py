"""
Invoice lifecycle: period resolution, creation, and the draft/open/paid state machine.
"""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import insert, select, func
from sqlalchemy.exc import OperationalError

from learnstudio.core.database import get_db_session, invoices
from learnstudio.core.errors import (
    DuplicatePeriodError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamFailure,
    ValidationError,
)
from learnstudio.features.invoices import service as invoice_service
from learnstudio.features.invoices.service import (
    create_invoice,
    get_invoice,
    list_invoices,
    mark_invoice_paid,
    resolve_billing_period,
    send_invoice,
)
from learnstudio.features.usage.service import record_usage_event
from learnstudio.models.invoice import InvoiceStatus
from learnstudio.models.usage_event import UsageEventType, UsageSnapshot

JAN = (date(2026, 1, 1), date(2026, 2, 1))


def _invoice_count(org_id):
    with get_db_session() as session:
        return session.execute(
            select(func.count()).select_from(invoices).where(invoices.c.org_id == org_id)
        ).scalar()


# Period resolution

def test_period_defaults_to_previous_month():
    assert resolve_billing_period(today=date(2026, 3, 15)) == (date(2026, 2, 1), date(2026, 3, 1))
    assert resolve_billing_period(today=date(2026, 1, 1)) == (date(2025, 12, 1), date(2026, 1, 1))


def test_period_with_only_start_ends_next_month():
    assert resolve_billing_period(date(2026, 4, 1)) == (date(2026, 4, 1), date(2026, 5, 1))


def test_period_with_only_end_starts_previous_month():
    assert resolve_billing_period(period_end=date(2026, 5, 1)) == (date(2026, 4, 1), date(2026, 5, 1))


def test_period_end_must_follow_start():
    with pytest.raises(ValidationError):
        resolve_billing_period(date(2026, 4, 1), date(2026, 4, 1))


# Creation

def test_create_invoice_persists_draft_from_usage(make_org):
    org_id = make_org()
    for i in range(12):
        record_usage_event(
            org_id,
            UsageEventType.STUDENT_ACTIVE,
            user_id=f"student_{i}",
            created_at=datetime(2026, 1, 10, tzinfo=timezone.utc),
        )
    record_usage_event(
        org_id,
        UsageEventType.CERTIFICATE_ISSUED,
        quantity=3,
        created_at=datetime(2026, 1, 12, tzinfo=timezone.utc),
    )

    invoice = create_invoice(org_id, *JAN)

    assert invoice.status == InvoiceStatus.DRAFT
    assert (invoice.period_start, invoice.period_end) == JAN
    assert [item.amount for item in invoice.line_items] == [400, 150]
    assert invoice.subtotal == invoice.total == invoice.amount_due == 550
    assert invoice.amount_paid == 0
    assert invoice.pricing_config_id is None  # fallback pricing
    assert get_invoice(invoice.id) == invoice


def test_zero_usage_creates_valid_zero_invoice(make_org):
    invoice = create_invoice(make_org(), *JAN)
    assert invoice.line_items == []
    assert invoice.total == 0


def test_unknown_org_is_not_found():
    with pytest.raises(NotFoundError):
        create_invoice("missing-org", *JAN)


def test_duplicate_period_is_rejected(make_org):
    org_id = make_org()
    create_invoice(org_id, *JAN)

    with pytest.raises(DuplicatePeriodError) as exc_info:
        create_invoice(org_id, *JAN)

    assert exc_info.value.status_code == 400
    assert _invoice_count(org_id) == 1


def test_concurrent_duplicate_maps_unique_violation(make_org):
    org_id = make_org()

    def racing_get_usage(*args, **kwargs):
        # Another request commits its invoice after our pre-check passed
        with get_db_session() as session:
            session.execute(
                insert(invoices).values(
                    id="racer",
                    org_id=org_id,
                    period_start=JAN[0],
                    period_end=JAN[1],
                    line_items=[],
                    subtotal=0,
                    total=0,
                    amount_due=0,
                )
            )
        return UsageSnapshot()

    with patch.object(invoice_service, "get_usage", side_effect=racing_get_usage):
        with pytest.raises(DuplicatePeriodError):
            create_invoice(org_id, *JAN)

    assert _invoice_count(org_id) == 1


def test_storage_error_is_upstream_failure(make_org):
    org_id = make_org()
    with patch.object(invoice_service, "get_usage", side_effect=OperationalError("SELECT", {}, Exception("db down"))):
        with pytest.raises(UpstreamFailure) as exc_info:
            create_invoice(org_id, *JAN)

    assert exc_info.value.status_code == 500
    assert "db down" not in exc_info.value.message


# Transitions

def test_send_moves_draft_to_open(make_org):
    invoice = create_invoice(make_org(), *JAN)
    notifier = Mock()
    now = datetime(2026, 2, 3, 9, 30, tzinfo=timezone.utc)

    sent = send_invoice(invoice.id, notifier=notifier, now=now)

    assert sent.status == InvoiceStatus.OPEN
    assert sent.due_date == date(2026, 2, 3) + timedelta(days=30)
    assert sent.sent_at is not None
    notifier.notify.assert_called_once()
    assert notifier.notify.call_args[0][0].id == invoice.id


def test_notifier_failure_does_not_roll_back(make_org):
    invoice = create_invoice(make_org(), *JAN)
    notifier = Mock()
    notifier.notify.side_effect = RuntimeError("smtp down")

    sent = send_invoice(invoice.id, notifier=notifier)

    assert sent.status == InvoiceStatus.OPEN
    assert get_invoice(invoice.id).status == InvoiceStatus.OPEN


def test_send_missing_invoice_is_not_found():
    with pytest.raises(NotFoundError):
        send_invoice("00000000-0000-0000-0000-000000000000", notifier=Mock())


def test_send_twice_is_invalid_transition(make_org):
    invoice = create_invoice(make_org(), *JAN)
    send_invoice(invoice.id, notifier=Mock())

    with pytest.raises(InvalidTransitionError):
        send_invoice(invoice.id, notifier=Mock())


def test_mark_paid_defaults_amount_to_amount_due(make_org):
    org_id = make_org()
    record_usage_event(org_id, UsageEventType.CERTIFICATE_ISSUED, created_at=datetime(2026, 1, 5, tzinfo=timezone.utc))
    invoice = create_invoice(org_id, *JAN)
    send_invoice(invoice.id, notifier=Mock())

    paid = mark_invoice_paid(invoice.id)

    assert paid.status == InvoiceStatus.PAID
    assert paid.amount_paid == paid.amount_due == 50
    assert paid.paid_at is not None


def test_draft_can_be_marked_paid_directly(make_org):
    invoice = create_invoice(make_org(), *JAN)
    paid = mark_invoice_paid(invoice.id, amount_paid=0)
    assert paid.status == InvoiceStatus.PAID


def test_partial_payment_still_marks_paid(make_org):
    org_id = make_org()
    record_usage_event(org_id, UsageEventType.CERTIFICATE_ISSUED, quantity=4, created_at=datetime(2026, 1, 5, tzinfo=timezone.utc))
    invoice = create_invoice(org_id, *JAN)

    paid = mark_invoice_paid(invoice.id, amount_paid=75)

    assert paid.status == InvoiceStatus.PAID
    assert paid.amount_paid == 75
    assert paid.amount_due == 200


def test_negative_amount_is_rejected(make_org):
    invoice = create_invoice(make_org(), *JAN)
    with pytest.raises(ValidationError):
        mark_invoice_paid(invoice.id, amount_paid=-1)
    assert get_invoice(invoice.id).status == InvoiceStatus.DRAFT


def test_paid_is_terminal(make_org):
    invoice = create_invoice(make_org(), *JAN)
    mark_invoice_paid(invoice.id)

    with pytest.raises(InvalidTransitionError):
        send_invoice(invoice.id, notifier=Mock())
    with pytest.raises(InvalidTransitionError):
        mark_invoice_paid(invoice.id)

    after = get_invoice(invoice.id)
    assert after.status == InvoiceStatus.PAID
    assert after.due_date is None
    assert after.sent_at is None


# Reads

def test_list_invoices_filters(make_org):
    org_a, org_b = make_org(), make_org()
    jan_a = create_invoice(org_a, *JAN)
    create_invoice(org_a, date(2026, 2, 1), date(2026, 3, 1))
    create_invoice(org_b, *JAN)
    send_invoice(jan_a.id, notifier=Mock())

    assert len(list_invoices()) == 3
    assert [inv.period_start for inv in list_invoices(org_id=org_a)] == [date(2026, 2, 1), date(2026, 1, 1)]
    assert [inv.id for inv in list_invoices(statuses=["open"])] == [jan_a.id]

    with pytest.raises(ValidationError):
        list_invoices(statuses=["void"])
