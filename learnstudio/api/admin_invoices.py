"""
Admin invoice lifecycle router.

Platform-admin only (Clerk JWT or legacy X-Admin-Key in dev/test).
Every successful mutation is written to billing_admin_audit.

Responses use the envelope {"success": true, "data": ...}; failures are
rendered by the AppError handlers in learnstudio.main.
"""

import logging
from datetime import date
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from learnstudio.core.admin_auth import require_admin, AdminActor
from learnstudio.features.billing.admin_service import record_admin_audit
from learnstudio.features.invoices.service import (
    create_invoice,
    send_invoice,
    mark_invoice_paid,
    get_invoice,
    list_invoices,
)

logger = logging.getLogger("learnstudio.admin_invoices")

router = APIRouter(prefix="/admin/invoices", tags=["admin-invoices"])


# ============================================================================
# Pydantic Models
# ============================================================================

class GenerateInvoiceRequest(BaseModel):
    """Create a draft invoice; period defaults to the previous calendar month."""
    model_config = ConfigDict(populate_by_name=True)

    org_id: str = Field(..., alias="orgId", min_length=1)
    period_start: Optional[date] = Field(None, alias="periodStart")
    period_end: Optional[date] = Field(None, alias="periodEnd")


class SendInvoiceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: str = Field(..., alias="invoiceId", min_length=1)


class MarkPaidRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: str = Field(..., alias="invoiceId", min_length=1)
    amount_paid: Optional[int] = Field(None, alias="amountPaid", description="Minor units; defaults to amount_due")


# ============================================================================
# Admin Endpoints
# ============================================================================

@router.post("/generate")
def generate_invoice(req: GenerateInvoiceRequest, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] invoice generate requested by {actor.actor_id}: org={req.org_id}")

    invoice = create_invoice(req.org_id, req.period_start, req.period_end)

    record_admin_audit(
        actor,
        "invoice_generate",
        target_org_id=invoice.org_id,
        target_resource=invoice.id,
        payload={
            "period_start": invoice.period_start.isoformat(),
            "period_end": invoice.period_end.isoformat(),
            "total": invoice.total,
        },
    )
    return {"success": True, "data": invoice.to_response()}


@router.post("/send")
def send_invoice_endpoint(req: SendInvoiceRequest, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] invoice send requested by {actor.actor_id}: {req.invoice_id}")

    invoice = send_invoice(req.invoice_id)

    record_admin_audit(
        actor,
        "invoice_send",
        target_org_id=invoice.org_id,
        target_resource=invoice.id,
        payload={"due_date": invoice.due_date.isoformat() if invoice.due_date else None},
    )
    return {"success": True, "data": invoice.to_response()}


@router.post("/mark-paid")
def mark_paid_endpoint(req: MarkPaidRequest, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] invoice mark-paid requested by {actor.actor_id}: {req.invoice_id}")

    invoice = mark_invoice_paid(req.invoice_id, amount_paid=req.amount_paid)

    record_admin_audit(
        actor,
        "invoice_mark_paid",
        target_org_id=invoice.org_id,
        target_resource=invoice.id,
        payload={"amount_paid": invoice.amount_paid, "amount_due": invoice.amount_due},
    )
    return {"success": True, "data": invoice.to_response()}


@router.get("")
def list_invoices_endpoint(
    org_id: Optional[str] = Query(None, alias="orgId"),
    status: Optional[List[str]] = Query(None, description="draft/open/paid; repeatable"),
    limit: int = Query(50, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
):
    invoices = list_invoices(org_id=org_id, statuses=status, limit=limit)
    return {"success": True, "data": [invoice.to_response() for invoice in invoices]}


@router.get("/{invoice_id}")
def get_invoice_endpoint(invoice_id: str, actor: AdminActor = Depends(require_admin)):
    return {"success": True, "data": get_invoice(invoice_id).to_response()}
