"""
Admin billing operations service.

Handles:
- Audit logging of admin mutations
- Platform billing overview (per-org usage and estimates, pending invoices)
- Per-org usage summaries with estimated line items
"""
import json
import logging
from datetime import date
from typing import Optional, Dict, Any, List

from sqlalchemy import select, insert
from sqlalchemy.exc import SQLAlchemyError

from learnstudio.core.admin_auth import AdminActor
from learnstudio.core.database import (
    get_db_session,
    billing_admin_audit,
    organizations,
)
from learnstudio.core.errors import AdminAuditWriteError, NotFoundError
from learnstudio.features.invoices.calculator import compute_line_items
from learnstudio.features.invoices.service import list_invoices, resolve_billing_period
from learnstudio.features.pricing.service import resolve_pricing
from learnstudio.features.usage.aggregator import current_month_period, get_usage

logger = logging.getLogger("learnstudio.admin_billing")

PENDING_STATUSES = ("draft", "open")


def record_admin_audit(
    actor: AdminActor,
    action: str,
    target_org_id: Optional[str] = None,
    target_resource: Optional[str] = None,
    payload: Optional[dict] = None,
) -> None:
    """
    Record an admin action in the audit log.

    Args:
        actor: Authenticated admin
        action: Action name (e.g., "invoice_generate", "pricing_activate")
        target_org_id: Organization affected by action (optional)
        target_resource: Resource affected (invoice id, pricing name@version)
        payload: Additional context as dict (will be JSON-serialized)

    Raises:
        AdminAuditWriteError: If the audit row cannot be written
    """
    try:
        with get_db_session() as session:
            session.execute(
                insert(billing_admin_audit).values(
                    actor=actor.actor_display or actor.actor_id,
                    actor_id=actor.actor_id,
                    actor_type=actor.actor_type,
                    actor_email=actor.actor_email,
                    auth_mechanism=actor.auth_mechanism,
                    action=action,
                    target_org_id=target_org_id,
                    target_resource=target_resource,
                    payload_json=json.dumps(payload, default=str) if payload else None,
                )
            )
    except SQLAlchemyError as exc:
        logger.error(
            "admin.audit_write_failed",
            exc_info=exc,
            extra={"org_id": target_org_id, "error_code": "admin_audit_failed", "action": action},
        )
        raise AdminAuditWriteError("Failed to write admin audit log")


def get_admin_audit_entries(
    target_org_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    """Audit entries, newest first (max 500)."""
    limit = min(limit, 500)

    with get_db_session() as session:
        query = select(billing_admin_audit)
        if target_org_id:
            query = query.where(billing_admin_audit.c.target_org_id == target_org_id)
        if action:
            query = query.where(billing_admin_audit.c.action == action)

        rows = session.execute(
            query.order_by(billing_admin_audit.c.created_at.desc(), billing_admin_audit.c.id.desc()).limit(limit)
        ).all()

        return [
            {
                "id": row.id,
                "actor": row.actor,
                "actor_id": row.actor_id,
                "actor_type": row.actor_type,
                "auth_mechanism": row.auth_mechanism,
                "action": row.action,
                "target_org_id": row.target_org_id,
                "target_resource": row.target_resource,
                "payload": json.loads(row.payload_json) if row.payload_json else None,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]


def _period_dict(period_start: date, period_end: date) -> Dict[str, str]:
    return {"start": period_start.isoformat(), "end": period_end.isoformat()}


def get_org_usage_summary(
    org_id: str,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Usage snapshot for one org plus the line items it would be billed.

    Defaults to the current month. A lone bound is completed the way invoice
    periods are; an empty or inverted period raises ValidationError.
    """
    with get_db_session() as session:
        org = session.execute(
            select(organizations.c.id, organizations.c.name, organizations.c.slug).where(
                organizations.c.id == org_id
            )
        ).first()
    if org is None:
        raise NotFoundError("Organization not found")

    if period_start is None and period_end is None:
        period_start, period_end = current_month_period()
    else:
        period_start, period_end = resolve_billing_period(period_start, period_end)

    usage = get_usage(org_id, period_start, period_end)
    pricing = resolve_pricing()
    estimate = compute_line_items(usage, pricing)

    return {
        "org": {"id": org.id, "name": org.name, "slug": org.slug},
        "period": _period_dict(period_start, period_end),
        "usage": usage.model_dump(),
        "pricing": pricing.model_dump(),
        "line_items": [item.model_dump() for item in estimate.line_items],
        "estimated_amount": estimate.total,
    }


def get_platform_overview() -> Dict[str, Any]:
    """
    Platform billing overview for the current month.

    Returns:
        {
            "period": {...},
            "orgs": [{id, name, slug, plan, stripe_onboarded, usage, estimated_amount}],
            "pending_invoices": [...draft and open invoices...],
            "stats": {total_orgs, connected_orgs, total_active_students, estimated_revenue}
        }
    """
    period_start, period_end = current_month_period()
    pricing = resolve_pricing()

    with get_db_session() as session:
        org_rows = session.execute(
            select(organizations).order_by(organizations.c.created_at.desc(), organizations.c.id)
        ).all()

    orgs = []
    for row in org_rows:
        usage = get_usage(row.id, period_start, period_end)
        orgs.append(
            {
                "id": row.id,
                "name": row.name,
                "slug": row.slug,
                "plan": row.plan,
                "stripe_onboarded": bool(row.stripe_onboarded),
                "usage": usage.model_dump(),
                "estimated_amount": compute_line_items(usage, pricing).total,
            }
        )

    pending = list_invoices(statuses=PENDING_STATUSES, limit=100)

    return {
        "period": _period_dict(period_start, period_end),
        "currency": pricing.currency,
        "orgs": orgs,
        "pending_invoices": [invoice.to_response() for invoice in pending],
        "stats": {
            "total_orgs": len(orgs),
            "connected_orgs": sum(1 for org in orgs if org["stripe_onboarded"]),
            "total_active_students": sum(org["usage"]["active_students"] for org in orgs),
            "estimated_revenue": sum(org["estimated_amount"] for org in orgs),
        },
    }
