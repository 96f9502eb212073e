"""
Admin-only billing operations router.

Platform overview, per-org usage, pricing versions and the audit trail.
Requires platform-admin authentication for all endpoints.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from learnstudio.core.admin_auth import require_admin, AdminActor
from learnstudio.features.billing.admin_service import (
    get_admin_audit_entries,
    get_org_usage_summary,
    get_platform_overview,
    record_admin_audit,
)
from learnstudio.features.pricing.service import (
    DEFAULT_PRICING,
    activate_pricing,
    create_pricing_config,
    resolve_pricing,
)

logger = logging.getLogger("learnstudio.admin_billing")

router = APIRouter(prefix="/admin", tags=["admin-billing"])


# ============================================================================
# Pydantic Models
# ============================================================================

class CreatePricingRequest(BaseModel):
    """New pricing version. Rates are minor units; free tiers are counts or GB."""
    name: str = Field(..., min_length=1, max_length=100)
    price_per_active_student: int
    price_per_gb_storage: int
    price_per_gb_bandwidth: int
    price_per_certificate: int
    free_students_limit: int
    free_storage_gb: float
    free_bandwidth_gb: float
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3, description="Defaults to DEFAULT_CURRENCY")
    activate: bool = Field(default=False, description="Make this version the active pricing")


class ActivatePricingRequest(BaseModel):
    name: str = Field(..., min_length=1)
    version: int = Field(..., ge=1)


# ============================================================================
# Admin Endpoints
# ============================================================================

@router.get("/billing/overview")
def billing_overview(actor: AdminActor = Depends(require_admin)):
    """Current-month usage and estimates for every org, pending invoices and platform totals."""
    return {"success": True, "data": get_platform_overview()}


@router.get("/billing/orgs/{org_id}/usage")
def org_usage(
    org_id: str,
    period_start: Optional[date] = Query(None, alias="periodStart"),
    period_end: Optional[date] = Query(None, alias="periodEnd"),
    actor: AdminActor = Depends(require_admin),
):
    return {"success": True, "data": get_org_usage_summary(org_id, period_start, period_end)}


@router.get("/billing/audit")
def admin_audit(
    org_id: Optional[str] = Query(None, alias="orgId"),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
):
    return {"success": True, "data": get_admin_audit_entries(org_id, action, limit)}


@router.get("/pricing")
def get_pricing(actor: AdminActor = Depends(require_admin)):
    """Pricing currently applied to billing; `fallback` is true when no valid active row exists."""
    pricing = resolve_pricing()
    return {
        "success": True,
        "data": {"pricing": pricing.model_dump(), "fallback": pricing is DEFAULT_PRICING},
    }


@router.post("/pricing")
def create_pricing(req: CreatePricingRequest, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] pricing create requested by {actor.actor_id}: {req.name} activate={req.activate}")

    config = create_pricing_config(
        req.name,
        price_per_active_student=req.price_per_active_student,
        price_per_gb_storage=req.price_per_gb_storage,
        price_per_gb_bandwidth=req.price_per_gb_bandwidth,
        price_per_certificate=req.price_per_certificate,
        free_students_limit=req.free_students_limit,
        free_storage_gb=req.free_storage_gb,
        free_bandwidth_gb=req.free_bandwidth_gb,
        currency=req.currency,
        activate=req.activate,
    )

    record_admin_audit(
        actor,
        "pricing_create",
        target_resource=f"{config.name}@{config.version}",
        payload=req.model_dump(),
    )
    return {"success": True, "data": config.model_dump()}


@router.post("/pricing/activate")
def activate_pricing_endpoint(req: ActivatePricingRequest, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] pricing activate requested by {actor.actor_id}: {req.name}@{req.version}")

    config = activate_pricing(req.name, req.version)

    record_admin_audit(
        actor,
        "pricing_activate",
        target_resource=f"{config.name}@{config.version}",
        payload=req.model_dump(),
    )
    return {"success": True, "data": config.model_dump()}
