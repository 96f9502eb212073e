"""
Monthly invoice generation job.

Creates draft invoices for every organization for one billing period
(previous calendar month by default). Organizations that already have an
invoice for the period are skipped.

Dry-run by default. Use --live to create invoices.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
from datetime import date
from typing import Dict, Any, Optional

from sqlalchemy import select, insert

from learnstudio.core.database import get_db_session, organizations, invoices, billing_admin_audit
from learnstudio.core.errors import AppError, DuplicatePeriodError
from learnstudio.features.invoices.calculator import compute_line_items
from learnstudio.features.invoices.service import create_invoice, resolve_billing_period
from learnstudio.features.pricing.service import resolve_pricing
from learnstudio.features.usage.aggregator import get_usage

logger = logging.getLogger("learnstudio.workers.generate_invoices")


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def run_invoice_generation_job(
    *,
    dry_run: bool = True,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    period_start, period_end = resolve_billing_period(period_start, period_end, today=today)

    report: Dict[str, Any] = {
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "dry_run": dry_run,
        "orgs": 0,
        "created": 0,
        "skipped_existing": 0,
        "failed": 0,
        "estimated_total": 0,
        "invoice_ids": [],
    }

    with get_db_session() as session:
        org_ids = [row.id for row in session.execute(select(organizations.c.id).order_by(organizations.c.id))]
        existing = {
            row.org_id
            for row in session.execute(
                select(invoices.c.org_id).where(invoices.c.period_start == period_start)
            )
        }

    report["orgs"] = len(org_ids)
    pricing = resolve_pricing() if dry_run else None

    for org_id in org_ids:
        if org_id in existing:
            report["skipped_existing"] += 1
            continue

        if dry_run:
            usage = get_usage(org_id, period_start, period_end)
            report["estimated_total"] += compute_line_items(usage, pricing).total
            continue

        try:
            invoice = create_invoice(org_id, period_start, period_end)
        except DuplicatePeriodError:
            report["skipped_existing"] += 1
            continue
        except AppError as exc:
            logger.error(
                "invoice_job.org_failed",
                extra={"org_id": org_id, "error_code": exc.code},
            )
            report["failed"] += 1
            continue

        report["created"] += 1
        report["estimated_total"] += invoice.total
        report["invoice_ids"].append(invoice.id)

    if not dry_run and report["created"]:
        with get_db_session() as session:
            session.execute(
                insert(billing_admin_audit).values(
                    actor="system_job",
                    actor_type="system",
                    action="invoice_generate_batch",
                    target_resource=f"{report['period_start']}..{report['period_end']}",
                    payload_json=json.dumps(
                        {"created": report["created"], "skipped_existing": report["skipped_existing"]}
                    ),
                )
            )

    logger.info(
        "invoice_job.complete",
        extra={
            "dry_run": dry_run,
            "invoices_created": report["created"],
            "invoices_skipped": report["skipped_existing"],
            "invoices_failed": report["failed"],
        },
    )
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate draft invoices for all organizations.")
    parser.add_argument("--live", dest="dry_run", action="store_false", help="Create invoices.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Report estimates without writes.")
    parser.add_argument("--period-start", default=None, help="ISO date (inclusive). Defaults to previous month.")
    parser.add_argument("--period-end", default=None, help="ISO date (exclusive).")
    parser.set_defaults(dry_run=_parse_bool(os.getenv("LEARNSTUDIO_INVOICE_JOB_DRY_RUN", "1"), True))
    args = parser.parse_args(argv)

    report = run_invoice_generation_job(
        dry_run=args.dry_run,
        period_start=_parse_date(args.period_start),
        period_end=_parse_date(args.period_end),
    )
    print(report)
    return 1 if report["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
