"""
Invoice line-item calculation.

Pure functions: a UsageSnapshot plus a PricingConfig in, ordered line items
and their total out. All money is integer minor units.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List

from learnstudio.models.invoice import LineItem, LineItemResult
from learnstudio.models.pricing import PricingConfig
from learnstudio.models.usage_event import UsageSnapshot

BYTES_PER_GB = 1024 ** 3

# GB overages at or below this are not billed
MIN_BILLABLE_GB = Decimal("0.01")

_GB_QUANTITY_PLACES = Decimal("0.0001")


def bytes_to_gb(num_bytes: int) -> Decimal:
    return Decimal(num_bytes) / Decimal(BYTES_PER_GB)


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _gb_line_item(label: str, used_bytes: int, free_gb: float, price_per_gb: int) -> List[LineItem]:
    billable = bytes_to_gb(used_bytes) - Decimal(str(free_gb))
    if billable <= MIN_BILLABLE_GB:
        return []
    return [
        LineItem(
            description=f"{label} ({billable:.2f} GB over free tier)",
            quantity=float(billable.quantize(_GB_QUANTITY_PLACES, rounding=ROUND_HALF_UP)),
            unit_price=price_per_gb,
            amount=round_half_up(billable * price_per_gb),
        )
    ]


def compute_line_items(usage: UsageSnapshot, pricing: PricingConfig) -> LineItemResult:
    """
    Build line items in a fixed order: students, storage, bandwidth, certificates.

    Zero-amount metrics are omitted, so usage entirely within the free tier
    yields an empty list and a total of 0.
    """
    items: List[LineItem] = []

    billable_students = max(0, usage.active_students - pricing.free_students_limit)
    if billable_students > 0:
        items.append(
            LineItem(
                description=(
                    f"Active Students ({billable_students} over free tier "
                    f"of {pricing.free_students_limit})"
                ),
                quantity=billable_students,
                unit_price=pricing.price_per_active_student,
                amount=billable_students * pricing.price_per_active_student,
            )
        )

    items.extend(
        _gb_line_item(
            "Video Storage",
            usage.video_storage_bytes,
            pricing.free_storage_gb,
            pricing.price_per_gb_storage,
        )
    )
    items.extend(
        _gb_line_item(
            "Video Bandwidth",
            usage.video_bandwidth_bytes,
            pricing.free_bandwidth_gb,
            pricing.price_per_gb_bandwidth,
        )
    )

    if usage.certificates_issued > 0:
        items.append(
            LineItem(
                description="Certificates Issued",
                quantity=usage.certificates_issued,
                unit_price=pricing.price_per_certificate,
                amount=usage.certificates_issued * pricing.price_per_certificate,
            )
        )

    return LineItemResult(line_items=items, total=sum(item.amount for item in items))


def estimate_amount(usage: UsageSnapshot, pricing: PricingConfig) -> int:
    """Total only; used by the admin overview."""
    return compute_line_items(usage, pricing).total
