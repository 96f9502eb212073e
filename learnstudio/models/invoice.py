"""
Invoice models.

Lifecycle:
    draft -> open -> paid
    draft -> paid        (manual reconciliation shortcut)

paid is terminal. Monetary fields are integers in minor units.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Dict, Any, FrozenSet, Union
from pydantic import BaseModel, ConfigDict, Field


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"


# Allowed forward transitions: {from_status: {to_status, ...}}
INVOICE_TRANSITIONS: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.OPEN, InvoiceStatus.PAID}),
    InvoiceStatus.OPEN: frozenset({InvoiceStatus.PAID}),
    InvoiceStatus.PAID: frozenset(),
}


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    return target in INVOICE_TRANSITIONS.get(current, frozenset())


class LineItem(BaseModel):
    """One billable entry tied to a single metric."""
    model_config = ConfigDict(frozen=True)

    description: str
    quantity: Union[int, float]  # int count, or GB for storage/bandwidth
    unit_price: int  # minor units per unit
    amount: int  # minor units


class LineItemResult(BaseModel):
    """Calculator output: ordered line items and their total."""
    model_config = ConfigDict(frozen=True)

    line_items: List[LineItem] = Field(default_factory=list)
    total: int = 0


class Invoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    org_id: str
    period_start: date
    period_end: date  # exclusive
    currency: str = "usd"
    line_items: List[LineItem] = Field(default_factory=list)
    subtotal: int = 0
    total: int = 0
    amount_due: int = 0
    amount_paid: int = 0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    due_date: Optional[date] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    pricing_config_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "Invoice":
        data = dict(row._mapping)
        data["line_items"] = [LineItem(**item) for item in (data.get("line_items") or [])]
        return cls(**data)

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
