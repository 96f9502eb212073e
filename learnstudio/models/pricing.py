"""Tiered pricing configuration value object."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PricingConfig(BaseModel):
    """
    Platform-wide tiered pricing.

    Rates are integers in the currency's minor unit (cents for usd).
    Free-tier allowances are counts (students) or GB (storage, bandwidth).
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None  # None for the built-in fallback
    name: str = "default"
    version: int = Field(default=1, ge=1)
    price_per_active_student: int = Field(..., ge=0)
    price_per_gb_storage: int = Field(..., ge=0)
    price_per_gb_bandwidth: int = Field(..., ge=0)
    price_per_certificate: int = Field(..., ge=0)
    free_students_limit: int = Field(..., ge=0)
    free_storage_gb: float = Field(..., ge=0)
    free_bandwidth_gb: float = Field(..., ge=0)
    currency: str = "usd"
    is_active: bool = False
