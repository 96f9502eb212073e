"""
learnstudio/features/pricing/service.py

Pricing resolution and the admin write path for pricing versions.

Only one pricing_config row is active at a time. When none is active (or the
stored row is invalid) billing falls back to DEFAULT_PRICING so invoices can
still be generated.
"""

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update, insert, func

from learnstudio.core.config import settings
from learnstudio.core.database import get_db_session, pricing_config
from learnstudio.core.errors import NotFoundError, ValidationError
from learnstudio.models.pricing import PricingConfig

logger = logging.getLogger("learnstudio.pricing")

# Platform fallback, in minor units (cents) and GB
DEFAULT_PRICING = PricingConfig(
    id=None,
    name="default",
    version=1,
    price_per_active_student=200,
    price_per_gb_storage=10,
    price_per_gb_bandwidth=5,
    price_per_certificate=50,
    free_students_limit=10,
    free_storage_gb=1,
    free_bandwidth_gb=5,
    currency=settings.DEFAULT_CURRENCY.lower(),
    is_active=False,
)

_PRICING_FIELDS = (
    "price_per_active_student",
    "price_per_gb_storage",
    "price_per_gb_bandwidth",
    "price_per_certificate",
    "free_students_limit",
    "free_storage_gb",
    "free_bandwidth_gb",
)


def _row_to_config(row) -> PricingConfig:
    data = row._mapping
    return PricingConfig(
        id=data["id"],
        name=data["name"],
        version=data["version"],
        currency=data["currency"],
        is_active=bool(data["is_active"]),
        **{field: data[field] for field in _PRICING_FIELDS},
    )


def get_active_pricing() -> Optional[PricingConfig]:
    """
    Return the active pricing row, or None when nothing is active.

    Raises pydantic.ValidationError if the stored row violates the
    non-negative invariants.
    """
    with get_db_session() as session:
        row = session.execute(
            select(pricing_config).where(pricing_config.c.is_active.is_(True)).limit(1)
        ).first()
    if row is None:
        return None
    return _row_to_config(row)


def resolve_pricing() -> PricingConfig:
    """Active pricing, or DEFAULT_PRICING when missing or invalid. Never raises for misconfiguration."""
    try:
        active = get_active_pricing()
    except PydanticValidationError as exc:
        logger.error(
            "pricing.invalid_active_row",
            extra={"error_code": "invalid_pricing", "error_message": str(exc)},
        )
        return DEFAULT_PRICING

    if active is None:
        logger.warning("pricing.fallback_default", extra={"error_code": "no_active_pricing"})
        return DEFAULT_PRICING
    return active


def activate_pricing(name: str, version: int) -> PricingConfig:
    """Deactivate the current row and activate (name, version) in one transaction."""
    with get_db_session() as session:
        target = session.execute(
            select(pricing_config.c.id).where(
                pricing_config.c.name == name,
                pricing_config.c.version == version,
            )
        ).first()
        if target is None:
            raise NotFoundError(f"Pricing config {name}@{version} not found")

        session.execute(
            update(pricing_config)
            .where(pricing_config.c.is_active.is_(True))
            .values(is_active=False)
        )
        session.execute(
            update(pricing_config)
            .where(pricing_config.c.id == target.id)
            .values(is_active=True)
        )
        row = session.execute(
            select(pricing_config).where(pricing_config.c.id == target.id)
        ).one()
        config = _row_to_config(row)

    logger.info("pricing.activated", extra={"pricing_name": name, "pricing_version": version})
    return config


def create_pricing_config(
    name: str,
    *,
    price_per_active_student: int,
    price_per_gb_storage: int,
    price_per_gb_bandwidth: int,
    price_per_certificate: int,
    free_students_limit: int,
    free_storage_gb: float,
    free_bandwidth_gb: float,
    currency: Optional[str] = None,
    activate: bool = False,
) -> PricingConfig:
    """
    Insert the next version of `name`. Versions start at 1.

    Raises ValidationError for negative rates or thresholds.
    """
    try:
        candidate = PricingConfig(
            name=name,
            price_per_active_student=price_per_active_student,
            price_per_gb_storage=price_per_gb_storage,
            price_per_gb_bandwidth=price_per_gb_bandwidth,
            price_per_certificate=price_per_certificate,
            free_students_limit=free_students_limit,
            free_storage_gb=free_storage_gb,
            free_bandwidth_gb=free_bandwidth_gb,
            currency=(currency or settings.DEFAULT_CURRENCY).lower(),
        )
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid pricing config: {field} {first.get('msg', '')}".strip())

    with get_db_session() as session:
        current = session.execute(
            select(func.max(pricing_config.c.version)).where(pricing_config.c.name == name)
        ).scalar()
        version = (current or 0) + 1

        new_id = session.execute(
            insert(pricing_config).values(
                name=candidate.name,
                version=version,
                currency=candidate.currency,
                is_active=False,
                **{field: getattr(candidate, field) for field in _PRICING_FIELDS},
            )
        ).inserted_primary_key[0]

    logger.info("pricing.created", extra={"pricing_name": name, "pricing_version": version})

    if activate:
        return activate_pricing(name, version)
    return candidate.model_copy(update={"id": new_id, "version": version})
