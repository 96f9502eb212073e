"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (in-memory SQLite)
- Table definitions for usage metering and invoicing
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    Float,
    String,
    Date,
    DateTime,
    Boolean,
    JSON,
    Text,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from learnstudio.core.config import settings

logger = logging.getLogger("learnstudio.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # A single shared connection keeps in-memory databases alive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits on clean exit, rolls back on any exception.
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


# Organizations (tenants)
organizations = Table(
    'organizations',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', Text, nullable=False),
    Column('slug', String(100), nullable=False, unique=True),
    Column('plan', String(50), nullable=False, server_default='free'),
    Column('stripe_account_id', String(255), nullable=True),
    Column('stripe_onboarded', Boolean, nullable=False, server_default=text('false')),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_organizations_created_at', 'created_at'),
)

# Course enrollments (created by the payments webhook)
enrollments = Table(
    'enrollments',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('org_id', String(36), nullable=False, index=True),
    Column('user_id', String(100), nullable=False),
    Column('course_id', String(100), nullable=False),
    Column('status', String(20), nullable=False, server_default='active'),  # active, completed, cancelled, expired
    Column('progress_percent', Integer, nullable=False, server_default='0'),
    Column('stripe_payment_id', String(255), nullable=True),
    Column('amount_paid', Integer, nullable=True),  # minor units
    Column('currency', String(3), nullable=False, server_default='USD'),
    Column('enrolled_at', DateTime(timezone=True), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # One enrollment per (user, course); reactivation updates the row
    UniqueConstraint('user_id', 'course_id', name='uq_enrollments_user_course'),
)

# Usage events (append-only)
usage_events = Table(
    'usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('org_id', String(36), nullable=False),
    Column('event_type', String(50), nullable=False),
    Column('quantity', Float, nullable=False, server_default='1'),
    Column('unit', String(20), nullable=True),
    Column('resource_id', String(100), nullable=True),
    Column('resource_type', String(50), nullable=True),
    Column('user_id', String(100), nullable=True),
    Column('metadata', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Composite index for aggregation: (org_id, event_type, created_at)
    Index('idx_usage_events_org_type_created', 'org_id', 'event_type', 'created_at'),
    Index('idx_usage_events_created_at', 'created_at'),
)

# Tiered pricing configuration (versioned)
pricing_config = Table(
    'pricing_config',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('name', String(100), nullable=False),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('price_per_active_student', Integer, nullable=False),  # minor units
    Column('price_per_gb_storage', Integer, nullable=False),
    Column('price_per_gb_bandwidth', Integer, nullable=False),
    Column('price_per_certificate', Integer, nullable=False),
    Column('free_students_limit', Integer, nullable=False),
    Column('free_storage_gb', Float, nullable=False),
    Column('free_bandwidth_gb', Float, nullable=False),
    Column('currency', String(3), nullable=False, server_default='usd'),
    Column('is_active', Boolean, nullable=False, server_default=text('false')),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('name', 'version', name='uq_pricing_config_name_version'),
)

# At most one active pricing row platform-wide
Index(
    'uq_pricing_config_single_active',
    pricing_config.c.is_active,
    unique=True,
    postgresql_where=pricing_config.c.is_active.is_(True),
    sqlite_where=pricing_config.c.is_active == True,  # noqa: E712
)

# Usage-based invoices
invoices = Table(
    'invoices',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('org_id', String(36), nullable=False, index=True),
    Column('period_start', Date, nullable=False),
    Column('period_end', Date, nullable=False),
    Column('currency', String(3), nullable=False, server_default='usd'),
    Column('line_items', JSON, nullable=False),
    Column('subtotal', Integer, nullable=False),  # minor units
    Column('total', Integer, nullable=False),
    Column('amount_due', Integer, nullable=False),
    Column('amount_paid', Integer, nullable=False, server_default='0'),
    Column('status', String(20), nullable=False, server_default='draft'),  # draft, open, paid
    Column('due_date', Date, nullable=True),
    Column('sent_at', DateTime(timezone=True), nullable=True),
    Column('paid_at', DateTime(timezone=True), nullable=True),
    Column('pricing_config_id', Integer, nullable=True),  # NULL when fallback pricing applied
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # One invoice per org per billing period; closes the concurrent-generate race
    UniqueConstraint('org_id', 'period_start', name='uq_invoices_org_period_start'),
    Index('idx_invoices_status_period', 'status', 'period_start'),
)

# Payment provider webhook log (idempotency)
payment_events = Table(
    'payment_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('provider_event_id', String(100), nullable=False),
    Column('event_type', String(100), nullable=False, index=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of raw body
    Column('processed', Boolean, nullable=False, server_default=text('false'), index=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    UniqueConstraint('provider_event_id', name='uq_payment_events_provider_id'),
    Index('idx_payment_events_received_at', 'received_at'),
)

# Admin action audit trail
billing_admin_audit = Table(
    'billing_admin_audit',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('actor', String(100), nullable=False),  # display name or actor id
    Column('actor_id', String(255), nullable=True),
    Column('actor_type', String(20), nullable=True),
    Column('actor_email', String(255), nullable=True),
    Column('auth_mechanism', String(20), nullable=True),
    Column('action', String(100), nullable=False),  # "invoice_generate", "invoice_send", etc.
    Column('target_org_id', String(36), nullable=True),
    Column('target_resource', String(200), nullable=True),  # invoice id, pricing name@version
    Column('payload_json', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_billing_admin_audit_actor_id', 'actor_id'),
    Index('idx_billing_admin_audit_action', 'action'),
    Index('idx_billing_admin_audit_org', 'target_org_id'),
    Index('idx_billing_admin_audit_created_at', 'created_at'),
)
