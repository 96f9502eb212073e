# learnstudio/conftest.py
import os
import uuid

import pytest

# Configure the environment before any learnstudio module reads settings
os.environ.setdefault("ENV", "test")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("TEST_DATABASE_URL", None)

TEST_DB_URL = "sqlite+pysqlite:///:memory:"
TEST_ADMIN_KEY = "test-admin-key"


@pytest.fixture(scope="session", autouse=True)
def db_engine():
    """
    Initialize an in-memory SQLite engine for the whole test session.

    StaticPool keeps a single connection, so every session sees the same
    database.
    """
    from learnstudio.core.database import init_engine, create_all_tables

    engine = init_engine(TEST_DB_URL)
    create_all_tables()
    yield engine


@pytest.fixture(scope="function", autouse=True)
def reset_db(db_engine):
    """Drop and recreate all tables so each test starts from a clean slate."""
    from learnstudio.core.database import reset_database

    reset_database()
    yield


@pytest.fixture(scope="function", autouse=True)
def clear_auth_overrides():
    from learnstudio.core.clerk_auth import set_jwks_provider_for_tests

    yield
    set_jwks_provider_for_tests(None)


@pytest.fixture
def admin_key(monkeypatch):
    """Legacy X-Admin-Key accepted by require_admin (hybrid mode, non-prod)."""
    from learnstudio.core.config import settings

    monkeypatch.setenv("ADMIN_API_KEY", TEST_ADMIN_KEY)
    monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "hybrid")
    monkeypatch.setattr(settings, "ENVIRONMENT", "test")
    return TEST_ADMIN_KEY


@pytest.fixture
def admin_headers(admin_key):
    return {"X-Admin-Key": admin_key}


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from learnstudio.main import app

    return TestClient(app)


@pytest.fixture
def make_org():
    """Insert an organization row and return its id."""
    from sqlalchemy import insert
    from learnstudio.core.database import get_db_session, organizations

    def _make_org(org_id=None, name="Acme Academy", slug=None, stripe_onboarded=False):
        org_id = org_id or str(uuid.uuid4())
        with get_db_session() as session:
            session.execute(
                insert(organizations).values(
                    id=org_id,
                    name=name,
                    slug=slug or f"org-{org_id[:8]}",
                    plan="free",
                    stripe_onboarded=stripe_onboarded,
                )
            )
        return org_id

    return _make_org
