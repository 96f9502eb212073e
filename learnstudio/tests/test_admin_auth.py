"""
Platform-admin authentication: Clerk JWT, legacy X-Admin-Key, and auth modes.
"""
import hmac
from unittest.mock import patch

import pytest

from learnstudio.core.clerk_auth import create_test_jwt, is_platform_admin
from learnstudio.core.config import settings

TEST_SECRET = "test-secret-key-for-learnstudio-admin"


@pytest.fixture
def clerk_secret(monkeypatch):
    monkeypatch.setattr(settings, "CLERK_SECRET_KEY", TEST_SECRET)
    monkeypatch.setattr(settings, "ENVIRONMENT", "test")
    return TEST_SECRET


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_platform_admin_jwt_is_accepted(client, clerk_secret, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "clerk")

    resp = client.get("/admin/invoices", headers=_bearer(create_test_jwt(sub="user_admin")))
    assert resp.status_code == 200


def test_non_admin_jwt_is_forbidden(client, clerk_secret):
    resp = client.get("/admin/invoices", headers=_bearer(create_test_jwt(platform_admin=False)))
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"


def test_expired_jwt_is_forbidden(client, clerk_secret):
    resp = client.get("/admin/invoices", headers=_bearer(create_test_jwt(exp_minutes=-5)))
    assert resp.status_code == 403


def test_jwt_signed_with_other_secret_is_forbidden(client, clerk_secret):
    resp = client.get("/admin/invoices", headers=_bearer(create_test_jwt(secret="another-secret")))
    assert resp.status_code == 403


def test_clerk_mode_rejects_legacy_key(client, admin_key, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "clerk")
    resp = client.get("/admin/invoices", headers={"X-Admin-Key": admin_key})
    assert resp.status_code == 403


def test_legacy_key_blocked_in_prod_hybrid(client, admin_key, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "prod")
    resp = client.get("/admin/invoices", headers={"X-Admin-Key": admin_key})
    assert resp.status_code == 403


def test_legacy_mode_allows_key_in_prod(client, admin_key, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "prod")
    monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "legacy")
    resp = client.get("/admin/invoices", headers={"X-Admin-Key": admin_key})
    assert resp.status_code == 200


def test_jwt_actor_is_recorded_in_audit(client, clerk_secret, make_org):
    from sqlalchemy import select
    from learnstudio.core.database import get_db_session, billing_admin_audit

    token = create_test_jwt(sub="user_42", email="ops@example.com")
    resp = client.post(
        "/admin/invoices/generate",
        json={"orgId": make_org(), "periodStart": "2026-01-01"},
        headers=_bearer(token),
    )
    assert resp.status_code == 200

    with get_db_session() as session:
        row = session.execute(select(billing_admin_audit)).first()
    assert row.actor_id == "user_42"
    assert row.actor_email == "ops@example.com"
    assert row.actor_type == "clerk"
    assert row.auth_mechanism == "clerk_jwt"


def test_is_platform_admin_claims():
    assert is_platform_admin({"public_metadata": {"is_platform_admin": True}})
    assert is_platform_admin({"public_metadata": {"role": "platform_admin"}})
    assert not is_platform_admin({"public_metadata": {"role": "org_admin"}})
    assert not is_platform_admin({"public_metadata": "admin"})
    assert not is_platform_admin({})


def test_legacy_key_is_compared_in_constant_time(client, admin_key):
    with patch("learnstudio.core.admin_auth.hmac.compare_digest", wraps=hmac.compare_digest) as compare:
        ok = client.get("/admin/invoices", headers={"X-Admin-Key": admin_key})
        wrong = client.get("/admin/invoices", headers={"X-Admin-Key": admin_key[:-1] + "z"})

    assert ok.status_code == 200
    assert wrong.status_code == 403
    compare.assert_any_call(admin_key.encode(), admin_key.encode())
    compare.assert_any_call((admin_key[:-1] + "z").encode(), admin_key.encode())
