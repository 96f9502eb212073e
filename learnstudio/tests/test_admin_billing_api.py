"""
Admin billing endpoints: platform overview, org usage, pricing versions, audit trail.
"""
from datetime import date, datetime, timezone

from learnstudio.features.invoices.service import create_invoice
from learnstudio.features.usage.service import record_usage_event, track_active_student
from learnstudio.models.usage_event import UsageEventType

PRICING_BODY = {
    "name": "standard",
    "price_per_active_student": 300,
    "price_per_gb_storage": 20,
    "price_per_gb_bandwidth": 8,
    "price_per_certificate": 75,
    "free_students_limit": 5,
    "free_storage_gb": 2,
    "free_bandwidth_gb": 10,
}


def test_overview_requires_admin(client, admin_key):
    resp = client.get("/admin/billing/overview")
    assert resp.status_code == 403


def test_overview_stats(client, admin_headers, make_org):
    connected = make_org(name="Connected", stripe_onboarded=True)
    make_org(name="Not Connected")
    track_active_student(connected, "user_a")
    track_active_student(connected, "user_b")
    track_active_student(connected, "user_a")
    create_invoice(connected, date(2026, 1, 1), date(2026, 2, 1))

    resp = client.get("/admin/billing/overview", headers=admin_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["currency"] == "usd"
    assert data["stats"] == {
        "total_orgs": 2,
        "connected_orgs": 1,
        "total_active_students": 2,
        "estimated_revenue": 0,
    }
    assert len(data["orgs"]) == 2
    assert [inv["org_id"] for inv in data["pending_invoices"]] == [connected]


def test_org_usage_for_explicit_period(client, admin_headers, make_org):
    org_id = make_org()
    jan = datetime(2026, 1, 15, tzinfo=timezone.utc)
    for n in range(12):
        record_usage_event(org_id, UsageEventType.STUDENT_ACTIVE, user_id=f"user_{n}", created_at=jan)

    resp = client.get(
        f"/admin/billing/orgs/{org_id}/usage",
        params={"periodStart": "2026-01-01", "periodEnd": "2026-02-01"},
        headers=admin_headers,
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["org"]["id"] == org_id
    assert data["period"] == {"start": "2026-01-01", "end": "2026-02-01"}
    assert data["usage"]["active_students"] == 12
    assert data["estimated_amount"] == 400
    assert data["line_items"][0]["description"] == "Active Students (2 over free tier of 10)"


def test_org_usage_with_only_start_covers_that_month(client, admin_headers, make_org):
    org_id = make_org()
    record_usage_event(
        org_id,
        UsageEventType.CERTIFICATE_ISSUED,
        quantity=2,
        created_at=datetime(2025, 1, 20, tzinfo=timezone.utc),
    )

    resp = client.get(f"/admin/billing/orgs/{org_id}/usage", params={"periodStart": "2025-01-01"}, headers=admin_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["period"] == {"start": "2025-01-01", "end": "2025-02-01"}
    assert data["usage"]["certificates_issued"] == 2


def test_org_usage_with_only_end_covers_previous_month(client, admin_headers, make_org):
    org_id = make_org()

    resp = client.get(f"/admin/billing/orgs/{org_id}/usage", params={"periodEnd": "2025-03-01"}, headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["period"] == {"start": "2025-02-01", "end": "2025-03-01"}


def test_org_usage_inverted_period_is_400(client, admin_headers, make_org):
    org_id = make_org()

    resp = client.get(
        f"/admin/billing/orgs/{org_id}/usage",
        params={"periodStart": "2025-03-01", "periodEnd": "2025-01-01"},
        headers=admin_headers,
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_org_usage_unknown_org_is_404(client, admin_headers):
    resp = client.get("/admin/billing/orgs/missing/usage", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_pricing_falls_back_to_default(client, admin_headers):
    resp = client.get("/admin/pricing", headers=admin_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["fallback"] is True
    assert data["pricing"]["price_per_active_student"] == 200


def test_create_and_activate_pricing(client, admin_headers):
    created = client.post("/admin/pricing", json={**PRICING_BODY, "activate": True}, headers=admin_headers)

    assert created.status_code == 200
    config = created.json()["data"]
    assert config["version"] == 1
    assert config["is_active"] is True

    current = client.get("/admin/pricing", headers=admin_headers).json()["data"]
    assert current["fallback"] is False
    assert current["pricing"]["name"] == "standard"

    second = client.post("/admin/pricing", json=PRICING_BODY, headers=admin_headers).json()["data"]
    assert second["version"] == 2
    assert second["is_active"] is False

    activated = client.post("/admin/pricing/activate", json={"name": "standard", "version": 2}, headers=admin_headers)
    assert activated.status_code == 200
    assert activated.json()["data"]["version"] == 2

    current = client.get("/admin/pricing", headers=admin_headers).json()["data"]
    assert current["pricing"]["version"] == 2


def test_negative_rate_is_400(client, admin_headers):
    resp = client.post("/admin/pricing", json={**PRICING_BODY, "price_per_certificate": -1}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_activate_unknown_version_is_404(client, admin_headers):
    resp = client.post("/admin/pricing/activate", json={"name": "standard", "version": 9}, headers=admin_headers)
    assert resp.status_code == 404


def test_audit_trail_lists_pricing_changes(client, admin_headers):
    client.post("/admin/pricing", json=PRICING_BODY, headers=admin_headers)
    client.post("/admin/pricing/activate", json={"name": "standard", "version": 1}, headers=admin_headers)

    resp = client.get("/admin/billing/audit", headers=admin_headers)

    assert resp.status_code == 200
    entries = resp.json()["data"]
    assert {entry["action"] for entry in entries} == {"pricing_create", "pricing_activate"}
    assert all(entry["target_resource"] == "standard@1" for entry in entries)
    assert all(entry["auth_mechanism"] == "x_admin_key" for entry in entries)

    filtered = client.get("/admin/billing/audit", params={"action": "pricing_activate"}, headers=admin_headers)
    assert len(filtered.json()["data"]) == 1
