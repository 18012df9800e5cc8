"""
Plan normalization and tenant quota enforcement.

Run: pytest tenantbook/test_quota.py -v
"""

import pytest

from tenantbook.db import get_db
from tenantbook.dependencies import QUOTA_HEADER
from tenantbook.plans import (
    DEFAULT_TENANT_LIMITS,
    QuotaExceededError,
    enforce_tenant_quota,
    get_tenant_quota,
    normalize_plan,
    plan_defaults,
    resolve_tenant_limit,
)


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Affordable for small landlords", "starter"),
        ("Professional", "pro"),
        ("Best for growing portfolios", "enterprise"),
        ("Business", "business"),
        ("PRO", "pro"),
        ("", "free"),
        (None, "free"),
        ("Custom", "custom"),
    ],
)
def test_normalize_plan(raw, expected):
    assert normalize_plan(raw) == expected


def test_plan_defaults():
    assert plan_defaults("free").tenant_directory_enabled is False
    assert plan_defaults("pro").payments_enabled is True
    assert plan_defaults("enterprise").tenant_limit is None
    assert plan_defaults("custom").tenant_limit == 100
    assert DEFAULT_TENANT_LIMITS["free"] == 5


def test_unseeded_custom_plan_limit_matches_seeded_default():
    conn = get_db()
    try:
        assert conn.execute("SELECT 1 FROM plan_settings WHERE id = 'boutique'").fetchone() is None
        assert resolve_tenant_limit(conn, "boutique") == plan_defaults("boutique").tenant_limit == 100
    finally:
        conn.close()


def _set_limit(plan, limit):
    conn = get_db()
    conn.execute("UPDATE plan_settings SET tenant_limit = ? WHERE id = ?", (limit, plan))
    conn.commit()
    conn.close()


def test_enforce_quota_limit_reached(make_org, make_tenant):
    org = make_org(plan="quota-two")
    _set_limit("quota-two", 2)
    make_tenant(org)

    conn = get_db()
    try:
        assert enforce_tenant_quota(conn, org["id"]).remaining == 1
        make_tenant(org)
        with pytest.raises(QuotaExceededError) as exc:
            enforce_tenant_quota(conn, org["id"])
    finally:
        conn.close()
    assert exc.value.message == 'Tenant limit reached for plan "quota-two" (2). Please upgrade to add more tenants.'
    assert exc.value.quota.as_dict() == {"used": 2, "limit": 2, "remaining": 0}


def test_zero_limit_blocks_creation(make_org):
    org = make_org(plan="quota-zero")
    _set_limit("quota-zero", 0)
    conn = get_db()
    try:
        with pytest.raises(QuotaExceededError) as exc:
            enforce_tenant_quota(conn, org["id"])
    finally:
        conn.close()
    assert exc.value.message == "Your plan does not allow creating tenants"


def test_negative_limit_is_unlimited(make_org):
    org = make_org(plan="quota-open")
    _set_limit("quota-open", -1)
    conn = get_db()
    try:
        quota = get_tenant_quota(conn, org["id"])
    finally:
        conn.close()
    assert quota.unlimited
    assert quota.header_value() == "unlimited"


def test_create_tenant_sets_quota_header_and_blocks_at_limit(client, make_org):
    org = make_org(plan="quota-one")
    _set_limit("quota-one", 1)
    headers = _auth(org["token"])

    ok = client.post("/api/tenants", json={"first_name": "Ann"}, headers=headers)
    assert ok.status_code == 201
    assert ok.headers[QUOTA_HEADER] == "1"

    blocked = client.post("/api/tenants", json={"first_name": "Bob"}, headers=headers)
    assert blocked.status_code == 403
    detail = blocked.json()["detail"]
    assert detail["quota"] == {"used": 1, "limit": 1, "remaining": 0}
    assert blocked.headers[QUOTA_HEADER] == "0"


def test_batch_checks_whole_batch(client, make_org):
    org = make_org(plan="quota-three")
    _set_limit("quota-three", 3)
    headers = _auth(org["token"])

    too_many = client.post("/api/tenants/batch", json={"tenants": [{"first_name": f"T{i}"} for i in range(4)]}, headers=headers)
    assert too_many.status_code == 403
    assert client.get("/api/usage", headers=headers).json()["tenants"]["used"] == 0

    ok = client.post("/api/tenants/batch", json={"tenants": [{"first_name": f"T{i}"} for i in range(3)]}, headers=headers)
    assert ok.status_code == 201
    assert ok.json()["count"] == 3
    assert len({t["id"] for t in ok.json()["created"]}) == 3


def test_usage_endpoint(client, make_org, make_tenant):
    org = make_org(plan="starter")
    make_tenant(org)
    r = client.get("/api/usage", headers=_auth(org["token"]))
    assert r.status_code == 200
    body = r.json()
    assert body["organization_id"] == org["id"]
    assert body["plan"] == "starter"
    assert body["tenants"]["used"] == 1
