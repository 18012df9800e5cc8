"""
Tenant directory: organization isolation, portal passwords and pagination.

Run: pytest tenantbook/test_tenants_api.py -v
"""

from tenantbook.db import get_db
from tenantbook.routes_tenants import resolve_tenant_password
from tenantbook.tokens import verify_password


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _password_hash(tenant_id):
    conn = get_db()
    try:
        return conn.execute("SELECT password_hash FROM tenants WHERE id = ?", (tenant_id,)).fetchone()["password_hash"]
    finally:
        conn.close()


def test_password_rules():
    assert resolve_tenant_password("pro", "t1", False, password="x") is None
    assert resolve_tenant_password("pro", "t1", True, password="x", email="a@b.c") == "x"
    assert resolve_tenant_password("pro", "t1", True, use_tenant_id_as_password=True, email="a@b.c") == "t1"
    assert resolve_tenant_password("starter", "t1", True, use_tenant_id_as_password=True, email="a@b.c") == "a@b.c"
    assert resolve_tenant_password("starter", "t1", True) is None


def test_create_tenant_defaults(client, make_org):
    org = make_org(plan="pro")
    r = client.post(
        "/api/tenants",
        json={"first_name": " Jane ", "email": "Jane@Example.COM", "has_portal_access": True,
              "use_tenant_id_as_password": True, "organization_id": 12345},
        headers=_auth(org["token"]),
    )
    assert r.status_code == 201
    tenant = r.json()["data"]
    assert tenant["id"].startswith(f"tenant_{org['id']}_")
    assert tenant["organization_id"] == org["id"]
    assert tenant["email"] == "jane@example.com"
    assert tenant["status"] == "Active"
    assert tenant["password_set"] is True
    assert "password_hash" not in tenant
    assert verify_password(tenant["id"], _password_hash(tenant["id"]))


def test_tenant_without_portal_has_no_password(client, make_org):
    org = make_org(plan="pro")
    r = client.post("/api/tenants", json={"first_name": "Sam", "password": "abc123"}, headers=_auth(org["token"]))
    assert r.json()["data"]["password_set"] is False
    assert _password_hash(r.json()["data"]["id"]) is None


def test_cross_org_tenant_is_not_found(client, make_org, make_tenant):
    org_a, org_b = make_org(), make_org()
    tenant = make_tenant(org_a)
    headers_b = _auth(org_b["token"])

    assert client.get(f"/api/tenants/{tenant['id']}", headers=headers_b).status_code == 404
    assert client.put(f"/api/tenants/{tenant['id']}", json={"phone": "1"}, headers=headers_b).status_code == 404
    assert client.delete(f"/api/tenants/{tenant['id']}", headers=headers_b).status_code == 404
    assert tenant["id"] not in [t["id"] for t in client.get("/api/tenants", headers=headers_b).json()["data"]]


def test_tenant_session_reads_only_itself(client, make_org, make_tenant):
    org = make_org(plan="pro")
    me, other = make_tenant(org), make_tenant(org)

    listed = client.get("/api/tenants", headers=_auth(me["token"])).json()["data"]
    assert [t["id"] for t in listed] == [me["id"]]
    assert client.get(f"/api/tenants/{me['id']}", headers=_auth(me["token"])).status_code == 200
    assert client.get(f"/api/tenants/{other['id']}", headers=_auth(me["token"])).status_code == 403
    assert client.post("/api/tenants", json={"first_name": "X"}, headers=_auth(me["token"])).status_code == 403


def test_pagination_and_search(client, make_org):
    org = make_org(plan="pro")
    headers = _auth(org["token"])
    batch = [{"first_name": f"Person{i}", "email": f"p{i}@example.com"} for i in range(5)]
    batch.append({"first_name": "Zed", "last_name": "Quinn", "status": "Pending"})
    assert client.post("/api/tenants/batch", json={"tenants": batch}, headers=headers).status_code == 201

    page = client.get("/api/tenants", params={"page": 2, "limit": 4}, headers=headers).json()
    assert page["pagination"] == {"page": 2, "limit": 4, "total": 6, "totalPages": 2, "hasMore": False}
    assert len(page["data"]) == 2

    unpaged = client.get("/api/tenants", headers=headers).json()
    assert "pagination" not in unpaged
    assert len(unpaged["data"]) == 6

    found = client.get("/api/tenants", params={"search": "zed quinn"}, headers=headers).json()["data"]
    assert [t["first_name"] for t in found] == ["Zed"]
    pending = client.get("/api/tenants", params={"status": "Pending"}, headers=headers).json()["data"]
    assert [t["first_name"] for t in pending] == ["Zed"]


def test_update_portal_access(client, make_org):
    org = make_org(plan="starter")
    headers = _auth(org["token"])
    created = client.post(
        "/api/tenants", json={"first_name": "Lee", "email": "lee@example.com"}, headers=headers
    ).json()["data"]

    granted = client.put(f"/api/tenants/{created['id']}", json={"has_portal_access": True}, headers=headers)
    assert granted.status_code == 200
    assert granted.json()["data"]["password_set"] is True
    assert verify_password("lee@example.com", _password_hash(created["id"]))

    revoked = client.put(f"/api/tenants/{created['id']}", json={"has_portal_access": False}, headers=headers)
    assert revoked.json()["data"]["password_set"] is False
    assert _password_hash(created["id"]) is None


def test_delete_tenant(client, make_org, make_tenant):
    org = make_org()
    tenant = make_tenant(org)
    r = client.delete(f"/api/tenants/{tenant['id']}", headers=_auth(org["token"]))
    assert r.status_code == 200
    assert client.delete(f"/api/tenants/{tenant['id']}", headers=_auth(org["token"])).status_code == 404


def test_unknown_route_returns_json_404(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json() == {"statusCode": 404, "message": "Route not found", "path": "/api/does-not-exist"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    body = client.get("/api/health").json()
    assert body["database"] == {"status": "ok"}
    assert body["redis"] == {"status": "ok"}


def test_tenant_locations(client, make_org, make_tenant):
    org = make_org(plan="pro")
    headers = _auth(org["token"])
    building = client.post("/api/buildings", json={"name": "Elm Court"}, headers=headers).json()["data"]
    floor = client.post("/api/floors", json={"building_id": building["id"], "floor_number": 3}, headers=headers).json()["data"]
    suite = client.post(
        "/api/suites", json={"floor_id": floor["id"], "building_id": building["id"], "suite_number": "301"}, headers=headers
    ).json()["data"]
    tenant = client.post(
        "/api/tenants",
        json={"first_name": "Mara", "building_id": building["id"], "floor_id": floor["id"], "suite_id": suite["id"]},
        headers=headers,
    ).json()["data"]
    client.post("/api/leases", json={"tenant_id": tenant["id"], "lease_start": "2023-01-01", "lease_end": "2023-12-31"},
                headers=headers)
    client.post("/api/leases", json={"tenant_id": tenant["id"], "lease_start": "2024-01-01", "lease_end": "2024-12-31"},
                headers=headers)

    r = client.get(f"/api/tenants/{tenant['id']}/locations", headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["building"]["name"] == "Elm Court"
    assert data["floor"]["floor_number"] == 3
    assert data["suite"]["name"] == "301"
    assert data["lease"]["lease_end"] == "2024-12-31"

    other_tenant = make_tenant(org)
    assert client.get(f"/api/tenants/{tenant['id']}/locations", headers=_auth(other_tenant["token"])).status_code == 403
    assert client.get(f"/api/tenants/{tenant['id']}/locations", headers=_auth(make_org()["token"])).status_code == 404

    bare = client.get(f"/api/tenants/{other_tenant['id']}/locations", headers=_auth(other_tenant["token"])).json()["data"]
    assert bare == {"building": None, "floor": None, "suite": None, "lease": None}


def test_tenant_sets_own_password(client, make_org, make_tenant):
    org = make_org(plan="pro")
    tenant = make_tenant(org, password="firstpass")
    headers = _auth(tenant["token"])

    wrong = client.post("/api/tenant/set-password", json={"currentPassword": "nope", "newPassword": "second1"}, headers=headers)
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Current password is incorrect"

    ok = client.post("/api/tenant/set-password", json={"currentPassword": "firstpass", "newPassword": "second1"}, headers=headers)
    assert ok.status_code == 200
    assert verify_password("second1", _password_hash(tenant["id"]))
    login = client.post("/api/auth/login", json={"email": tenant["email"], "password": "second1"})
    assert login.status_code == 200

    admin = client.post("/api/tenant/set-password", json={"newPassword": "whatever"}, headers=_auth(org["token"]))
    assert admin.status_code == 403


def test_admin_resets_tenant_password(client, make_org, make_tenant):
    org = make_org(plan="pro")
    tenant = make_tenant(org, password="forgotten")
    headers = _auth(org["token"])
    url = f"/api/tenant/admin/reset-tenant-password/{tenant['id']}"

    assert client.post(url, json={}, headers=headers).status_code == 400
    assert client.post(url, json={"temporaryPassword": "temp123"}, headers=_auth(tenant["token"])).status_code == 403
    assert client.post(url, json={"temporaryPassword": "temp123"}, headers=_auth(make_org()["token"])).status_code == 404

    r = client.post(url, json={"temporaryPassword": "temp123"}, headers=headers)
    assert r.status_code == 200
    conn = get_db()
    try:
        row = conn.execute("SELECT password_set FROM tenants WHERE id = ?", (tenant["id"],)).fetchone()
    finally:
        conn.close()
    assert row["password_set"] == 0
    assert client.post("/api/auth/login", json={"email": tenant["email"], "password": "temp123"}).status_code == 200

    # Temporary password can be replaced without knowing it
    changed = client.post("/api/tenant/set-password", json={"newPassword": "mine456"}, headers=_auth(tenant["token"]))
    assert changed.status_code == 200
