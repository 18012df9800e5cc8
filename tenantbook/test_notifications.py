"""
Notification recipients, visibility, read markers and published events.

Run: pytest tenantbook/test_notifications.py -v
"""

import json

from tenantbook.auth_context import AuthContext
from tenantbook.db import get_db
from tenantbook.notifications import ALL_RECIPIENTS, is_visible, resolve_recipients


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _ctx(role, user_id=None, tenant_id=None):
    return AuthContext(
        user_id=user_id,
        tenant_id=tenant_id,
        role=role,
        email="someone@test.com",
        organization_id=1,
        plan="pro",
        token="t",
    )


def _event_types(fake_redis):
    return [json.loads(message)["type"] for _, message in fake_redis.published]


def test_visibility_rules():
    admin = _ctx("clientadmin", user_id=10)
    staff = _ctx("user", user_id=11)
    tenant = _ctx("tenant", tenant_id="tenant_1_a")

    assert is_visible({"recipients": ALL_RECIPIENTS}, tenant)
    assert is_visible({"recipients": None}, staff)

    to_tenant = {"recipients": {"tenant_ids": ["tenant_1_a"]}}
    assert is_visible(to_tenant, tenant)
    assert is_visible(to_tenant, admin)
    assert not is_visible(to_tenant, staff)
    assert not is_visible({"recipients": {"tenant_ids": ["tenant_1_b"]}}, tenant)

    to_users = {"recipients": {"user_ids": [10]}}
    assert is_visible(to_users, admin)
    assert not is_visible(to_users, staff)
    assert not is_visible(to_users, tenant)


def test_resolve_recipients(make_org):
    org = make_org()
    conn = get_db()
    try:
        assert resolve_recipients(conn, org["id"], {"to_tenant_id": "t1"}, "clientadmin") == {"tenant_ids": ["t1"]}
        assert resolve_recipients(conn, org["id"], {"recipients": {"user_ids": [5]}}, "clientadmin") == {"user_ids": [5]}
        assert resolve_recipients(conn, org["id"], {}, "tenant") == {"user_ids": [org["user_id"]]}
        assert resolve_recipients(conn, org["id"], {}, "clientadmin") == ALL_RECIPIENTS
    finally:
        conn.close()


def test_tenant_ticket_notifies_admins(client, make_org, make_tenant, fake_redis):
    org = make_org(plan="pro")
    tenant = make_tenant(org)

    r = client.post("/api/tickets", json={"title": "Leaky faucet"}, headers=_auth(tenant["token"]))
    assert r.status_code == 201
    assert r.json()["data"]["tenant_id"] == tenant["id"]
    assert "notification.created" in _event_types(fake_redis)

    admin_feed = client.get("/api/notifications", headers=_auth(org["token"])).json()["data"]
    assert admin_feed[0]["title"] == "New ticket: Leaky faucet"
    assert admin_feed[0]["is_read"] is False

    # The creator's copy is already read
    tenant_count = client.get("/api/notifications/unread-count", headers=_auth(tenant["token"])).json()
    assert tenant_count["total"] == 0


def test_creator_copy_is_read_and_other_org_isolated(client, make_org, fake_redis):
    org = make_org(plan="pro")
    headers = _auth(org["token"])
    for title in ("One", "Two"):
        client.post("/api/announcements", json={"title": title, "body": "x"}, headers=headers)

    other = make_org(plan="pro")
    other_headers = _auth(other["token"])
    feed = client.get("/api/notifications", headers=headers).json()["data"]
    assert {n["title"] for n in feed} >= {"One", "Two"}
    assert all(n["is_read"] for n in feed)

    # Another organization cannot see or mark them
    assert client.get("/api/notifications", headers=other_headers).json()["data"] == []
    assert client.post(f"/api/notifications/{feed[0]['id']}/read", headers=other_headers).status_code == 404


def test_admin_message_to_tenant(client, make_org, make_tenant, fake_redis):
    org = make_org(plan="pro")
    tenant_a, tenant_b = make_tenant(org), make_tenant(org)

    r = client.post(
        "/api/messages",
        json={"subject": "Rent reminder", "body": "Due Friday", "to_tenant_id": tenant_a["id"]},
        headers=_auth(org["token"]),
    )
    assert r.status_code == 201

    count_a = client.get("/api/notifications/unread-count", headers=_auth(tenant_a["token"])).json()
    assert count_a == {"total": 1, "byType": {"message": 1}}
    assert client.get("/api/notifications/unread-count", headers=_auth(tenant_b["token"])).json()["total"] == 0

    feed = client.get("/api/notifications", headers=_auth(tenant_a["token"])).json()["data"]
    read = client.post(f"/api/notifications/{feed[0]['id']}/read", headers=_auth(tenant_a["token"]))
    assert read.status_code == 200
    assert _event_types(fake_redis)[-1] == "notification.read"
    assert client.get("/api/notifications/unread-count", headers=_auth(tenant_a["token"])).json()["total"] == 0

    # tenant_b is not a recipient
    assert client.post(f"/api/notifications/{feed[0]['id']}/read", headers=_auth(tenant_b["token"])).status_code == 404


def test_mark_all_read_publishes_bulk_event(client, make_org, make_tenant, fake_redis):
    org = make_org(plan="pro")
    tenant = make_tenant(org)
    for title in ("A", "B", "C"):
        client.post("/api/messages", json={"subject": title, "body": "hi"}, headers=_auth(tenant["token"]))

    r = client.post("/api/notifications/mark-all-read", headers=_auth(org["token"]))
    assert r.json() == {"ok": True, "count": 3}
    assert _event_types(fake_redis)[-1] == "notification.read_bulk"
    assert client.get("/api/notifications/unread-count", headers=_auth(org["token"])).json()["total"] == 0

    again = client.post("/api/notifications/mark-all-read", headers=_auth(org["token"]))
    assert again.json() == {"ok": True, "count": 0}
    last = json.loads(fake_redis.published[-1][1])
    assert last["type"] == "notification.read_bulk"
    assert last["record"]["ids"] == []


def test_tenant_message_visibility(client, make_org, make_tenant):
    org = make_org(plan="pro")
    tenant_a, tenant_b = make_tenant(org), make_tenant(org)
    admin_headers = _auth(org["token"])

    client.post("/api/messages", json={"body": "broadcast"}, headers=admin_headers)
    client.post("/api/messages", json={"body": "for b", "to_tenant_id": tenant_b["id"]}, headers=admin_headers)
    sent = client.post(
        "/api/messages", json={"body": "from a", "to_tenant_id": tenant_b["id"]}, headers=_auth(tenant_a["token"])
    )
    # Tenants cannot address other tenants
    assert sent.json()["data"]["to_tenant_id"] is None

    bodies = {m["body"] for m in client.get("/api/messages", headers=_auth(tenant_a["token"])).json()["data"]}
    assert bodies == {"broadcast", "from a"}
