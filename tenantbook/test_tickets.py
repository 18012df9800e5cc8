"""
Tickets and comments: tenant ownership and edit restrictions.

Run: pytest tenantbook/test_tickets.py -v
"""

import pytest


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def ticket_setup(client, make_org, make_tenant):
    org = make_org(plan="pro")
    owner, stranger = make_tenant(org), make_tenant(org)
    r = client.post(
        "/api/tickets",
        json={"title": "Broken heater", "tenant_id": stranger["id"], "status": "Closed"},
        headers=_auth(owner["token"]),
    )
    assert r.status_code == 201
    return {"org": org, "owner": owner, "stranger": stranger, "ticket": r.json()["data"]}


def test_tenant_ticket_is_forced_to_own_id_and_open(ticket_setup):
    ticket = ticket_setup["ticket"]
    assert ticket["tenant_id"] == ticket_setup["owner"]["id"]
    assert ticket["status"] == "Open"
    assert ticket["priority"] == "Medium"


def test_other_tenant_cannot_read(client, ticket_setup):
    stranger = ticket_setup["stranger"]
    ticket_id = ticket_setup["ticket"]["id"]
    assert client.get(f"/api/tickets/{ticket_id}", headers=_auth(stranger["token"])).status_code == 403
    assert client.get(f"/api/tickets/{ticket_id}/comments", headers=_auth(stranger["token"])).status_code == 403
    assert client.get("/api/tickets", headers=_auth(stranger["token"])).json()["data"] == []


def test_tenant_edit_rules(client, ticket_setup):
    owner = ticket_setup["owner"]
    admin = ticket_setup["org"]
    ticket_id = ticket_setup["ticket"]["id"]

    ok = client.put(f"/api/tickets/{ticket_id}", json={"description": "Cold all night"}, headers=_auth(owner["token"]))
    assert ok.status_code == 200
    assert ok.json()["data"]["description"] == "Cold all night"

    status_change = client.put(f"/api/tickets/{ticket_id}", json={"status": "Resolved"}, headers=_auth(owner["token"]))
    assert status_change.status_code == 403

    assert client.put(
        f"/api/tickets/{ticket_id}", json={"status": "In Progress"}, headers=_auth(admin["token"])
    ).status_code == 200
    locked = client.put(f"/api/tickets/{ticket_id}", json={"title": "Heater"}, headers=_auth(owner["token"]))
    assert locked.status_code == 403


def test_admin_update_notifies_ticket_tenant(client, ticket_setup):
    owner = ticket_setup["owner"]
    ticket_id = ticket_setup["ticket"]["id"]
    client.put(f"/api/tickets/{ticket_id}", json={"priority": "High"}, headers=_auth(ticket_setup["org"]["token"]))

    feed = client.get("/api/notifications", headers=_auth(owner["token"])).json()["data"]
    assert feed[0]["type"] == "ticket.updated"
    stranger_feed = client.get("/api/notifications", headers=_auth(ticket_setup["stranger"]["token"])).json()["data"]
    assert all(n["type"] != "ticket.updated" for n in stranger_feed)


def test_comments_thread(client, ticket_setup):
    owner = ticket_setup["owner"]
    admin = ticket_setup["org"]
    ticket_id = ticket_setup["ticket"]["id"]

    assert client.post(f"/api/tickets/{ticket_id}/comments", json={"body": "Still broken"},
                       headers=_auth(owner["token"])).status_code == 201
    assert client.post(f"/api/tickets/{ticket_id}/comments", json={"body": "Tech on the way"},
                       headers=_auth(admin["token"])).status_code == 201

    thread = client.get(f"/api/tickets/{ticket_id}/comments", headers=_auth(owner["token"])).json()["data"]
    assert [c["body"] for c in thread] == ["Still broken", "Tech on the way"]
    assert [c["author_role"] for c in thread] == ["tenant", "clientadmin"]


def test_delete_is_admin_only(client, ticket_setup):
    ticket_id = ticket_setup["ticket"]["id"]
    assert client.delete(f"/api/tickets/{ticket_id}", headers=_auth(ticket_setup["owner"]["token"])).status_code == 403
    assert client.delete(f"/api/tickets/{ticket_id}", headers=_auth(ticket_setup["org"]["token"])).status_code == 200
    assert client.get(f"/api/tickets/{ticket_id}", headers=_auth(ticket_setup["org"]["token"])).status_code == 404
