"""
Property records: suite matching, duplicate detection and tenant visibility.

Run: pytest tenantbook/test_records.py -v
"""

import pytest

from tenantbook.records import build_suite_matches


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_suite_matches_numeric_string():
    assert build_suite_matches("101") == [("name", "101"), ("suite_number", "101"), ("suite_number", 101)]


def test_suite_matches_non_numeric():
    assert build_suite_matches("A-1") == [("name", "A-1"), ("suite_number", "A-1")]


def test_suite_matches_number_input():
    matches = build_suite_matches(202)
    assert ("suite_number", "202") in matches
    assert ("suite_number", 202) in matches


def test_suite_matches_trims_and_ignores_infinity():
    assert build_suite_matches(" 7 ")[0] == ("name", "7")
    assert build_suite_matches("inf") == [("name", "inf"), ("suite_number", "inf")]


@pytest.fixture
def floor(client, make_org):
    org = make_org(plan="pro")
    b = client.post("/api/buildings", json={"name": "Tower One"}, headers=_auth(org["token"]))
    assert b.status_code == 201
    building_id = b.json()["data"]["id"]
    f = client.post("/api/floors", json={"building_id": building_id, "floor_number": 1}, headers=_auth(org["token"]))
    assert f.status_code == 201
    return {"org": org, "building_id": building_id, "floor_id": f.json()["data"]["id"]}


def test_building_gets_class_name_and_envelope(client, make_org):
    org = make_org()
    r = client.post("/api/buildings", json={"name": "Annex", "organization_id": 999}, headers=_auth(org["token"]))
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "Success"
    assert body["statusCode"] == 201
    assert body["data"]["class_name"] == "building"
    # Client-supplied organization is ignored
    assert body["data"]["organization_id"] == org["id"]


def test_duplicate_building_is_conflict(client, make_org):
    org = make_org()
    client.post("/api/buildings", json={"name": "Dup Tower"}, headers=_auth(org["token"]))
    r = client.post("/api/buildings", json={"name": "  Dup Tower "}, headers=_auth(org["token"]))
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "duplicate_building"


def test_duplicate_floor_is_conflict(client, floor):
    token = floor["org"]["token"]
    r = client.post("/api/floors", json={"building_id": floor["building_id"], "floor_number": 1}, headers=_auth(token))
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["error"] == "duplicate_floor"
    assert detail["conflict"]["id"] == floor["floor_id"]
    assert "suggestion" in detail


def test_suite_requires_floor(client, make_org):
    org = make_org()
    r = client.post("/api/suites", json={"suite_number": "101"}, headers=_auth(org["token"]))
    assert r.status_code == 400
    assert r.json()["detail"] == "floor_id is required when creating a suite"


def test_suite_name_defaults_to_number(client, floor):
    r = client.post(
        "/api/suites",
        json={"floor_id": floor["floor_id"], "suite_number": "305"},
        headers=_auth(floor["org"]["token"]),
    )
    assert r.status_code == 201
    assert r.json()["data"]["name"] == "305"
    assert r.json()["data"]["class_name"] == "suite"


def test_duplicate_suite_matches_numeric_and_text(client, floor):
    token = floor["org"]["token"]
    first = client.post("/api/suites", json={"floor_id": floor["floor_id"], "suite_number": "101"}, headers=_auth(token))
    assert first.status_code == 201
    second = client.post("/api/suites", json={"floor_id": floor["floor_id"], "suite_number": 101}, headers=_auth(token))
    assert second.status_code == 409
    assert second.json()["detail"]["error"] == "duplicate_suite"


def test_update_excludes_self_from_duplicate_check(client, floor):
    token = floor["org"]["token"]
    created = client.post("/api/suites", json={"floor_id": floor["floor_id"], "suite_number": "B-2"}, headers=_auth(token))
    suite_id = created.json()["data"]["id"]
    r = client.put(f"/api/suites/{suite_id}", json={"suite_number": "B-2", "rent": 1200}, headers=_auth(token))
    assert r.status_code == 200
    assert r.json()["data"]["rent"] == 1200


def test_cross_org_record_is_not_found(client, make_org):
    org_a, org_b = make_org(), make_org()
    created = client.post("/api/buildings", json={"name": "Private"}, headers=_auth(org_a["token"]))
    building_id = created.json()["data"]["id"]

    assert client.get(f"/api/buildings/{building_id}", headers=_auth(org_b["token"])).status_code == 404
    assert client.put(f"/api/buildings/{building_id}", json={"name": "x"}, headers=_auth(org_b["token"])).status_code == 404
    assert client.delete(f"/api/buildings/{building_id}", headers=_auth(org_b["token"])).status_code == 404
    names = [b["name"] for b in client.get("/api/buildings", headers=_auth(org_b["token"])).json()["data"]]
    assert "Private" not in names


def test_foreign_id_in_body_is_ignored_on_create(client, make_org):
    org_a, org_b = make_org(), make_org()
    theirs = client.post("/api/buildings", json={"name": "Harbor View"}, headers=_auth(org_a["token"])).json()["data"]

    r = client.post("/api/buildings", json={"id": theirs["id"], "name": "Hilltop"}, headers=_auth(org_b["token"]))
    assert r.status_code == 201
    assert r.json()["data"]["id"] != theirs["id"]
    assert client.get(f"/api/buildings/{theirs['id']}", headers=_auth(org_a["token"])).json()["data"]["name"] == "Harbor View"


def test_tenant_sees_only_own_building(client, make_org, make_tenant):
    from tenantbook.db import get_db

    org = make_org(plan="pro")
    mine = client.post("/api/buildings", json={"name": "Mine"}, headers=_auth(org["token"])).json()["data"]
    client.post("/api/buildings", json={"name": "Other"}, headers=_auth(org["token"]))
    tenant = make_tenant(org)
    conn = get_db()
    conn.execute("UPDATE tenants SET building_id = ? WHERE id = ?", (mine["id"], tenant["id"]))
    conn.commit()
    conn.close()

    r = client.get("/api/buildings", headers=_auth(tenant["token"]))
    assert r.status_code == 200
    assert [b["name"] for b in r.json()["data"]] == ["Mine"]


def test_tenant_cannot_create_buildings(client, make_org, make_tenant):
    org = make_org(plan="pro")
    tenant = make_tenant(org)
    r = client.post("/api/buildings", json={"name": "Nope"}, headers=_auth(tenant["token"]))
    assert r.status_code == 403


def test_public_contact_message_and_admin_listing(client, make_org):
    org = make_org()
    r = client.post(
        "/api/contact_messages",
        json={"name": "Visitor", "email": "v@example.com", "message": "Hello", "organization_id": org["id"]},
    )
    assert r.status_code == 201
    listed = client.get("/api/contact_messages", headers=_auth(org["token"])).json()["data"]
    assert any(m["message"] == "Hello" for m in listed)
    assert client.get("/api/contact_messages").status_code == 401


def test_contact_message_for_unknown_organization_is_rejected(client):
    r = client.post("/api/contact_messages", json={"message": "Hi", "organization_id": 99999999})
    assert r.status_code == 400
    assert r.json()["detail"] == "Unknown organization"
