"""
Authentication: registration, login, refresh, revocation and password reset.

Run: pytest tenantbook/test_auth.py -v
"""

import time
import uuid

import jwt

from tenantbook.config import ALGORITHM, SECRET_KEY
from tenantbook.db import get_db
from tenantbook.redis_client import logout_marker_key, mark_user_logout, set_redis
from tenantbook.tokens import decode_access_token


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _register(client, **overrides):
    suffix = uuid.uuid4().hex[:8]
    body = {"username": f"owner_{suffix}", "email": f"Owner_{suffix}@Example.com", "password": "hunter22"}
    body.update(overrides)
    return client.post("/api/auth/register", json=body)


def test_register_creates_org_admin_and_membership(client):
    r = _register(client, organization_name="Acme Rentals", plan="Professional")
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["role"] == "clientadmin"
    assert body["user"]["plan"] == "pro"
    assert body["user"]["email"] == body["user"]["email"].lower()
    assert body["refreshToken"]

    claims = decode_access_token(body["token"])
    assert claims["organization_id"] == body["user"]["organization_id"]

    conn = get_db()
    try:
        org = conn.execute("SELECT * FROM organizations WHERE id = ?", (claims["organization_id"],)).fetchone()
        membership = conn.execute(
            "SELECT * FROM organization_memberships WHERE organization_id = ?", (org["id"],)
        ).fetchone()
    finally:
        conn.close()
    assert org["name"] == "Acme Rentals"
    assert org["owner_user_id"] == claims["id"]
    assert membership["status"] == "active"


def test_register_duplicate_email_conflicts(client):
    first = _register(client)
    email = first.json()["user"]["email"]
    again = _register(client, email=email.upper())
    assert again.status_code == 409
    assert again.json()["detail"] == "User already exists"

    taken = client.post("/api/auth/validate-user", json={"email": email})
    assert taken.status_code == 409
    free = client.post("/api/auth/validate-user", json={"email": f"nobody_{uuid.uuid4().hex}@x.com"})
    assert free.json() == {"available": True}


def test_login_by_email_or_username_and_cookie(client, make_org):
    org = make_org()
    r = client.post("/api/auth/login", json={"email": org["email"].upper(), "password": "secret123"})
    assert r.status_code == 200
    assert "jwt" in r.cookies

    username = org["email"].split("@")[0]
    by_name = client.post("/api/auth/login", json={"username": username, "password": "secret123"})
    assert by_name.status_code == 200

    bad = client.post("/api/auth/login", json={"email": org["email"], "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid email or password"

    empty = client.post("/api/auth/login", json={"email": org["email"], "password": ""})
    assert empty.status_code == 400


def test_failed_login_is_audited(client, make_org):
    org = make_org()
    client.post("/api/auth/login", json={"email": org["email"], "password": "wrong"})
    conn = get_db()
    try:
        row = conn.execute(
            "SELECT status, metadata FROM activity_logs WHERE organization_id = ? AND action = 'LOGIN' "
            "ORDER BY id DESC LIMIT 1",
            (org["id"],),
        ).fetchone()
    finally:
        conn.close()
    assert row["status"] == "FAILED"
    assert "wrong" not in row["metadata"]


def test_missing_and_invalid_tokens(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers=_auth("not-a-jwt")).status_code == 403

    expired = jwt.encode(
        {"sub": "1", "id": 1, "iat": int(time.time()) - 7200, "exp": int(time.time()) - 3600},
        SECRET_KEY,
        algorithm=ALGORITHM,
    )
    r = client.get("/api/auth/me", headers=_auth(expired))
    assert r.status_code == 403
    assert r.json()["detail"] == "Forbidden: Invalid token"


def test_me_returns_context_without_token(client, make_org):
    org = make_org()
    r = client.get("/api/auth/me", headers=_auth(org["token"]))
    assert r.status_code == 200
    assert r.json()["organization_id"] == org["id"]
    assert "token" not in r.json()


def test_logout_blacklists_token(client, make_org, fake_redis):
    org = make_org()
    r = client.post("/api/auth/logout", headers=_auth(org["token"]))
    assert r.status_code == 200
    assert r.headers["Clear-Site-Data"] == '"cache", "cookies", "storage"'
    assert fake_redis.store[org["token"]] == "blacklisted"
    assert fake_redis.ttls[org["token"]] >= 1
    assert logout_marker_key(org["user_id"]) in fake_redis.store

    again = client.get("/api/auth/me", headers=_auth(org["token"]))
    assert again.status_code == 401
    assert again.json()["detail"] == "Token revoked"


def test_logout_marker_compares_milliseconds(client, make_org):
    org = make_org()
    issued_ms = decode_access_token(org["token"])["iat_ms"]

    # Logout one millisecond after issue, same wall-clock second
    mark_user_logout(org["user_id"], now_ms=issued_ms + 1)
    r = client.get("/api/auth/me", headers=_auth(org["token"]))
    assert r.status_code == 401
    assert r.json()["detail"] == {"message": "Session expired, please login again", "clearSession": True}

    # A token issued after the logout keeps working
    mark_user_logout(org["user_id"], now_ms=issued_ms - 1)
    assert client.get("/api/auth/me", headers=_auth(org["token"])).status_code == 200


def test_refresh_token_rejected_after_logout(client, make_org):
    org = make_org()
    login = client.post("/api/auth/login", json={"email": org["email"], "password": "secret123"}).json()
    assert client.post("/api/auth/logout", headers=_auth(login["token"])).status_code == 200

    r = client.post("/api/auth/refreshtoken", json={"refreshToken": login["refreshToken"]})
    assert r.status_code == 401


def test_logout_blacklists_refresh_token_from_body(client, make_org, fake_redis):
    org = make_org()
    login = client.post("/api/auth/login", json={"email": org["email"], "password": "secret123"}).json()
    r = client.post(
        "/api/auth/logout", json={"refreshToken": login["refreshToken"]}, headers=_auth(login["token"])
    )
    assert r.status_code == 200
    assert fake_redis.store[login["refreshToken"]] == "blacklisted"

    again = client.post("/api/auth/refreshtoken", json={"refreshToken": login["refreshToken"]})
    assert again.status_code == 401
    assert again.json()["detail"] == "Token revoked"

    # A fresh login is unaffected
    fresh = client.post("/api/auth/login", json={"email": org["email"], "password": "secret123"}).json()
    assert client.get("/api/auth/me", headers=_auth(fresh["token"])).status_code == 200


def test_logout_without_redis_still_succeeds(client, make_org):
    org = make_org()
    set_redis(None)
    r = client.post("/api/auth/logout", headers=_auth(org["token"]))
    assert r.status_code == 200
    # Nothing to revoke against, so the token keeps working
    assert client.get("/api/auth/me", headers=_auth(org["token"])).status_code == 200


def test_refresh_token_rotation(client, make_org):
    org = make_org()
    login = client.post("/api/auth/login", json={"email": org["email"], "password": "secret123"}).json()
    r = client.post("/api/auth/refreshtoken", json={"refreshToken": login["refreshToken"]})
    assert r.status_code == 200
    assert decode_access_token(r.json()["token"])["organization_id"] == org["id"]

    # An access token is not a refresh token
    bad = client.post("/api/auth/refreshtoken", json={"refreshToken": login["token"]})
    assert bad.status_code == 403


def test_deleted_user_is_rejected(client, make_org):
    org = make_org()
    conn = get_db()
    conn.execute("UPDATE users SET is_deleted = 1 WHERE id = ?", (org["user_id"],))
    conn.commit()
    conn.close()
    r = client.get("/api/auth/me", headers=_auth(org["token"]))
    assert r.status_code == 401
    assert r.json()["detail"] == "User not found"


def test_password_reset_flow(client, make_org):
    org = make_org()
    r = client.post("/api/auth/forget-password", json={"email": org["email"]})
    assert r.status_code == 200
    token = r.json()["resetToken"]

    unknown = client.post("/api/auth/forget-password", json={"email": "ghost@nowhere.test"})
    assert unknown.status_code == 200
    assert "resetToken" not in unknown.json()

    assert client.post("/api/auth/reset-password", json={"token": token, "password": "newpass1"}).status_code == 200
    assert client.post("/api/auth/reset-password", json={"token": token, "password": "newpass2"}).status_code == 400

    login = client.post("/api/auth/login", json={"email": org["email"], "password": "newpass1"})
    assert login.status_code == 200


def test_portal_tenant_first_login_sets_password(client, make_org, make_tenant):
    org = make_org(plan="pro")
    tenant = make_tenant(org, password=None)

    first = client.post("/api/auth/login", json={"email": tenant["email"], "password": "chosen1"})
    assert first.status_code == 200
    assert first.json()["user"]["role"] == "tenant"
    assert first.json()["user"]["tenant_id"] == tenant["id"]

    wrong = client.post("/api/auth/login", json={"email": tenant["email"], "password": "other"})
    assert wrong.status_code == 401


def test_portal_login_refused_on_free_plan(client, make_org, make_tenant):
    org = make_org(plan="free")
    tenant = make_tenant(org)
    r = client.post("/api/auth/login", json={"email": tenant["email"], "password": tenant["password"]})
    assert r.status_code == 401


def test_revoked_portal_access_blocks_tenant_token(client, make_org, make_tenant):
    org = make_org(plan="pro")
    tenant = make_tenant(org)
    conn = get_db()
    conn.execute("UPDATE tenants SET has_portal_access = 0 WHERE id = ?", (tenant["id"],))
    conn.commit()
    conn.close()
    r = client.get("/api/auth/me", headers=_auth(tenant["token"]))
    assert r.status_code == 401
    assert r.json()["detail"] == "Portal access disabled"
