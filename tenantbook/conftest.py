"""
Shared pytest fixtures.

The database is pointed at a throwaway file before any tenantbook module
is imported, and Redis is replaced by a small in-memory stand-in so the
blacklist, logout markers and published events can be asserted on.
"""

import os
import tempfile
import uuid

_TMP_DIR = tempfile.mkdtemp(prefix="tenantbook-tests-")
os.environ["DATABASE_PATH"] = os.path.join(_TMP_DIR, "test.db")
os.environ.setdefault("ENV", "dev")
os.environ.pop("REDIS_URL", None)

import pytest
from fastapi.testclient import TestClient

from tenantbook.db import get_db, now_iso
from tenantbook.main import app
from tenantbook.plans import ensure_plan_settings_exist
from tenantbook.redis_client import set_redis
from tenantbook.tokens import create_access_token, hash_password, session_claims


class InMemoryRedis:
    """The subset of redis.Redis used by redis_client (TTL is recorded, not enforced)."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.published = []

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = str(value)
        self.ttls[key] = ex
        return True

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 0


@pytest.fixture(autouse=True)
def fake_redis():
    client = InMemoryRedis()
    set_redis(client)
    yield client
    set_redis(None)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_org():
    """Create an organization with an active clientadmin; returns ids and a token."""

    def _make(plan="starter", role="clientadmin"):
        suffix = uuid.uuid4().hex[:8]
        email = f"admin_{suffix}@test.com"
        conn = get_db()
        try:
            plan = ensure_plan_settings_exist(conn, plan)
            now = now_iso()
            cur = conn.execute(
                "INSERT INTO organizations (name, plan, status, created_at, updated_at) VALUES (?, ?, 'active', ?, ?)",
                (f"Test Org {suffix}", plan, now, now),
            )
            org_id = cur.lastrowid
            cur = conn.execute(
                "INSERT INTO users (username, email, password_hash, role, plan, organization_id, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (f"admin_{suffix}", email, hash_password("secret123"), role, plan, org_id, now, now),
            )
            user_id = cur.lastrowid
            conn.execute(
                "INSERT INTO organization_memberships (user_id, organization_id, role, status, created_at) "
                "VALUES (?, ?, ?, 'active', ?)",
                (user_id, org_id, role, now),
            )
            conn.commit()
        finally:
            conn.close()
        token = create_access_token(session_claims(user_id, email, role, org_id, plan))
        return {"id": org_id, "user_id": user_id, "email": email, "token": token, "plan": plan}

    return _make


@pytest.fixture
def make_staff():
    """Add a staff user (role user) with an active membership to an organization."""

    def _make(org, membership_status="active"):
        suffix = uuid.uuid4().hex[:8]
        email = f"staff_{suffix}@test.com"
        conn = get_db()
        try:
            now = now_iso()
            cur = conn.execute(
                "INSERT INTO users (username, email, password_hash, role, plan, organization_id, created_at, updated_at) "
                "VALUES (?, ?, ?, 'user', ?, ?, ?, ?)",
                (f"staff_{suffix}", email, hash_password("staffpass"), org["plan"], org["id"], now, now),
            )
            user_id = cur.lastrowid
            conn.execute(
                "INSERT INTO organization_memberships (user_id, organization_id, role, status, created_at) "
                "VALUES (?, ?, 'user', ?, ?)",
                (user_id, org["id"], membership_status, now),
            )
            conn.commit()
        finally:
            conn.close()
        token = create_access_token(session_claims(user_id, email, "user", org["id"], org["plan"]))
        return {"user_id": user_id, "email": email, "token": token}

    return _make


@pytest.fixture
def make_tenant():
    """Insert a tenant row directly; returns its id and a portal token."""

    def _make(org, portal=True, password="tenantpass"):
        tenant_id = f"tenant_{org['id']}_{uuid.uuid4().hex[:10]}"
        email = f"{tenant_id}@tenants.test"
        conn = get_db()
        try:
            now = now_iso()
            conn.execute(
                "INSERT INTO tenants (id, organization_id, first_name, last_name, email, status, "
                "has_portal_access, password_hash, password_set, created_at, updated_at) "
                "VALUES (?, ?, 'Test', 'Tenant', ?, 'Active', ?, ?, ?, ?, ?)",
                (tenant_id, org["id"], email, int(portal),
                 hash_password(password) if password else None, int(bool(password)), now, now),
            )
            conn.commit()
        finally:
            conn.close()
        token = create_access_token(
            session_claims(tenant_id, email, "tenant", org["id"], org["plan"], tenant_id=tenant_id)
        )
        return {"id": tenant_id, "email": email, "token": token, "password": password}

    return _make
