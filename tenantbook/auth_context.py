"""
tenantbook/auth_context.py

Shared authentication context primitives for FastAPI dependency injection.

Contains:
- AuthContext: Immutable organization boundary derived from the session token
- require_auth_context: FastAPI dependency for auth enforcement
- extract_token: Bearer header or `jwt` cookie lookup

This module MUST NOT import tenantbook.main to avoid circular dependencies.
"""

from __future__ import annotations

from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from tenantbook.config import IS_DEV
from tenantbook.db import get_db
from tenantbook.models import ADMIN_ROLES, UserRole
from tenantbook.org_scope import resolve_organization_id_from_user
from tenantbook.plans import get_organization_plan
from tenantbook.redis_client import get_user_logout_ms, is_token_revoked
from tenantbook.tokens import decode_access_token, issued_at_ms

# Cookie fallback means a missing header is not an automatic 403
security = HTTPBearer(auto_error=False)

SESSION_COOKIE = "jwt"


class AuthContext(BaseModel):
    """
    Immutable organization boundary derived from a verified token plus a DB lookup.
    This is the ONLY source of truth for organization_id and identity in protected endpoints.
    Never trust organization_id from request bodies or query params.

    Fields:
        user_id: Staff user id (None for portal tenants)
        tenant_id: Tenant record id for portal tenants
        role: admin / clientadmin / user / tenant
        email: Login email
        organization_id: Owning organization
        plan: Organization plan (normalized)
        token: Raw bearer token (needed for logout)
        issued_at / expires_at: Token iat/exp (epoch seconds)
    """
    user_id: Optional[int] = None
    tenant_id: Optional[str] = None
    role: str
    email: str
    username: Optional[str] = None
    organization_id: int
    plan: str
    token: str
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_tenant(self) -> bool:
        return self.role == UserRole.tenant.value

    @property
    def user_key(self) -> str:
        """Stable string id for per-identity markers (read receipts, logout)."""
        if self.is_tenant and self.tenant_id:
            return f"tenant:{self.tenant_id}"
        return str(self.user_id)

    @property
    def actor_id(self) -> str:
        """Identity recorded as author/creator on rows."""
        if self.is_tenant and self.tenant_id:
            return self.tenant_id
        return str(self.user_id)

    def public_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "role": self.role,
            "email": self.email,
            "username": self.username,
            "organization_id": self.organization_id,
            "plan": self.plan,
            "is_tenant": self.is_tenant,
        }


def session_is_stale(payload: dict) -> bool:
    """True when the token was issued before the identity last logged out."""
    identity = payload.get("id") or payload.get("sub")
    logout_ms = get_user_logout_ms(identity)
    return logout_ms is not None and issued_at_ms(payload) < logout_ms


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE)


def require_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    """
    Auth context dependency for FastAPI routes.

    Process:
    1. Read the token (Bearer header, else `jwt` cookie)
    2. Reject blacklisted tokens (Redis)
    3. Verify JWT signature and expiration
    4. Reject tokens issued before the identity's last logout
    5. Load the user (or portal tenant) record - the DB is the source of truth
    6. Resolve organization and its plan

    Raises:
        HTTPException(401): Missing/revoked token, stale session, unknown identity, portal access revoked
        HTTPException(403): Invalid or expired token
    """
    token = extract_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Access token missing")

    if is_token_revoked(token):
        print("[AUTH] Rejected blacklisted token")
        raise HTTPException(status_code=401, detail="Token revoked")

    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError as e:
        if IS_DEV:
            print(f"[AUTH] Invalid token: {type(e).__name__}")
        raise HTTPException(status_code=403, detail="Forbidden: Invalid token")

    identity = payload.get("id") or payload.get("sub")
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    issued_at = payload.get("iat")
    if session_is_stale(payload):
        print(f"[AUTH] Token issued before logout: identity={identity}")
        raise HTTPException(
            status_code=401,
            detail={"message": "Session expired, please login again", "clearSession": True},
        )

    role = payload.get("role") or UserRole.user.value
    conn = get_db()
    try:
        if role == UserRole.tenant.value and payload.get("tenant_id"):
            row = conn.execute(
                "SELECT id, email, first_name, last_name, organization_id, has_portal_access "
                "FROM tenants WHERE id = ?",
                (payload["tenant_id"],),
            ).fetchone()
            if not row:
                print(f"[AUTH] Tenant not found: tenant_id={payload['tenant_id']}")
                raise HTTPException(status_code=401, detail="User not found")
            if not row["has_portal_access"]:
                print(f"[AUTH] Portal access revoked: tenant_id={row['id']}")
                raise HTTPException(status_code=401, detail="Portal access disabled")
            organization_id = int(row["organization_id"])
            ctx_fields = dict(
                user_id=None,
                tenant_id=row["id"],
                email=row["email"] or payload.get("email", ""),
                username=f"{row['first_name'] or ''} {row['last_name'] or ''}".strip() or None,
            )
        else:
            try:
                user_id = int(identity)
            except (TypeError, ValueError):
                raise HTTPException(status_code=401, detail="Invalid token payload")
            row = conn.execute(
                "SELECT id, username, email, role, organization_id, tenant_id, is_deleted FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
            if not row or row["is_deleted"]:
                print(f"[AUTH] User not found or deleted: user_id={user_id}")
                raise HTTPException(status_code=401, detail="User not found")
            role = row["role"] or UserRole.user.value
            organization_id = row["organization_id"] or resolve_organization_id_from_user(payload)
            ctx_fields = dict(
                user_id=row["id"],
                tenant_id=row["tenant_id"],
                email=row["email"],
                username=row["username"],
            )

        plan = get_organization_plan(conn, organization_id)
    finally:
        conn.close()

    ctx = AuthContext(
        role=role,
        organization_id=organization_id,
        plan=plan,
        token=token,
        issued_at=issued_at,
        expires_at=payload.get("exp"),
        **ctx_fields,
    )
    # Picked up by the error logger
    request.state.user_key = ctx.user_key

    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}, tenant_id={ctx.tenant_id}, "
              f"role={ctx.role}, organization_id={ctx.organization_id}, plan={ctx.plan}")
    return ctx
