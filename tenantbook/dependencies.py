"""
tenantbook/dependencies.py

Reusable FastAPI dependencies for role, membership and quota enforcement.
"""

from __future__ import annotations

import sqlite3
from typing import Callable

from fastapi import Depends, HTTPException, Response

from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.config import IS_DEV
from tenantbook.db import get_db
from tenantbook.models import ADMIN_ROLES, UserRole
from tenantbook.plans import QuotaExceededError, TenantQuota, enforce_tenant_quota, tenant_directory_enabled

QUOTA_HEADER = "X-Tenant-Quota-Remaining"


def require_admin(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
    """
    Allow admin and clientadmin roles only.

    Usage in routes:
        @router.post("", dependencies=[Depends(require_admin)])
    """
    if ctx.role not in ADMIN_ROLES:
        if IS_DEV:
            print(f"[AUTHZ] Admin required: role={ctx.role}, user_key={ctx.user_key}")
        raise HTTPException(status_code=403, detail="Admin access required")
    return ctx


def require_roles(*roles: str) -> Callable:
    """
    Dependency factory allowing only the given roles.

    Args:
        roles: Accepted role strings (e.g. "admin", "tenant")

    Raises:
        HTTPException(403): If the session role is not listed
    """
    allowed = {str(r.value if isinstance(r, UserRole) else r) for r in roles}

    def _check_role(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
        if ctx.role not in allowed:
            if IS_DEV:
                print(f"[AUTHZ] Role denied: role={ctx.role}, allowed={sorted(allowed)}")
            raise HTTPException(status_code=403, detail="Insufficient role")
        return ctx

    return _check_role


def require_tenant_portal(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
    """
    Portal-only endpoints: admins pass; tenants need portal access on a plan
    with the tenant directory enabled.
    """
    if ctx.is_admin:
        return ctx
    if not ctx.is_tenant or not ctx.tenant_id:
        raise HTTPException(status_code=403, detail="Tenant access required")

    conn = get_db()
    try:
        if not tenant_directory_enabled(conn, ctx.plan):
            print(f"[AUTHZ] Tenant directory disabled: organization_id={ctx.organization_id}, plan={ctx.plan}")
            raise HTTPException(status_code=403, detail="Tenant portal is not enabled for this organization")
        row = conn.execute(
            "SELECT has_portal_access FROM tenants WHERE id = ? AND organization_id = ?",
            (ctx.tenant_id, ctx.organization_id),
        ).fetchone()
    finally:
        conn.close()

    if not row or not row["has_portal_access"]:
        raise HTTPException(status_code=403, detail="Tenant portal access disabled")
    return ctx


def require_membership(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
    """
    Staff users must hold an active membership in their organization.
    Admins acting on their own organization and portal tenants pass.
    """
    if ctx.is_admin or ctx.is_tenant:
        return ctx

    conn = get_db()
    try:
        row = conn.execute(
            "SELECT status FROM organization_memberships WHERE user_id = ? AND organization_id = ?",
            (ctx.user_id, ctx.organization_id),
        ).fetchone()
    finally:
        conn.close()

    if not row or row["status"] != "active":
        print(f"[AUTHZ] Membership denied: user_id={ctx.user_id}, organization_id={ctx.organization_id}")
        raise HTTPException(status_code=403, detail="Not a member of this organization")
    return ctx


def check_tenant_quota(
    conn: sqlite3.Connection,
    organization_id: int,
    response: Response,
    adding: int = 1,
) -> TenantQuota:
    """
    Enforce the tenant quota inside a handler and publish the remaining count.

    Raises:
        HTTPException(403): detail={message, quota: {used, limit, remaining}}
    """
    try:
        quota = enforce_tenant_quota(conn, organization_id, adding=adding)
    except QuotaExceededError as e:
        raise HTTPException(
            status_code=403,
            detail={"message": e.message, "quota": e.quota.as_dict()},
            headers={QUOTA_HEADER: e.quota.header_value()},
        )
    response.headers[QUOTA_HEADER] = quota.header_value()
    return quota


def tenant_quota_guard(
    response: Response,
    ctx: AuthContext = Depends(require_admin),
) -> AuthContext:
    """Dependency form of check_tenant_quota for single-tenant creation."""
    conn = get_db()
    try:
        check_tenant_quota(conn, ctx.organization_id, response)
    finally:
        conn.close()
    return ctx
