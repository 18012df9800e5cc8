"""
tenantbook/routes_tenants.py

Tenant directory endpoints with plan quota enforcement.

Security guarantees:
- Admin roles manage tenants; a portal tenant can only read itself
- Portal tenants change only their own password; admins reset with a temporary one
- Quota is checked server-side before any insert (single and batch)
- Password hashes never leave the server
"""

from __future__ import annotations

import math
import sqlite3
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.config import IS_DEV
from tenantbook.db import encode_json, get_db, now_iso, row_to_dict
from tenantbook.dependencies import check_tenant_quota, require_admin
from tenantbook.models import ResourceType
from tenantbook.org_scope import require_row_owned, scoped_select
from tenantbook.schemas import (
    TenantBatchRequest,
    TenantCreateRequest,
    TenantPasswordResetRequest,
    TenantSetPasswordRequest,
    TenantUpdateRequest,
    wrap_success,
)
from tenantbook.tokens import hash_password, verify_password

router = APIRouter(
    prefix="/api/tenants",
    tags=["tenants"],
)

HIDDEN_FIELDS = ("password_hash",)

WRITABLE_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "building_id",
    "floor_id",
    "suite_id",
    "lease_start",
    "lease_end",
    "status",
    "rent_due",
    "rent_paid",
    "balance",
    "has_portal_access",
    "tags",
    "notes",
)


def public_tenant(row: Any) -> Dict[str, Any]:
    data = row_to_dict(row)
    for key in HIDDEN_FIELDS:
        data.pop(key, None)
    return data


def new_tenant_id(conn: sqlite3.Connection, organization_id: int) -> str:
    """tenant_{org}_{epoch_ms}, suffixed when two tenants land in the same millisecond."""
    base = f"tenant_{organization_id}_{int(time.time() * 1000)}"
    candidate, n = base, 1
    while conn.execute("SELECT 1 FROM tenants WHERE id = ?", (candidate,)).fetchone():
        candidate = f"{base}_{n}"
        n += 1
    return candidate


def resolve_tenant_password(
    plan: str,
    tenant_id: str,
    has_portal_access: bool,
    password: Optional[str] = None,
    use_tenant_id_as_password: bool = False,
    email: Optional[str] = None,
) -> Optional[str]:
    """
    Plain-text portal password for a tenant, or None.

    Order: explicit password, the tenant id (pro plan opt-in), the email.
    Tenants without portal access never keep a password.
    """
    if not has_portal_access:
        return None
    if password:
        return password
    if plan == "pro" and use_tenant_id_as_password:
        return tenant_id
    return email or None


def _insert_tenant(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    req: TenantCreateRequest,
) -> Dict[str, Any]:
    """Insert one tenant (caller commits)."""
    if req.id:
        if conn.execute("SELECT 1 FROM tenants WHERE id = ?", (req.id,)).fetchone():
            raise HTTPException(status_code=409, detail=f"Tenant id {req.id} already exists")
        tenant_id = req.id
    else:
        tenant_id = new_tenant_id(conn, ctx.organization_id)

    password = resolve_tenant_password(
        ctx.plan,
        tenant_id,
        req.has_portal_access,
        password=req.password,
        use_tenant_id_as_password=req.use_tenant_id_as_password,
        email=req.email,
    )
    now = now_iso()
    conn.execute(
        """
        INSERT INTO tenants (
            id, organization_id, first_name, last_name, email, phone,
            building_id, floor_id, suite_id, lease_start, lease_end, status,
            rent_due, rent_paid, balance, has_portal_access, password_hash, password_set,
            tags, notes, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            tenant_id,
            ctx.organization_id,
            req.first_name,
            req.last_name,
            req.email,
            req.phone,
            req.building_id,
            req.floor_id,
            req.suite_id,
            req.lease_start,
            req.lease_end,
            req.status,
            req.rent_due or 0,
            req.rent_paid or 0,
            req.balance or 0,
            int(req.has_portal_access),
            hash_password(password) if password else None,
            int(bool(password)),
            encode_json(req.tags),
            req.notes,
            now,
            now,
        ),
    )
    return {"id": tenant_id}


@router.get("")
def list_tenants(
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    ctx: AuthContext = Depends(require_auth_context),
) -> Dict[str, Any]:
    """
    List tenants of the session's organization.

    Pagination is opt-in: with page or limit the response carries a
    pagination block, otherwise all matches are returned.
    """
    if ctx.is_tenant:
        conn = get_db()
        try:
            rows = scoped_select(conn, "tenants", ctx.organization_id, where="id = ?", params=(ctx.tenant_id,))
        finally:
            conn.close()
        return {"data": [public_tenant(r) for r in rows]}
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    clauses: List[str] = []
    params: List[Any] = []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        clauses.append(
            "(LOWER(first_name) LIKE ? OR LOWER(last_name) LIKE ? OR LOWER(email) LIKE ? "
            "OR LOWER(COALESCE(first_name, '') || ' ' || COALESCE(last_name, '')) LIKE ?)"
        )
        params.extend([pattern] * 4)
    where = " AND ".join(clauses)

    conn = get_db()
    try:
        if page is None and limit is None:
            rows = scoped_select(conn, "tenants", ctx.organization_id, where=where, params=tuple(params),
                                 order_by="created_at DESC")
            return {"data": [public_tenant(r) for r in rows]}

        page = page or 1
        limit = limit or 50
        count_sql = "SELECT COUNT(*) AS n FROM tenants WHERE organization_id = ?" + (f" AND ({where})" if where else "")
        total = conn.execute(count_sql, (ctx.organization_id, *params)).fetchone()["n"]
        rows = scoped_select(
            conn, "tenants", ctx.organization_id, where=where, params=tuple(params),
            order_by="created_at DESC", limit=limit, offset=(page - 1) * limit,
        )
    finally:
        conn.close()

    total_pages = math.ceil(total / limit) if total else 0
    return {
        "data": [public_tenant(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasMore": page < total_pages,
        },
    }


@router.get("/{tenant_id}")
def get_tenant(tenant_id: str, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    """
    Raises:
        HTTPException(403): Portal tenant asking for someone else
        HTTPException(404): Unknown id or another organization's tenant
    """
    if ctx.is_tenant and ctx.tenant_id != tenant_id:
        raise HTTPException(status_code=403, detail="Tenants may only view their own record")
    if not ctx.is_tenant and not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    conn = get_db()
    try:
        row = require_row_owned(conn, "tenants", tenant_id, ctx.organization_id)
    finally:
        conn.close()
    return wrap_success(200, public_tenant(row))


@router.get("/{tenant_id}/locations")
def get_tenant_locations(tenant_id: str, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    """
    Building, floor and suite a tenant references, plus its most recent lease
    (latest lease_end, else lease_start). Missing references come back as None.
    """
    if ctx.is_tenant and ctx.tenant_id != tenant_id:
        raise HTTPException(status_code=403, detail="Tenants may only view their own record")
    if not ctx.is_tenant and not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    conn = get_db()
    try:
        tenant = require_row_owned(conn, "tenants", tenant_id, ctx.organization_id)

        def _owned(table: str, row_id: Any) -> Optional[Dict[str, Any]]:
            if row_id is None:
                return None
            row = conn.execute(
                f"SELECT * FROM {table} WHERE id = ? AND organization_id = ?",
                (row_id, ctx.organization_id),
            ).fetchone()
            return row_to_dict(row) if row else None

        lease = conn.execute(
            """
            SELECT * FROM leases
            WHERE organization_id = ? AND tenant_id = ?
            ORDER BY COALESCE(lease_end, lease_start, created_at) DESC, id DESC
            LIMIT 1
            """,
            (ctx.organization_id, tenant["id"]),
        ).fetchone()
        locations = {
            "building": _owned("buildings", tenant["building_id"]),
            "floor": _owned("floors", tenant["floor_id"]),
            "suite": _owned("suites", tenant["suite_id"]),
            "lease": row_to_dict(lease) if lease else None,
        }
    finally:
        conn.close()
    return wrap_success(200, locations)


@router.post("", status_code=201)
def create_tenant(
    req: TenantCreateRequest,
    request: Request,
    response: Response,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    """
    Create a tenant within the plan's tenant quota.

    Raises:
        HTTPException(403): Quota exhausted (detail carries the quota)
        HTTPException(409): Client-chosen id already taken
    """
    conn = get_db()
    try:
        check_tenant_quota(conn, ctx.organization_id, response)
        created = _insert_tenant(conn, ctx, req)
        conn.commit()
        row = conn.execute("SELECT * FROM tenants WHERE id = ?", (created["id"],)).fetchone()
        log_activity(
            conn, ctx, request, "CREATE", ResourceType.tenant,
            f"Created tenant {req.first_name} {req.last_name or ''}".strip(),
            resource_id=created["id"], body=req.dict(),
        )
    finally:
        conn.close()

    if IS_DEV:
        print(f"[TENANTS] Created tenant_id={created['id']}, organization_id={ctx.organization_id}")
    return wrap_success(201, public_tenant(row))


@router.post("/batch", status_code=201)
def create_tenants_batch(
    req: TenantBatchRequest,
    request: Request,
    response: Response,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    """Create many tenants at once. The quota is checked for the whole batch before inserting."""
    conn = get_db()
    try:
        check_tenant_quota(conn, ctx.organization_id, response, adding=len(req.tenants))
        ids = []
        try:
            for item in req.tenants:
                ids.append(_insert_tenant(conn, ctx, item)["id"])
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        placeholders = ",".join("?" for _ in ids)
        rows = conn.execute(f"SELECT * FROM tenants WHERE id IN ({placeholders}) ORDER BY created_at", ids).fetchall()
        log_activity(
            conn, ctx, request, "BATCH_CREATE", ResourceType.tenant,
            f"Created {len(ids)} tenants", metadata={"tenant_ids": ids},
        )
    finally:
        conn.close()

    print(f"[TENANTS] Batch created {len(ids)} tenants: organization_id={ctx.organization_id}")
    return {"created": [public_tenant(r) for r in rows], "count": len(ids)}


@router.put("/{tenant_id}")
def update_tenant(
    tenant_id: str,
    req: TenantUpdateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    """
    Partial update. Turning portal access off clears the password; a new
    password (or newly granted access) goes through the same rules as create.
    """
    changes = req.dict(exclude_unset=True)
    conn = get_db()
    try:
        existing = require_row_owned(conn, "tenants", tenant_id, ctx.organization_id)

        updates: Dict[str, Any] = {}
        for field in WRITABLE_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if field == "tags":
                value = encode_json(value)
            elif field == "has_portal_access":
                value = int(bool(value))
            updates[field] = value

        portal = bool(changes.get("has_portal_access", existing["has_portal_access"]))
        if not portal:
            updates["password_hash"] = None
            updates["password_set"] = 0
        elif changes.get("password") or (not existing["password_hash"] and "has_portal_access" in changes):
            password = resolve_tenant_password(
                ctx.plan,
                existing["id"],
                portal,
                password=changes.get("password"),
                use_tenant_id_as_password=bool(changes.get("use_tenant_id_as_password")),
                email=changes.get("email", existing["email"]),
            )
            if password:
                updates["password_hash"] = hash_password(password)
                updates["password_set"] = 1

        if updates:
            updates["updated_at"] = now_iso()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE tenants SET {assignments} WHERE id = ? AND organization_id = ?",
                (*updates.values(), existing["id"], ctx.organization_id),
            )
            conn.commit()

        row = conn.execute("SELECT * FROM tenants WHERE id = ?", (existing["id"],)).fetchone()
        log_activity(
            conn, ctx, request, "UPDATE", ResourceType.tenant, "Updated tenant",
            resource_id=existing["id"], body=changes,
        )
    finally:
        conn.close()
    return wrap_success(200, public_tenant(row))


@router.delete("/{tenant_id}")
def delete_tenant(tenant_id: str, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    conn = get_db()
    try:
        existing = require_row_owned(conn, "tenants", tenant_id, ctx.organization_id)
        conn.execute("DELETE FROM tenants WHERE id = ? AND organization_id = ?", (existing["id"], ctx.organization_id))
        conn.commit()
        log_activity(conn, ctx, request, "DELETE", ResourceType.tenant, "Deleted tenant", resource_id=existing["id"])
    finally:
        conn.close()
    return wrap_success(200, {"id": existing["id"], "deleted": True})


# ---------------------------------------------------------
# Portal passwords
# ---------------------------------------------------------
portal_router = APIRouter(
    prefix="/api/tenant",
    tags=["tenant-portal"],
)


@portal_router.post("/set-password")
def set_own_password(
    req: TenantSetPasswordRequest,
    request: Request,
    ctx: AuthContext = Depends(require_auth_context),
) -> Dict[str, Any]:
    """
    Portal tenant changes its own password. Once a password has been set by
    the tenant, currentPassword must match it.

    Raises:
        HTTPException(400): Wrong current password
        HTTPException(403): Caller is not a portal tenant
    """
    if ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admins should use the admin reset endpoint")
    if not ctx.is_tenant or not ctx.tenant_id:
        raise HTTPException(status_code=403, detail="Forbidden: Tenant access required")

    conn = get_db()
    try:
        tenant = require_row_owned(conn, "tenants", ctx.tenant_id, ctx.organization_id)
        if tenant["password_set"] and tenant["password_hash"]:
            if not verify_password(req.currentPassword or "", tenant["password_hash"]):
                print(f"[TENANTS] Wrong current password: tenant_id={tenant['id']}")
                raise HTTPException(status_code=400, detail="Current password is incorrect")
        conn.execute(
            "UPDATE tenants SET password_hash = ?, password_set = 1, updated_at = ? WHERE id = ? AND organization_id = ?",
            (hash_password(req.newPassword), now_iso(), tenant["id"], ctx.organization_id),
        )
        conn.commit()
        log_activity(
            conn, ctx, request, "PASSWORD_SET", ResourceType.tenant, "Tenant set portal password",
            resource_id=tenant["id"], body=req.dict(),
        )
    finally:
        conn.close()
    return {"message": "Password set successfully"}


@portal_router.post("/admin/reset-tenant-password/{tenant_id}")
def reset_tenant_password(
    tenant_id: str,
    req: TenantPasswordResetRequest,
    request: Request,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    """
    Give a tenant a temporary password. password_set drops to false so the
    tenant can replace it through /set-password without the old one.
    """
    if not req.temporaryPassword:
        raise HTTPException(status_code=400, detail="Temporary password is required")

    conn = get_db()
    try:
        tenant = require_row_owned(conn, "tenants", tenant_id, ctx.organization_id)
        conn.execute(
            "UPDATE tenants SET password_hash = ?, password_set = 0, updated_at = ? WHERE id = ? AND organization_id = ?",
            (hash_password(req.temporaryPassword), now_iso(), tenant["id"], ctx.organization_id),
        )
        conn.commit()
        log_activity(
            conn, ctx, request, "PASSWORD_RESET", ResourceType.tenant, "Admin reset tenant password",
            resource_id=tenant["id"], body=req.dict(),
        )
    finally:
        conn.close()
    print(f"[TENANTS] Password reset by admin: tenant_id={tenant_id}, organization_id={ctx.organization_id}")
    return {"message": "Tenant password reset successfully"}
