"""
tenantbook/routes_users.py

Staff user management inside an organization.

Security guarantees:
- Only admin roles list, create and delete users
- A staff user may read and edit only itself, and never its own role or status
- Only a platform admin can grant the admin role
- Deleting is a soft delete that also deactivates the membership
"""

from __future__ import annotations

import math
import sqlite3
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.config import IS_DEV
from tenantbook.db import get_db, now_iso, row_to_dict
from tenantbook.dependencies import require_admin
from tenantbook.models import ResourceType, UserRole
from tenantbook.org_scope import parse_id
from tenantbook.schemas import UserCreateRequest, UserUpdateRequest, wrap_success
from tenantbook.tokens import hash_password

router = APIRouter(
    prefix="/api/users",
    tags=["users"],
)

USER_COLUMNS = (
    "u.id, u.username, u.email, u.role, u.plan, u.organization_id, u.tenant_id, "
    "u.created_at, u.updated_at, m.status AS membership_status"
)
NOT_FOUND = "User not found"


def _fetch_user(conn: sqlite3.Connection, user_id: Any, organization_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        f"""
        SELECT {USER_COLUMNS}
        FROM users u
        LEFT JOIN organization_memberships m ON m.user_id = u.id AND m.organization_id = u.organization_id
        WHERE u.id = ? AND u.organization_id = ? AND COALESCE(u.is_deleted, 0) = 0
        """,
        (parse_id(user_id), organization_id),
    ).fetchone()
    return row_to_dict(row) if row else None


def _require_user(conn: sqlite3.Connection, user_id: Any, ctx: AuthContext) -> Dict[str, Any]:
    user = _fetch_user(conn, user_id, ctx.organization_id)
    if user is None:
        print(f"[SECURITY] User lookup denied: user_id={user_id}, organization_id={ctx.organization_id}")
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return user


def _check_role_grant(ctx: AuthContext, role: Optional[str]) -> None:
    if role == UserRole.admin.value and ctx.role != UserRole.admin.value:
        raise HTTPException(status_code=403, detail="Only an admin can grant the admin role")


def _identity_taken(conn: sqlite3.Connection, email: Optional[str], username: Optional[str], exclude_id: Any = None) -> bool:
    values = [v.strip().lower() for v in (email, username) if v]
    for value in values:
        row = conn.execute(
            "SELECT id FROM users WHERE (LOWER(email) = ? OR LOWER(username) = ?) AND id IS NOT ?",
            (value, value, exclude_id),
        ).fetchone()
        if row:
            return True
    return False


@router.get("")
def list_users(
    role: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    clauses: List[str] = ["u.organization_id = ?", "COALESCE(u.is_deleted, 0) = 0"]
    params: List[Any] = [ctx.organization_id]
    if role:
        clauses.append("u.role = ?")
        params.append(role)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        clauses.append("(LOWER(u.username) LIKE ? OR LOWER(u.email) LIKE ?)")
        params.extend([pattern, pattern])
    where = " AND ".join(clauses)

    conn = get_db()
    try:
        total = conn.execute(f"SELECT COUNT(*) AS n FROM users u WHERE {where}", params).fetchone()["n"]
        rows = conn.execute(
            f"""
            SELECT {USER_COLUMNS}
            FROM users u
            LEFT JOIN organization_memberships m ON m.user_id = u.id AND m.organization_id = u.organization_id
            WHERE {where}
            ORDER BY u.id
            LIMIT ? OFFSET ?
            """,
            (*params, limit, (page - 1) * limit),
        ).fetchall()
    finally:
        conn.close()

    return wrap_success(200, {
        "data": [row_to_dict(r) for r in rows],
        "totalCount": total,
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
    })


@router.get("/{user_id}")
def get_user(user_id: str, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    if not ctx.is_admin and str(ctx.user_id) != str(user_id):
        raise HTTPException(status_code=403, detail="Admin access required")
    conn = get_db()
    try:
        user = _require_user(conn, user_id, ctx)
    finally:
        conn.close()
    return wrap_success(200, user)


@router.post("", status_code=201)
def create_user(req: UserCreateRequest, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    """
    Add a staff user to the session's organization with an active membership.

    Raises:
        HTTPException(403): Granting admin without being admin
        HTTPException(409): Email or username already taken
    """
    _check_role_grant(ctx, req.role)
    conn = get_db()
    try:
        if _identity_taken(conn, req.email, req.username):
            raise HTTPException(status_code=409, detail="User already exists")

        now = now_iso()
        cur = conn.execute(
            """
            INSERT INTO users (username, email, password_hash, role, plan, organization_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (req.username.strip(), req.email, hash_password(req.password), req.role, ctx.plan,
             ctx.organization_id, now, now),
        )
        user_id = cur.lastrowid
        conn.execute(
            "INSERT INTO organization_memberships (user_id, organization_id, role, status, created_at) "
            "VALUES (?, ?, ?, 'active', ?)",
            (user_id, ctx.organization_id, req.role, now),
        )
        conn.commit()
        user = _fetch_user(conn, user_id, ctx.organization_id)
        log_activity(
            conn, ctx, request, "CREATE", ResourceType.user, f"Created user {req.username}",
            resource_id=user_id, body=req.dict(),
        )
    finally:
        conn.close()

    print(f"[USERS] Created user_id={user_id}, role={req.role}, organization_id={ctx.organization_id}")
    return wrap_success(201, user)


@router.put("/{user_id}")
def update_user(
    user_id: str,
    req: UserUpdateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_auth_context),
) -> Dict[str, Any]:
    """
    Admins edit any user of the organization; staff edit their own
    username, email and password.
    """
    is_self = str(ctx.user_id) == str(user_id)
    if not ctx.is_admin and not is_self:
        raise HTTPException(status_code=403, detail="Admin access required")
    changes = req.dict(exclude_unset=True)
    if not ctx.is_admin and ("role" in changes or "status" in changes):
        raise HTTPException(status_code=403, detail="Only admins can change role or status")
    _check_role_grant(ctx, changes.get("role"))

    conn = get_db()
    try:
        existing = _require_user(conn, user_id, ctx)
        if _identity_taken(conn, changes.get("email"), changes.get("username"), exclude_id=existing["id"]):
            raise HTTPException(status_code=409, detail="User already exists")

        updates: Dict[str, Any] = {}
        for field in ("username", "email", "role"):
            if changes.get(field) is not None:
                updates[field] = changes[field]
        if changes.get("password"):
            updates["password_hash"] = hash_password(changes["password"])
        now = now_iso()
        if updates:
            updates["updated_at"] = now
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE users SET {assignments} WHERE id = ? AND organization_id = ?",
                (*updates.values(), existing["id"], ctx.organization_id),
            )

        membership: Dict[str, Any] = {}
        if changes.get("role") is not None:
            membership["role"] = changes["role"]
        if changes.get("status") is not None:
            membership["status"] = changes["status"]
        if membership:
            assignments = ", ".join(f"{column} = ?" for column in membership)
            conn.execute(
                f"UPDATE organization_memberships SET {assignments} WHERE user_id = ? AND organization_id = ?",
                (*membership.values(), existing["id"], ctx.organization_id),
            )
        conn.commit()

        user = _fetch_user(conn, existing["id"], ctx.organization_id)
        log_activity(
            conn, ctx, request, "UPDATE", ResourceType.user, "Updated user",
            resource_id=existing["id"], body=changes,
        )
    finally:
        conn.close()

    if IS_DEV:
        print(f"[USERS] Updated user_id={existing['id']}, fields={sorted(changes)}")
    return wrap_success(200, user)


@router.delete("/{user_id}")
def delete_user(user_id: str, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    """
    Raises:
        HTTPException(400): Deleting your own account
        HTTPException(404): Unknown id or another organization's user
    """
    if str(ctx.user_id) == str(user_id):
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    conn = get_db()
    try:
        existing = _require_user(conn, user_id, ctx)
        now = now_iso()
        conn.execute(
            "UPDATE users SET is_deleted = 1, updated_at = ? WHERE id = ? AND organization_id = ?",
            (now, existing["id"], ctx.organization_id),
        )
        conn.execute(
            "UPDATE organization_memberships SET status = 'inactive' WHERE user_id = ? AND organization_id = ?",
            (existing["id"], ctx.organization_id),
        )
        conn.commit()
        log_activity(conn, ctx, request, "DELETE", ResourceType.user, "Deleted user", resource_id=existing["id"])
    finally:
        conn.close()

    print(f"[USERS] Soft-deleted user_id={existing['id']}, organization_id={ctx.organization_id}")
    return wrap_success(200, {"id": existing["id"], "deleted": True})
