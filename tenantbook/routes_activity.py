"""
tenantbook/routes_activity.py

Audit trail and error log endpoints for organization admins.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from tenantbook.auth_context import AuthContext
from tenantbook.db import get_db, row_to_dict
from tenantbook.dependencies import require_admin
from tenantbook.org_scope import scoped_select

router = APIRouter(
    prefix="/api/activity-logs",
    tags=["activity"],
)

error_router = APIRouter(
    prefix="/api/error-logs",
    tags=["errors"],
)


@router.get("/recent")
def recent_activity(
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    conn = get_db()
    try:
        rows = scoped_select(conn, "activity_logs", ctx.organization_id,
                             order_by="created_at DESC, id DESC", limit=limit)
    finally:
        conn.close()
    return {"data": [row_to_dict(r) for r in rows]}


@router.get("/user/{user_id}")
def user_activity(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    conn = get_db()
    try:
        rows = scoped_select(conn, "activity_logs", ctx.organization_id, where="user_id = ?",
                             params=(user_id,), order_by="created_at DESC, id DESC", limit=limit)
    finally:
        conn.close()
    return {"data": [row_to_dict(r) for r in rows]}


@router.get("/stats")
def activity_stats(ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    """Counts of the organization's activity by action, resource type and status."""
    conn = get_db()
    try:
        total = conn.execute(
            "SELECT COUNT(*) AS n FROM activity_logs WHERE organization_id = ?",
            (ctx.organization_id,),
        ).fetchone()["n"]
        grouped = {}
        for key, column in (("byAction", "action"), ("byResourceType", "resource_type"), ("byStatus", "status")):
            rows = conn.execute(
                f"SELECT {column} AS k, COUNT(*) AS n FROM activity_logs WHERE organization_id = ? GROUP BY {column}",
                (ctx.organization_id,),
            ).fetchall()
            grouped[key] = {r["k"]: r["n"] for r in rows}
    finally:
        conn.close()
    return {"total": total, **grouped}


# Error logs are not organization-owned: they are server-side records
@error_router.get("")
def list_error_logs(
    limit: int = Query(100, ge=1, le=1000),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    conn = get_db()
    try:
        rows = conn.execute(
            "SELECT * FROM error_logs ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (limit, skip),
        ).fetchall()
    finally:
        conn.close()
    return {"data": [row_to_dict(r) for r in rows]}


@error_router.delete("/{log_id}")
def delete_error_log(log_id: int, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    conn = get_db()
    try:
        cur = conn.execute("DELETE FROM error_logs WHERE id = ?", (log_id,))
        conn.commit()
    finally:
        conn.close()
    if not cur.rowcount:
        raise HTTPException(status_code=404, detail="Error log not found")
    return {"ok": True, "id": log_id}
