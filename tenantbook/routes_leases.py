"""
tenantbook/routes_leases.py

Lease CRUD with unit overlap protection.

Security guarantees:
- Mutations require an admin role
- Portal tenants only see their own leases
- Referenced tenants must belong to the session's organization
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.config import IS_DEV
from tenantbook.db import encode_json, get_db, now_iso, row_to_dict
from tenantbook.dependencies import require_admin
from tenantbook.leases import find_blocking_overlaps, overlap_message
from tenantbook.models import LeaseStatus, ResourceType
from tenantbook.org_scope import parse_id, require_row_owned, scoped_select
from tenantbook.schemas import LeaseCreateRequest, LeaseUpdateRequest, parse_day, wrap_success

router = APIRouter(
    prefix="/api/leases",
    tags=["leases"],
)

LEASE_FIELDS = (
    "tenant_id",
    "unit_id",
    "lease_start",
    "lease_end",
    "rent_amount",
    "due_day",
    "grace_period_days",
    "late_fee",
    "deposit",
    "recurring_charges",
    "status",
    "notes",
)
JSON_FIELDS = ("late_fee", "recurring_charges")


def _encode(field: str, value: Any) -> Any:
    return encode_json(value) if field in JSON_FIELDS else value


def validate_lease(conn: sqlite3.Connection, lease: Dict[str, Any], organization_id: int, action: str) -> None:
    """
    Check dates, tenant ownership and unit overlaps for the merged lease.

    Raises:
        HTTPException(400): Invalid dates, foreign tenant or overlapping Active lease
    """
    start = parse_day(lease.get("lease_start"))
    end = parse_day(lease.get("lease_end"))
    if start and end and end <= start:
        raise HTTPException(status_code=400, detail="lease_end must be after lease_start")

    if lease.get("tenant_id"):
        owned = conn.execute(
            "SELECT 1 FROM tenants WHERE id = ? AND organization_id = ?",
            (lease["tenant_id"], organization_id),
        ).fetchone()
        if not owned:
            raise HTTPException(status_code=400, detail="tenant_id does not belong to this organization")

    if lease.get("status") == LeaseStatus.active.value and lease.get("unit_id"):
        existing = [
            row_to_dict(r)
            for r in scoped_select(conn, "leases", organization_id, where="unit_id = ?", params=(str(lease["unit_id"]),))
        ]
        conflicts = find_blocking_overlaps(existing, lease)
        if conflicts:
            print(f"[LEASES] Overlap on unit {lease['unit_id']}: organization_id={organization_id}, "
                  f"conflicting_ids={[c['id'] for c in conflicts]}")
            raise HTTPException(status_code=400, detail=overlap_message(action, lease["unit_id"]))


def _apply_update(
    conn: sqlite3.Connection,
    existing: sqlite3.Row,
    changes: Dict[str, Any],
    organization_id: int,
) -> None:
    merged = {**row_to_dict(existing), **changes}
    validate_lease(conn, merged, organization_id, "update")
    updates = {f: _encode(f, changes[f]) for f in LEASE_FIELDS if f in changes}
    if updates:
        updates["updated_at"] = now_iso()
        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn.execute(
            f"UPDATE leases SET {assignments} WHERE id = ? AND organization_id = ?",
            (*updates.values(), existing["id"], organization_id),
        )
        conn.commit()


@router.get("")
def list_leases(
    tenant_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_auth_context),
) -> Dict[str, Any]:
    clauses: List[str] = []
    params: List[Any] = []
    if ctx.is_tenant:
        # Tenants see their own leases whatever filter they pass
        tenant_id = ctx.tenant_id
        if not tenant_id:
            return wrap_success(200, [])
    elif not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    if tenant_id:
        clauses.append("tenant_id = ?")
        params.append(tenant_id)
    if status:
        clauses.append("status = ?")
        params.append(status)

    conn = get_db()
    try:
        rows = scoped_select(
            conn, "leases", ctx.organization_id, where=" AND ".join(clauses), params=tuple(params),
            order_by="updated_at DESC, id DESC", limit=limit, offset=skip,
        )
    finally:
        conn.close()
    return wrap_success(200, [row_to_dict(r) for r in rows])


@router.get("/{lease_id}")
def get_lease(lease_id: str, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        row = require_row_owned(conn, "leases", lease_id, ctx.organization_id)
    finally:
        conn.close()
    if ctx.is_tenant and row["tenant_id"] != ctx.tenant_id:
        raise HTTPException(status_code=403, detail="Tenants may only view their own leases")
    elif not ctx.is_tenant and not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return wrap_success(200, row_to_dict(row))


@router.post("", status_code=201)
def create_lease(req: LeaseCreateRequest, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    """
    Create a lease; a body id naming an existing lease updates it instead.
    Any other body id is ignored and the new lease gets a fresh id.

    Raises:
        HTTPException(400): Bad dates, foreign tenant, overlapping Active lease
    """
    data = req.dict()
    conn = get_db()
    try:
        existing = None
        if req.id is not None:
            existing = conn.execute(
                "SELECT * FROM leases WHERE id = ? AND organization_id = ?",
                (req.id, ctx.organization_id),
            ).fetchone()

        if existing is not None:
            _apply_update(conn, existing, {f: data[f] for f in LEASE_FIELDS}, ctx.organization_id)
            lease_id = existing["id"]
            action = "UPDATE"
        else:
            validate_lease(conn, data, ctx.organization_id, "create")
            now = now_iso()
            columns = list(LEASE_FIELDS) + ["organization_id", "created_at", "updated_at"]
            values = [_encode(f, data[f]) for f in LEASE_FIELDS] + [ctx.organization_id, now, now]
            cur = conn.execute(
                f"INSERT INTO leases ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            conn.commit()
            lease_id = cur.lastrowid
            action = "CREATE"

        row = conn.execute("SELECT * FROM leases WHERE id = ?", (lease_id,)).fetchone()
        log_activity(conn, ctx, request, action, ResourceType.lease, f"{action.title()}d lease", resource_id=lease_id, body=data)
    finally:
        conn.close()

    if IS_DEV:
        print(f"[LEASES] {action} lease_id={lease_id}, organization_id={ctx.organization_id}")
    return wrap_success(201, row_to_dict(row))


@router.put("/{lease_id}")
def update_lease(
    lease_id: str,
    req: LeaseUpdateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    changes = req.dict(exclude_unset=True)
    conn = get_db()
    try:
        existing = require_row_owned(conn, "leases", lease_id, ctx.organization_id)
        _apply_update(conn, existing, changes, ctx.organization_id)
        row = conn.execute("SELECT * FROM leases WHERE id = ?", (existing["id"],)).fetchone()
        log_activity(conn, ctx, request, "UPDATE", ResourceType.lease, "Updated lease", resource_id=existing["id"], body=changes)
    finally:
        conn.close()
    return wrap_success(200, row_to_dict(row))


@router.delete("/{lease_id}")
def delete_lease(lease_id: str, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    conn = get_db()
    try:
        existing = require_row_owned(conn, "leases", lease_id, ctx.organization_id)
        conn.execute("DELETE FROM leases WHERE id = ? AND organization_id = ?", (existing["id"], ctx.organization_id))
        conn.commit()
        log_activity(conn, ctx, request, "DELETE", ResourceType.lease, "Deleted lease", resource_id=existing["id"])
    finally:
        conn.close()
    return wrap_success(200, {"id": parse_id(lease_id), "deleted": True})
