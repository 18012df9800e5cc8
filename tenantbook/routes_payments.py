"""
tenantbook/routes_payments.py

Rent payment records.

Security guarantees:
- Mutations require an admin role
- Portal tenants only list and read their own payments
- Referenced tenant and lease must belong to the session's organization
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.db import get_db, now_iso, row_to_dict
from tenantbook.dependencies import require_admin
from tenantbook.models import ResourceType
from tenantbook.org_scope import parse_id, require_row_owned, scoped_select
from tenantbook.schemas import PaymentCreateRequest, PaymentUpdateRequest, wrap_success

router = APIRouter(
    prefix="/api/payments",
    tags=["payments"],
)

PAYMENT_FIELDS = ("tenant_id", "lease_id", "amount", "due_date", "paid_date", "status", "method", "notes")


def check_references(conn: sqlite3.Connection, data: Dict[str, Any], organization_id: int) -> None:
    """400 when tenant_id or lease_id points outside the organization."""
    if data.get("tenant_id"):
        if not conn.execute(
            "SELECT 1 FROM tenants WHERE id = ? AND organization_id = ?",
            (data["tenant_id"], organization_id),
        ).fetchone():
            raise HTTPException(status_code=400, detail="tenant_id does not belong to this organization")
    if data.get("lease_id") is not None:
        if not conn.execute(
            "SELECT 1 FROM leases WHERE id = ? AND organization_id = ?",
            (data["lease_id"], organization_id),
        ).fetchone():
            raise HTTPException(status_code=400, detail="lease_id does not belong to this organization")


@router.get("")
def list_payments(
    tenant_id: Optional[str] = Query(None),
    lease_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_auth_context),
) -> Dict[str, Any]:
    if ctx.is_tenant:
        tenant_id = ctx.tenant_id
        if not tenant_id:
            return wrap_success(200, [])
    elif not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    clauses: List[str] = []
    params: List[Any] = []
    for column, value in (("tenant_id", tenant_id), ("lease_id", lease_id), ("status", status)):
        if value is not None and value != "":
            clauses.append(f"{column} = ?")
            params.append(value)

    conn = get_db()
    try:
        rows = scoped_select(
            conn, "payments", ctx.organization_id, where=" AND ".join(clauses), params=tuple(params),
            order_by="COALESCE(due_date, created_at) DESC, id DESC", limit=limit, offset=skip,
        )
    finally:
        conn.close()
    return wrap_success(200, [row_to_dict(r) for r in rows])


@router.get("/{payment_id}")
def get_payment(payment_id: str, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        row = require_row_owned(conn, "payments", payment_id, ctx.organization_id)
    finally:
        conn.close()
    if ctx.is_tenant and row["tenant_id"] != ctx.tenant_id:
        raise HTTPException(status_code=403, detail="Tenants may only view their own payments")
    elif not ctx.is_tenant and not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return wrap_success(200, row_to_dict(row))


@router.post("", status_code=201)
def create_payment(req: PaymentCreateRequest, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    data = req.dict()
    conn = get_db()
    try:
        check_references(conn, data, ctx.organization_id)
        now = now_iso()
        existing = None
        if req.id is not None:
            existing = conn.execute(
                "SELECT id FROM payments WHERE id = ? AND organization_id = ?",
                (req.id, ctx.organization_id),
            ).fetchone()

        if existing is not None:
            assignments = ", ".join(f"{f} = ?" for f in PAYMENT_FIELDS)
            conn.execute(
                f"UPDATE payments SET {assignments}, updated_at = ? WHERE id = ? AND organization_id = ?",
                (*[data[f] for f in PAYMENT_FIELDS], now, existing["id"], ctx.organization_id),
            )
            payment_id = existing["id"]
        else:
            columns = list(PAYMENT_FIELDS) + ["organization_id", "created_at", "updated_at"]
            values = [data[f] for f in PAYMENT_FIELDS] + [ctx.organization_id, now, now]
            cur = conn.execute(
                f"INSERT INTO payments ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            payment_id = cur.lastrowid
        conn.commit()

        row = conn.execute("SELECT * FROM payments WHERE id = ?", (payment_id,)).fetchone()
        log_activity(
            conn, ctx, request, "CREATE", ResourceType.payment,
            f"Recorded payment of {req.amount}", resource_id=payment_id, body=data,
        )
    finally:
        conn.close()
    return wrap_success(201, row_to_dict(row))


@router.put("/{payment_id}")
def update_payment(
    payment_id: str,
    req: PaymentUpdateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    changes = req.dict(exclude_unset=True)
    conn = get_db()
    try:
        existing = require_row_owned(conn, "payments", payment_id, ctx.organization_id)
        check_references(conn, changes, ctx.organization_id)
        updates = {f: changes[f] for f in PAYMENT_FIELDS if f in changes}
        if updates:
            updates["updated_at"] = now_iso()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE payments SET {assignments} WHERE id = ? AND organization_id = ?",
                (*updates.values(), existing["id"], ctx.organization_id),
            )
            conn.commit()
        row = conn.execute("SELECT * FROM payments WHERE id = ?", (existing["id"],)).fetchone()
        log_activity(conn, ctx, request, "UPDATE", ResourceType.payment, "Updated payment", resource_id=existing["id"], body=changes)
    finally:
        conn.close()
    return wrap_success(200, row_to_dict(row))


@router.delete("/{payment_id}")
def delete_payment(payment_id: str, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    conn = get_db()
    try:
        existing = require_row_owned(conn, "payments", payment_id, ctx.organization_id)
        conn.execute("DELETE FROM payments WHERE id = ? AND organization_id = ?", (existing["id"], ctx.organization_id))
        conn.commit()
        log_activity(conn, ctx, request, "DELETE", ResourceType.payment, "Deleted payment", resource_id=existing["id"])
    finally:
        conn.close()
    return wrap_success(200, {"id": parse_id(payment_id), "deleted": True})
