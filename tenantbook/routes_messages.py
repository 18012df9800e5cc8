"""
tenantbook/routes_messages.py

Messages between the property team and portal tenants.

Visibility for a portal tenant: messages it sent, messages addressed to
it, and admin broadcasts (no to_tenant_id). Staff see every message of
their organization.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext
from tenantbook.db import get_db, now_iso, row_to_dict
from tenantbook.dependencies import require_admin, require_membership
from tenantbook.models import ADMIN_ROLES, ResourceType, UserRole
from tenantbook.notifications import notify_for_record
from tenantbook.org_scope import parse_id, require_row_owned, scoped_select
from tenantbook.schemas import MessageRequest, wrap_success

router = APIRouter(
    prefix="/api/messages",
    tags=["messages"],
)


def tenant_message_filter(ctx: AuthContext) -> Tuple[Optional[str], tuple]:
    """WHERE fragment for a portal tenant's mailbox (None = sees nothing)."""
    if not ctx.tenant_id:
        return None, ()
    admin_roles = tuple(sorted(ADMIN_ROLES))
    placeholders = ",".join("?" for _ in admin_roles)
    where = (
        "sender_tenant_id = ? OR to_tenant_id = ? "
        f"OR ((to_tenant_id IS NULL OR to_tenant_id = '') AND sender_role IN ({placeholders}))"
    )
    return where, (ctx.tenant_id, ctx.tenant_id, *admin_roles)


def _can_see(message: sqlite3.Row, ctx: AuthContext) -> bool:
    if not ctx.is_tenant:
        return True
    if not ctx.tenant_id:
        return False
    if ctx.tenant_id in (message["sender_tenant_id"], message["to_tenant_id"]):
        return True
    return not message["to_tenant_id"] and message["sender_role"] in ADMIN_ROLES


@router.get("")
def list_messages(
    limit: int = Query(500, ge=1, le=5000),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_membership),
) -> Dict[str, Any]:
    where, params = ("", ())
    if ctx.is_tenant:
        where, params = tenant_message_filter(ctx)
        if where is None:
            return wrap_success(200, [])

    conn = get_db()
    try:
        rows = scoped_select(
            conn, "messages", ctx.organization_id, where=where, params=params,
            order_by="created_at DESC, id DESC", limit=limit, offset=skip,
        )
    finally:
        conn.close()
    return wrap_success(200, [row_to_dict(r) for r in rows])


@router.get("/{message_id}")
def get_message(message_id: str, ctx: AuthContext = Depends(require_membership)) -> Dict[str, Any]:
    conn = get_db()
    try:
        row = require_row_owned(conn, "messages", message_id, ctx.organization_id)
    finally:
        conn.close()
    if not _can_see(row, ctx):
        raise HTTPException(status_code=404, detail="Resource not found or unauthorized")
    return wrap_success(200, row_to_dict(row))


@router.post("", status_code=201)
def send_message(req: MessageRequest, request: Request, ctx: AuthContext = Depends(require_membership)) -> Dict[str, Any]:
    """
    Send a message and notify its recipients.

    Tenant senders always write as themselves and cannot address other
    tenants; their messages go to the organization's admins.
    """
    to_tenant_id = req.to_tenant_id
    recipients = req.recipients
    if ctx.is_tenant:
        if not ctx.tenant_id:
            raise HTTPException(status_code=403, detail="Tenant access required")
        to_tenant_id = None
        recipients = None

    conn = get_db()
    try:
        if to_tenant_id and not conn.execute(
            "SELECT 1 FROM tenants WHERE id = ? AND organization_id = ?",
            (to_tenant_id, ctx.organization_id),
        ).fetchone():
            raise HTTPException(status_code=400, detail="to_tenant_id does not belong to this organization")

        now = now_iso()
        cur = conn.execute(
            """
            INSERT INTO messages (
                organization_id, sender_id, sender_role, sender_tenant_id, to_tenant_id,
                subject, body, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                ctx.organization_id,
                ctx.actor_id,
                ctx.role,
                ctx.tenant_id if ctx.is_tenant else None,
                to_tenant_id,
                req.subject,
                req.body,
                now,
                now,
            ),
        )
        conn.commit()
        message = row_to_dict(conn.execute("SELECT * FROM messages WHERE id = ?", (cur.lastrowid,)).fetchone())
        log_activity(conn, ctx, request, "CREATE", ResourceType.message, "Sent message",
                     resource_id=message["id"], body=req.dict())

        notify_for_record(
            conn, ctx, {**message, "recipients": recipients},
            notification_type="message",
            title=req.subject or ("New message from tenant" if ctx.role == UserRole.tenant.value else "New message"),
            body=req.body,
            resource_type=ResourceType.message.value,
        )
    finally:
        conn.close()
    return wrap_success(201, message)


@router.delete("/{message_id}")
def delete_message(message_id: str, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    conn = get_db()
    try:
        existing = require_row_owned(conn, "messages", message_id, ctx.organization_id)
        conn.execute("DELETE FROM messages WHERE id = ? AND organization_id = ?", (existing["id"], ctx.organization_id))
        conn.commit()
        log_activity(conn, ctx, request, "DELETE", ResourceType.message, "Deleted message", resource_id=existing["id"])
    finally:
        conn.close()
    return wrap_success(200, {"id": parse_id(message_id), "deleted": True})
