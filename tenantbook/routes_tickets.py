"""
tenantbook/routes_tickets.py

Maintenance tickets and their comment threads.

Security guarantees:
- Portal tenants only see and comment on their own tickets
- Tenants may only edit title/description of their own Open tickets
- Deletion is admin-only
- Tenant activity notifies admins; admin activity notifies the ticket's tenant
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext
from tenantbook.db import get_db, now_iso, row_to_dict
from tenantbook.dependencies import require_admin, require_membership, require_roles
from tenantbook.models import ResourceType, TicketStatus, UserRole
from tenantbook.notifications import notify_for_record
from tenantbook.org_scope import parse_id, require_row_owned, scoped_select
from tenantbook.schemas import CommentRequest, TicketCreateRequest, TicketUpdateRequest, wrap_success

router = APIRouter(
    prefix="/api/tickets",
    tags=["tickets"],
)

TENANT_EDITABLE = {"title", "description"}
TICKET_FIELDS = ("title", "description", "priority", "status", "tenant_id", "assigned_to_user_id")

require_ticket_author = require_roles(UserRole.admin, UserRole.clientadmin, UserRole.tenant)


def _visible_ticket(conn: sqlite3.Connection, ticket_id: str, ctx: AuthContext) -> sqlite3.Row:
    """Owned ticket the session may see (403 for another tenant's ticket)."""
    row = require_row_owned(conn, "tickets", ticket_id, ctx.organization_id)
    if ctx.is_tenant and (not ctx.tenant_id or row["tenant_id"] != ctx.tenant_id):
        raise HTTPException(status_code=403, detail="Tenants may only access their own tickets")
    return row


def _notify_ticket(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    ticket: Dict[str, Any],
    notification_type: str,
    title: str,
    body: Optional[str] = None,
) -> None:
    """Tenant authors reach the admins; admins reach the ticket's tenant."""
    if ctx.is_tenant:
        target = dict(ticket)
    elif ticket.get("tenant_id"):
        target = {**ticket, "to_tenant_id": ticket["tenant_id"]}
    else:
        return
    notify_for_record(
        conn, ctx, target,
        notification_type=notification_type,
        title=title,
        body=body,
        resource_type=ResourceType.ticket.value,
    )


@router.get("")
def list_tickets(
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    tenant_id: Optional[str] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_membership),
) -> Dict[str, Any]:
    if ctx.is_tenant:
        # A tenant session without a tenant id matches nothing
        if not ctx.tenant_id:
            return wrap_success(200, [])
        tenant_id = ctx.tenant_id

    clauses: List[str] = []
    params: List[Any] = []
    for column, value in (("status", status), ("priority", priority), ("tenant_id", tenant_id)):
        if value:
            clauses.append(f"{column} = ?")
            params.append(value)

    conn = get_db()
    try:
        rows = scoped_select(
            conn, "tickets", ctx.organization_id, where=" AND ".join(clauses), params=tuple(params),
            order_by="created_at DESC, id DESC", limit=limit, offset=skip,
        )
    finally:
        conn.close()
    return wrap_success(200, [row_to_dict(r) for r in rows])


@router.get("/{ticket_id}")
def get_ticket(ticket_id: str, ctx: AuthContext = Depends(require_membership)) -> Dict[str, Any]:
    conn = get_db()
    try:
        row = _visible_ticket(conn, ticket_id, ctx)
    finally:
        conn.close()
    return wrap_success(200, row_to_dict(row))


@router.post("", status_code=201)
def create_ticket(
    req: TicketCreateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_ticket_author),
) -> Dict[str, Any]:
    """
    Open a ticket. Tenant-created tickets are always filed under the
    tenant's own id and notify the organization's admins.
    """
    data = req.dict()
    if ctx.is_tenant:
        if not ctx.tenant_id:
            raise HTTPException(status_code=403, detail="Tenant access required")
        data["tenant_id"] = ctx.tenant_id
        data["status"] = TicketStatus.open.value
        data["assigned_to_user_id"] = None

    conn = get_db()
    try:
        if data.get("tenant_id") and not ctx.is_tenant:
            if not conn.execute(
                "SELECT 1 FROM tenants WHERE id = ? AND organization_id = ?",
                (data["tenant_id"], ctx.organization_id),
            ).fetchone():
                raise HTTPException(status_code=400, detail="tenant_id does not belong to this organization")

        now = now_iso()
        cur = conn.execute(
            """
            INSERT INTO tickets (
                organization_id, tenant_id, title, description, status, priority,
                created_by_user_id, assigned_to_user_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                ctx.organization_id,
                data.get("tenant_id"),
                data["title"],
                data.get("description"),
                data["status"],
                data["priority"],
                ctx.actor_id,
                data.get("assigned_to_user_id"),
                now,
                now,
            ),
        )
        conn.commit()
        ticket = row_to_dict(conn.execute("SELECT * FROM tickets WHERE id = ?", (cur.lastrowid,)).fetchone())
        log_activity(conn, ctx, request, "CREATE", ResourceType.ticket, f"Opened ticket: {ticket['title']}",
                     resource_id=ticket["id"], body=data)
        _notify_ticket(conn, ctx, ticket, "ticket.created", f"New ticket: {ticket['title']}", ticket.get("description"))
    finally:
        conn.close()

    print(f"[TICKETS] Created ticket_id={ticket['id']}, organization_id={ctx.organization_id}, by={ctx.user_key}")
    return wrap_success(201, ticket)


@router.put("/{ticket_id}")
def update_ticket(
    ticket_id: str,
    req: TicketUpdateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_ticket_author),
) -> Dict[str, Any]:
    """
    Raises:
        HTTPException(403): Tenant editing someone else's ticket, a non-Open
            ticket, or fields other than title/description
    """
    changes = req.dict(exclude_unset=True)
    conn = get_db()
    try:
        existing = _visible_ticket(conn, ticket_id, ctx)
        if ctx.is_tenant:
            if existing["status"] != TicketStatus.open.value:
                raise HTTPException(status_code=403, detail="Only open tickets can be edited")
            if set(changes) - TENANT_EDITABLE:
                raise HTTPException(status_code=403, detail="Tenants may only edit title and description")

        updates = {f: changes[f] for f in TICKET_FIELDS if f in changes}
        if updates:
            updates["updated_at"] = now_iso()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE tickets SET {assignments} WHERE id = ? AND organization_id = ?",
                (*updates.values(), existing["id"], ctx.organization_id),
            )
            conn.commit()

        ticket = row_to_dict(conn.execute("SELECT * FROM tickets WHERE id = ?", (existing["id"],)).fetchone())
        log_activity(conn, ctx, request, "UPDATE", ResourceType.ticket, "Updated ticket",
                     resource_id=existing["id"], body=changes)
        if ctx.is_admin and updates:
            _notify_ticket(conn, ctx, ticket, "ticket.updated", f"Ticket updated: {ticket['title']}",
                           f"Status: {ticket['status']}")
    finally:
        conn.close()
    return wrap_success(200, ticket)


@router.delete("/{ticket_id}")
def delete_ticket(ticket_id: str, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    conn = get_db()
    try:
        existing = require_row_owned(conn, "tickets", ticket_id, ctx.organization_id)
        conn.execute("DELETE FROM ticket_comments WHERE ticket_id = ? AND organization_id = ?",
                     (existing["id"], ctx.organization_id))
        conn.execute("DELETE FROM tickets WHERE id = ? AND organization_id = ?", (existing["id"], ctx.organization_id))
        conn.commit()
        log_activity(conn, ctx, request, "DELETE", ResourceType.ticket, "Deleted ticket", resource_id=existing["id"])
    finally:
        conn.close()
    return wrap_success(200, {"id": parse_id(ticket_id), "deleted": True})


# ---- Comments -----------------------------------------------------------


@router.get("/{ticket_id}/comments")
def list_comments(ticket_id: str, ctx: AuthContext = Depends(require_membership)) -> Dict[str, Any]:
    conn = get_db()
    try:
        ticket = _visible_ticket(conn, ticket_id, ctx)
        rows = scoped_select(
            conn, "ticket_comments", ctx.organization_id,
            where="ticket_id = ?", params=(ticket["id"],), order_by="created_at ASC, id ASC",
        )
    finally:
        conn.close()
    return wrap_success(200, [row_to_dict(r) for r in rows])


@router.post("/{ticket_id}/comments", status_code=201)
def add_comment(
    ticket_id: str,
    req: CommentRequest,
    request: Request,
    ctx: AuthContext = Depends(require_ticket_author),
) -> Dict[str, Any]:
    conn = get_db()
    try:
        ticket = row_to_dict(_visible_ticket(conn, ticket_id, ctx))
        cur = conn.execute(
            """
            INSERT INTO ticket_comments (organization_id, ticket_id, author_id, author_role, body, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (ctx.organization_id, ticket["id"], ctx.actor_id, ctx.role, req.body, now_iso()),
        )
        conn.commit()
        comment = row_to_dict(conn.execute("SELECT * FROM ticket_comments WHERE id = ?", (cur.lastrowid,)).fetchone())
        log_activity(conn, ctx, request, "COMMENT", ResourceType.ticket, "Commented on ticket",
                     resource_id=ticket["id"], body=req.dict())
        _notify_ticket(conn, ctx, ticket, "ticket.comment", f"New comment on: {ticket['title']}", req.body)
    finally:
        conn.close()
    return wrap_success(201, comment)
