"""
tenantbook/routes_records.py

Router factory for organization-scoped record collections, plus the
announcement, SMS and contact-message collections built with it.

Security guarantees:
- All reads require authentication; all mutations require an admin role
- organization_id always comes from the session, never from the body
- Records from another organization answer 404
"""

from __future__ import annotations

import sqlite3
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.config import IS_DEV, PUBLIC_CONTACT_ORGANIZATION_ID
from tenantbook.db import get_db
from tenantbook.dependencies import require_admin
from tenantbook.notifications import notify_for_record
from tenantbook.org_scope import parse_id
from tenantbook.records import RESOURCES, RecordResult, Resource, create_record, delete_record, get_record, list_records, update_record
from tenantbook.schemas import wrap_success

NOT_FOUND = "Resource not found or unauthorized"

# (conn, ctx) -> (where, params) restricting what a portal tenant may see.
# None as where means the tenant sees nothing.
TenantFilter = Callable[[sqlite3.Connection, AuthContext], Tuple[Optional[str], tuple]]
# (payload, ctx) -> payload, run before create
PrepareCreate = Callable[[Dict[str, Any], AuthContext], Dict[str, Any]]


def duplicate_conflict(resource: Resource, result: RecordResult) -> HTTPException:
    label = resource.class_name or resource.name.rstrip("s")
    return HTTPException(
        status_code=409,
        detail={
            "error": resource.duplicate_error or f"duplicate_{label}",
            "message": f"A {label} with the same identifying fields already exists",
            "conflict": result.record,
            "suggestion": f"Update the existing {label} (id={result.record.get('id')}) instead of creating a new one",
        },
    )


def make_record_router(
    resource: Resource,
    prefix: str,
    tags: Optional[list] = None,
    tenant_filter: Optional[TenantFilter] = None,
    prepare_create: Optional[PrepareCreate] = None,
    notification_title: Optional[Callable[[Dict[str, Any]], str]] = None,
) -> APIRouter:
    """
    Build list/get/create/update/delete routes for a registered resource.

    Args:
        resource: Entry from records.RESOURCES
        prefix: Mount path such as "/api/buildings"
        tenant_filter: Narrows reads for portal tenants; without one tenants see nothing
        prepare_create: Validates/fills a create payload (may raise HTTPException)
        notification_title: When set, each created record notifies the organization
    """
    router = APIRouter(prefix=prefix, tags=tags or [resource.name])

    def _tenant_scope(conn: sqlite3.Connection, ctx: AuthContext) -> Tuple[Optional[str], tuple]:
        if not ctx.is_tenant:
            return "", ()
        if tenant_filter is None:
            return None, ()
        return tenant_filter(conn, ctx)

    @router.get("")
    def list_items(
        limit: int = Query(500, ge=1, le=5000),
        skip: int = Query(0, ge=0),
        ctx: AuthContext = Depends(require_auth_context),
    ) -> Dict[str, Any]:
        conn = get_db()
        try:
            where, params = _tenant_scope(conn, ctx)
            if where is None:
                return wrap_success(200, [])
            items = list_records(conn, resource, ctx.organization_id, limit=limit, skip=skip, where=where, params=params)
        finally:
            conn.close()
        if IS_DEV:
            print(f"[{resource.name.upper()}] Listed {len(items)} for organization_id={ctx.organization_id}")
        return wrap_success(200, items)

    @router.get("/{id}")
    def get_item(id: str, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
        conn = get_db()
        try:
            where, params = _tenant_scope(conn, ctx)
            if where is None:
                raise HTTPException(status_code=404, detail=NOT_FOUND)
            record = get_record(conn, resource, id, ctx.organization_id)
            if record is not None and where:
                visible = list_records(
                    conn, resource, ctx.organization_id,
                    where=f"id = ? AND ({where})", params=(record["id"],) + params,
                )
                record = visible[0] if visible else None
        finally:
            conn.close()
        if record is None:
            raise HTTPException(status_code=404, detail=NOT_FOUND)
        return wrap_success(200, record)

    @router.post("", status_code=201)
    def create_item(
        request: Request,
        payload: Dict[str, Any] = Body(...),
        ctx: AuthContext = Depends(require_admin),
    ) -> Dict[str, Any]:
        if prepare_create is not None:
            payload = prepare_create(dict(payload), ctx)

        conn = get_db()
        try:
            result = create_record(conn, resource, payload, ctx.organization_id)
            if result.duplicate:
                raise duplicate_conflict(resource, result)
            record = result.record
            log_activity(
                conn, ctx, request, "CREATE", resource.resource_type,
                f"Created {resource.name} record", resource_id=record.get("id"), body=payload,
            )
            if notification_title is not None:
                notify_for_record(
                    conn, ctx, record,
                    notification_type=resource.name,
                    title=notification_title(record),
                    body=record.get("body"),
                    resource_type=resource.resource_type,
                )
        finally:
            conn.close()
        return wrap_success(201, record)

    @router.put("/{id}")
    def update_item(
        id: str,
        request: Request,
        payload: Dict[str, Any] = Body(...),
        ctx: AuthContext = Depends(require_admin),
    ) -> Dict[str, Any]:
        conn = get_db()
        try:
            result = update_record(conn, resource, id, payload, ctx.organization_id)
            if result is None:
                print(f"[SECURITY] Update denied: table={resource.table}, id={id}, organization_id={ctx.organization_id}")
                raise HTTPException(status_code=404, detail=NOT_FOUND)
            if result.duplicate:
                raise duplicate_conflict(resource, result)
            log_activity(
                conn, ctx, request, "UPDATE", resource.resource_type,
                f"Updated {resource.name} record", resource_id=result.record.get("id"), body=payload,
            )
        finally:
            conn.close()
        return wrap_success(200, result.record)

    @router.delete("/{id}")
    def delete_item(id: str, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
        conn = get_db()
        try:
            if not delete_record(conn, resource, id, ctx.organization_id):
                raise HTTPException(status_code=404, detail=NOT_FOUND)
            log_activity(
                conn, ctx, request, "DELETE", resource.resource_type,
                f"Deleted {resource.name} record", resource_id=parse_id(id),
            )
        finally:
            conn.close()
        return wrap_success(200, {"id": parse_id(id), "deleted": True})

    return router


# ---- Announcements / SMS -----------------------------------------------


def _stamp_creator(payload: Dict[str, Any], ctx: AuthContext) -> Dict[str, Any]:
    payload["created_by"] = ctx.actor_id
    return payload


def _all_announcements(conn: sqlite3.Connection, ctx: AuthContext) -> Tuple[Optional[str], tuple]:
    return "", ()


def _own_sms(conn: sqlite3.Connection, ctx: AuthContext) -> Tuple[Optional[str], tuple]:
    if not ctx.tenant_id:
        return None, ()
    return "to_tenant_id = ?", (ctx.tenant_id,)


announcements_router = make_record_router(
    RESOURCES["announcements"],
    "/api/announcements",
    tenant_filter=_all_announcements,
    prepare_create=_stamp_creator,
    notification_title=lambda record: record.get("title") or "New announcement",
)

sms_router = make_record_router(
    RESOURCES["sms_messages"],
    "/api/sms_messages",
    tenant_filter=_own_sms,
    prepare_create=_stamp_creator,
    notification_title=lambda record: "New SMS message",
)


# ---- Contact messages ---------------------------------------------------
# Public website form: anyone may post, only admins read.

contact_router = APIRouter(prefix="/api/contact_messages", tags=["contact_messages"])


@contact_router.post("", status_code=201)
def create_contact_message(request: Request, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """
    Store a contact form submission. No authentication.

    The message lands in the organization named by the body, else in
    PUBLIC_CONTACT_ORGANIZATION_ID. Either must be an existing organization.
    """
    if not str(payload.get("message") or "").strip():
        raise HTTPException(status_code=400, detail="message is required")

    target = parse_id(payload.get("organization_id")) or PUBLIC_CONTACT_ORGANIZATION_ID
    if not isinstance(target, int):
        raise HTTPException(status_code=400, detail="organization_id must be numeric")

    resource = RESOURCES["contact_messages"]
    conn = get_db()
    try:
        if not conn.execute("SELECT 1 FROM organizations WHERE id = ?", (target,)).fetchone():
            print(f"[CONTACT] Rejected message for unknown organization_id={target}")
            raise HTTPException(status_code=400, detail="Unknown organization")
        result = create_record(conn, resource, {k: v for k, v in payload.items() if k != "id"}, target)
        log_activity(
            conn, None, request, "CREATE", resource.resource_type,
            "Contact form submitted", resource_id=result.record.get("id"),
            organization_id=target, body=payload,
        )
    finally:
        conn.close()
    return wrap_success(201, result.record)


@contact_router.get("")
def list_contact_messages(
    limit: int = Query(500, ge=1, le=5000),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    conn = get_db()
    try:
        items = list_records(conn, RESOURCES["contact_messages"], ctx.organization_id, limit=limit, skip=skip)
    finally:
        conn.close()
    return wrap_success(200, items)
