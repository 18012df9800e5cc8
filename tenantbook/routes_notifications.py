"""
tenantbook/routes_notifications.py

Notification feed and read markers for the current session.
Read markers are per identity (staff user id or "tenant:<id>").
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.config import IS_DEV
from tenantbook.db import get_db, row_to_dict
from tenantbook.notifications import is_visible, mark_read, visible_notifications
from tenantbook.redis_client import publish_event

router = APIRouter(
    prefix="/api/notifications",
    tags=["notifications"],
)


@router.get("")
def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    ctx: AuthContext = Depends(require_auth_context),
) -> Dict[str, Any]:
    conn = get_db()
    try:
        items = visible_notifications(conn, ctx, limit=limit)
    finally:
        conn.close()
    return {"data": items}


@router.get("/unread-count")
def unread_count(ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        unread = [n for n in visible_notifications(conn, ctx) if not n["is_read"]]
    finally:
        conn.close()
    return {"total": len(unread), "byType": dict(Counter(n["type"] for n in unread))}


@router.post("/mark-all-read")
def mark_all_read(ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        unread = [n for n in visible_notifications(conn, ctx) if not n["is_read"]]
        for item in unread:
            mark_read(conn, item["id"], ctx.user_key)
        conn.commit()
    finally:
        conn.close()

    ids = [n["id"] for n in unread]
    publish_event({
        "type": "notification.read_bulk",
        "record": {"ids": ids, "organization_id": ctx.organization_id, "user_key": ctx.user_key},
    })
    if IS_DEV:
        print(f"[NOTIFY] Marked {len(ids)} read for user_key={ctx.user_key}")
    return {"ok": True, "count": len(ids)}


@router.post("/{notification_id}/read")
def read_notification(notification_id: int, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    """
    Raises:
        HTTPException(404): Unknown, other organization, or not addressed to this session
    """
    conn = get_db()
    try:
        row = conn.execute(
            "SELECT * FROM notifications WHERE id = ? AND organization_id = ?",
            (notification_id, ctx.organization_id),
        ).fetchone()
        if not row or not is_visible(row_to_dict(row), ctx):
            raise HTTPException(status_code=404, detail="Notification not found")
        mark_read(conn, notification_id, ctx.user_key)
        conn.commit()
    finally:
        conn.close()

    publish_event({
        "type": "notification.read",
        "record": {"id": notification_id, "organization_id": ctx.organization_id, "user_key": ctx.user_key},
    })
    return {"ok": True, "id": notification_id}
