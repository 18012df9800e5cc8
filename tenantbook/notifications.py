"""
tenantbook/notifications.py

Notification fan-out: recipient resolution, storage, visibility and
read markers, plus the Redis events the realtime relay consumes.

Recipients are stored as JSON:
    "all"                      - everyone in the organization
    {"tenant_ids": [...]}      - portal tenants (admins also see these)
    {"user_ids": [...]}        - specific staff users
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Union

from tenantbook.auth_context import AuthContext
from tenantbook.config import IS_DEV
from tenantbook.db import now_iso, row_to_dict
from tenantbook.models import ADMIN_ROLES, UserRole
from tenantbook.redis_client import publish_event

Recipients = Union[str, Dict[str, List[Any]]]

ALL_RECIPIENTS = "all"


def admin_user_ids(conn: sqlite3.Connection, organization_id: int) -> List[int]:
    placeholders = ",".join("?" for _ in ADMIN_ROLES)
    rows = conn.execute(
        f"""
        SELECT id FROM users
        WHERE organization_id = ? AND role IN ({placeholders}) AND COALESCE(is_deleted, 0) = 0
        ORDER BY id
        """,
        (organization_id, *sorted(ADMIN_ROLES)),
    ).fetchall()
    return [row["id"] for row in rows]


def resolve_recipients(
    conn: sqlite3.Connection,
    organization_id: int,
    record: Dict[str, Any],
    author_role: Optional[str],
) -> Recipients:
    """
    Who should see a notification about `record`.

    1. A direct target (to_tenant_id) notifies that tenant
    2. Explicit recipients on the record are used as given
    3. Tenant authors notify the organization's admins
    4. Everything else goes to the whole organization
    """
    if record.get("to_tenant_id"):
        return {"tenant_ids": [record["to_tenant_id"]]}
    if record.get("recipients"):
        return record["recipients"]
    if author_role == UserRole.tenant.value:
        return {"user_ids": admin_user_ids(conn, organization_id)}
    return ALL_RECIPIENTS


def _contains(values: Iterable[Any], needle: Any) -> bool:
    if needle is None:
        return False
    needle = str(needle)
    return any(str(v) == needle for v in values or [])


def is_visible(notification: Dict[str, Any], ctx: AuthContext) -> bool:
    recipients = notification.get("recipients")
    if recipients in (None, "", ALL_RECIPIENTS):
        return True
    if not isinstance(recipients, dict):
        return False

    tenant_ids = recipients.get("tenant_ids")
    if tenant_ids:
        if ctx.is_admin:
            return True
        if ctx.is_tenant and _contains(tenant_ids, ctx.tenant_id):
            return True

    user_ids = recipients.get("user_ids")
    if user_ids and ctx.user_id is not None and _contains(user_ids, ctx.user_id):
        return True
    return False


def mark_read(conn: sqlite3.Connection, notification_id: int, user_key: str) -> None:
    """Idempotent read marker (caller commits)."""
    conn.execute(
        """
        INSERT INTO notification_reads (notification_id, user_key, read_at)
        VALUES (?, ?, ?)
        ON CONFLICT(notification_id, user_key) DO UPDATE SET read_at = excluded.read_at
        """,
        (notification_id, user_key, now_iso()),
    )


def create_notification(
    conn: sqlite3.Connection,
    organization_id: int,
    notification_type: str,
    title: str,
    recipients: Recipients,
    body: Optional[str] = None,
    created_by: Optional[str] = None,
    creator_key: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Any = None,
) -> Dict[str, Any]:
    """
    Store a notification, publish notification.created, and mark it read
    for its creator (publishing notification.read). Commits.
    """
    created_at = now_iso()
    cur = conn.execute(
        """
        INSERT INTO notifications (
            organization_id, type, title, body, resource_type, resource_id,
            recipients, created_by, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            organization_id,
            notification_type,
            title,
            body,
            resource_type,
            str(resource_id) if resource_id is not None else None,
            json.dumps(recipients),
            created_by,
            created_at,
        ),
    )
    notification_id = cur.lastrowid
    if creator_key:
        mark_read(conn, notification_id, creator_key)
    conn.commit()

    publish_event({
        "type": "notification.created",
        "record": {
            "id": notification_id,
            "organization_id": organization_id,
            "type": notification_type,
            "title": title,
            "created_at": created_at,
        },
    })
    if creator_key:
        publish_event({
            "type": "notification.read",
            "record": {"id": notification_id, "organization_id": organization_id, "user_key": creator_key},
        })

    if IS_DEV:
        print(f"[NOTIFY] Created notification id={notification_id}, organization_id={organization_id}, "
              f"type={notification_type}, recipients={recipients}")

    row = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
    return row_to_dict(row)


def notify_for_record(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    record: Dict[str, Any],
    notification_type: str,
    title: str,
    body: Optional[str] = None,
    resource_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Resolve recipients for a freshly created record and notify them."""
    recipients = resolve_recipients(conn, ctx.organization_id, record, ctx.role)
    return create_notification(
        conn,
        ctx.organization_id,
        notification_type=notification_type,
        title=title,
        body=body,
        recipients=recipients,
        created_by=ctx.actor_id,
        creator_key=ctx.user_key,
        resource_type=resource_type,
        resource_id=record.get("id"),
    )


def visible_notifications(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Newest-first notifications the session may see, each with is_read."""
    rows = conn.execute(
        """
        SELECT n.*, r.read_at AS read_at
        FROM notifications n
        LEFT JOIN notification_reads r
          ON r.notification_id = n.id AND r.user_key = ?
        WHERE n.organization_id = ?
        ORDER BY n.created_at DESC, n.id DESC
        """,
        (ctx.user_key, ctx.organization_id),
    ).fetchall()

    visible = []
    for row in rows:
        item = row_to_dict(row)
        if not is_visible(item, ctx):
            continue
        item["is_read"] = item.pop("read_at") is not None
        visible.append(item)
        if limit is not None and len(visible) >= limit:
            break
    return visible
