"""
tenantbook/activity.py

Activity log: who did what to which resource, with request context.

log_activity never raises - a failed audit insert is printed and the
request carries on.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, Mapping, Optional

from fastapi import Request

from tenantbook.auth_context import AuthContext
from tenantbook.config import IS_DEV
from tenantbook.db import now_iso
from tenantbook.models import ActivityStatus

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = {"password", "token", "refreshtoken", "refresh_token", "authorization", "cookie"}
LOGGED_HEADERS = ("user-agent", "content-type", "origin", "referer", "authorization", "cookie")


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return key_lower in SENSITIVE_KEYS or "secret" in key_lower or "password" in key_lower


def sanitize(data: Any) -> Any:
    """Recursively redact sensitive keys from a request body."""
    if isinstance(data, Mapping):
        return {k: (REDACTED if _is_sensitive(str(k)) else sanitize(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [sanitize(v) for v in data]
    return data


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    out = {}
    for name in LOGGED_HEADERS:
        if name in headers:
            out[name] = REDACTED if _is_sensitive(name) else headers[name]
    return out


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def log_activity(
    conn: sqlite3.Connection,
    ctx: Optional[AuthContext],
    request: Optional[Request],
    action: str,
    resource_type: str,
    description: str,
    resource_id: Any = None,
    status: str = ActivityStatus.success.value,
    body: Any = None,
    metadata: Optional[Dict[str, Any]] = None,
    organization_id: Optional[int] = None,
    user_id: Any = None,
    username: Optional[str] = None,
) -> None:
    """
    Record an activity row. Commits on its own so it survives a later rollback.

    Args:
        ctx: Session of the actor (None for anonymous actions like failed logins)
        request: Source of ip, user agent, method and path
        action: Verb such as CREATE, UPDATE, DELETE, LOGIN
        resource_type: ResourceType value
        resource_id: Id of the touched record (falls back to the path id)
        body: Request body; stored sanitized
    """
    meta: Dict[str, Any] = dict(metadata or {})
    if request is not None:
        meta.setdefault("method", request.method)
        meta.setdefault("path", request.url.path)
        meta.setdefault("headers", sanitize_headers(request.headers))
        if resource_id is None:
            resource_id = request.path_params.get("id")
    if body is not None:
        meta["body"] = sanitize(body)

    if ctx is not None:
        organization_id = organization_id or ctx.organization_id
        user_id = user_id or ctx.actor_id
        username = username or ctx.username or ctx.email

    try:
        conn.execute(
            """
            INSERT INTO activity_logs (
                organization_id, user_id, username, action, resource_type, resource_id,
                description, ip, user_agent, status, metadata, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                organization_id,
                str(user_id) if user_id is not None else None,
                username,
                action,
                str(resource_type.value if hasattr(resource_type, "value") else resource_type),
                str(resource_id) if resource_id is not None else None,
                description,
                client_ip(request),
                request.headers.get("user-agent") if request is not None else None,
                status,
                json.dumps(meta, default=str),
                now_iso(),
            ),
        )
        conn.commit()
        if IS_DEV:
            print(f"[ACTIVITY] {status} {action} {resource_type} id={resource_id} by={user_id}")
    except sqlite3.Error as e:
        print(f"[ACTIVITY] Failed to record {action} {resource_type}: {e}")
