"""
tenantbook/org_scope.py

Organization guardrails (defense in depth).

Every organization-owned query goes through these helpers so a missing
organization_id filter cannot leak another customer's data.

- In DEV: emit warnings for unsafe access
- In STAGING/PROD: fail fast with HTTP 500
- Cross-organization ids return 404 (never 403) to avoid leaking existence
"""

from __future__ import annotations

import math
import sqlite3
from typing import Any, Dict, List, Mapping, Optional, Union

from fastapi import HTTPException

from tenantbook.config import IS_DEV


OWNED_TABLES = {
    "tenants",
    "leases",
    "payments",
    "tickets",
    "ticket_comments",
    "buildings",
    "floors",
    "suites",
    "messages",
    "announcements",
    "sms_messages",
    "contact_messages",
    "notifications",
    "activity_logs",
}


def fnv1a_hash_to_int(value: str) -> int:
    """32-bit FNV-1a of a string folded into 1..100000000."""
    h = 0x811C9DC5
    for ch in value:
        h ^= ord(ch)
        h = (h * 0x01000193) & 0xFFFFFFFF
    return (h % 100000000) + 1


def resolve_organization_id_from_user(claims: Mapping[str, Any]) -> int:
    """
    Organization id for a set of token claims.

    Prefers an explicit positive organization_id claim; legacy tokens
    without one get a stable id derived from the user id or email.
    """
    raw = claims.get("organization_id") or claims.get("orgId")
    if raw is not None:
        try:
            org_id = int(raw)
            if org_id > 0:
                return org_id
        except (TypeError, ValueError):
            pass
    basis = claims.get("id") or claims.get("sub") or claims.get("email") or "1"
    return fnv1a_hash_to_int(str(basis))


def parse_id(value: Any) -> Any:
    """Numeric-looking ids become ints; anything else (e.g. 'tenant_1_...') is kept."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else value
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    return value


def strip_client_scope(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Drop client-supplied scoping fields; organization comes from the session only."""
    return {k: v for k, v in payload.items() if k not in ("organization_id", "orgId", "_id")}


def require_row_owned(
    conn: sqlite3.Connection,
    table: str,
    row_id: Any,
    organization_id: int,
) -> sqlite3.Row:
    """
    Fetch a row and enforce organization ownership.
    Returns the row if owned by organization_id, raises 404 otherwise.
    """
    row = conn.execute(
        f"SELECT * FROM {table} WHERE id = ? AND organization_id = ?",
        (parse_id(row_id), organization_id),
    ).fetchone()
    if not row:
        print(f"[SECURITY] Row access denied: table={table}, id={row_id}, organization_id={organization_id}")
        raise HTTPException(status_code=404, detail="Resource not found or unauthorized")
    return row


def assert_rows_scoped(
    rows: Union[List[sqlite3.Row], List[Dict[str, Any]]],
    organization_id: int,
    label: str = "",
) -> None:
    """
    Guardrail: assert that all returned rows belong to the organization.

    - In DEV: warns about mismatched organization ids
    - In STAGING/PROD: fails fast with HTTP 500
    """
    mismatches = []
    for i, row in enumerate(rows or []):
        if isinstance(row, dict):
            row_org = row.get("organization_id")
        else:
            try:
                row_org = row["organization_id"]
            except (KeyError, IndexError) as e:
                raise RuntimeError(
                    f"[SCOPE] Query missing organization_id in SELECT for {label or 'unknown endpoint'}: {e}"
                )
        if row_org is not None and row_org != organization_id:
            mismatches.append({"index": i, "expected": organization_id, "found": row_org})

    if not mismatches:
        return

    error_msg = f"[SCOPE] Organization isolation violation{f' in {label}' if label else ''}"
    if IS_DEV:
        print(f"{error_msg}: {len(mismatches)} row(s) mismatched, first={mismatches[:3]}")
        return
    print(f"{error_msg}: {len(mismatches)} row(s) mismatched (PRODUCTION - failing fast)")
    raise HTTPException(
        status_code=500,
        detail="Organization isolation violation detected - this is a server error",
    )


def scoped_select(
    conn: sqlite3.Connection,
    table: str,
    organization_id: Optional[int],
    where: str = "",
    params: tuple = (),
    order_by: str = "",
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[sqlite3.Row]:
    """
    SELECT * from an organization-owned table with the organization filter
    always applied. `where` is ANDed onto it.
    """
    if table not in OWNED_TABLES:
        raise ValueError(f"Not an organization-owned table: {table}")
    if not organization_id:
        if IS_DEV:
            print(f"[SCOPE] Missing organization_id for {table} query (DEV warning - returning nothing)")
            return []
        raise HTTPException(status_code=500, detail="Organization scope missing - this is a server error")

    sql = f"SELECT * FROM {table} WHERE organization_id = ?"
    if where:
        sql += f" AND ({where})"
    if order_by:
        sql += f" ORDER BY {order_by}"
    if limit is not None:
        sql += " LIMIT ? OFFSET ?"
        params = params + (limit, offset)
    rows = conn.execute(sql, (organization_id,) + params).fetchall()
    assert_rows_scoped(rows, organization_id, label=table)
    return rows
