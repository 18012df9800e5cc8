"""
tenantbook/records.py

Generic organization-scoped record service used by the property
(buildings/floors/suites) and simple collection routers.

Each resource declares its table and writable columns; anything else in a
payload is dropped. Floors, buildings and suites get duplicate detection
so repeated client submissions do not create twins.
"""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from tenantbook.config import IS_DEV
from tenantbook.db import now_iso, row_to_dict
from tenantbook.models import ResourceType
from tenantbook.org_scope import parse_id, scoped_select, strip_client_scope


@dataclass(frozen=True)
class Resource:
    name: str
    table: str
    columns: Tuple[str, ...]
    resource_type: str
    class_name: Optional[str] = None
    duplicate_error: Optional[str] = None


RESOURCES: Dict[str, Resource] = {
    "buildings": Resource(
        name="buildings",
        table="buildings",
        columns=("name", "address", "city", "state", "country", "zip_code"),
        resource_type=ResourceType.building.value,
        class_name="building",
        duplicate_error="duplicate_building",
    ),
    "floors": Resource(
        name="floors",
        table="floors",
        columns=("building_id", "floor_number", "name"),
        resource_type=ResourceType.floor.value,
        class_name="floor",
        duplicate_error="duplicate_floor",
    ),
    "suites": Resource(
        name="suites",
        table="suites",
        columns=("building_id", "floor_id", "suite_number", "name", "size_sqft", "rent", "status"),
        resource_type=ResourceType.suite.value,
        class_name="suite",
        duplicate_error="duplicate_suite",
    ),
    "announcements": Resource(
        name="announcements",
        table="announcements",
        columns=("title", "body", "created_by"),
        resource_type=ResourceType.message.value,
    ),
    "sms_messages": Resource(
        name="sms_messages",
        table="sms_messages",
        columns=("to_tenant_id", "phone", "body", "status", "created_by"),
        resource_type=ResourceType.message.value,
    ),
    "contact_messages": Resource(
        name="contact_messages",
        table="contact_messages",
        columns=("name", "email", "phone", "subject", "message"),
        resource_type=ResourceType.message.value,
    ),
}


@dataclass
class RecordResult:
    record: Dict[str, Any]
    duplicate: bool = False


# ---- Suite matching -----------------------------------------------------


def _as_finite_number(raw: Any) -> Optional[Any]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        number = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def build_suite_matches(raw_key: Any) -> List[Tuple[str, Any]]:
    """
    Column/value pairs that identify the same suite on a floor.

    "101" -> [("name", "101"), ("suite_number", "101"), ("suite_number", 101)]
    "A-1" -> [("name", "A-1"), ("suite_number", "A-1")]
    """
    key = str(raw_key).strip()
    matches: List[Tuple[str, Any]] = [("name", key), ("suite_number", key)]
    number = _as_finite_number(raw_key)
    if number is not None:
        matches.append(("suite_number", number))
    return matches


# ---- Payload handling ---------------------------------------------------


def clean_payload(resource: Resource, data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep writable columns only; booleans become 0/1 for SQLite."""
    cleaned = {}
    for key, value in strip_client_scope(data).items():
        if key not in resource.columns:
            continue
        if isinstance(value, bool):
            value = int(value)
        elif key == "name" and isinstance(value, str):
            value = value.strip()
        cleaned[key] = value
    return cleaned


def find_duplicate(
    conn: sqlite3.Connection,
    resource: Resource,
    organization_id: int,
    data: Dict[str, Any],
    existing: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Existing record that `data` would duplicate (None when unique).

    On update, `existing` supplies fields the payload leaves out and is
    excluded from the match.
    """
    existing = existing or {}
    exclude_sql, exclude_params = "", ()
    if existing.get("id") is not None:
        exclude_sql, exclude_params = " AND id != ?", (existing["id"],)

    if resource.name == "floors":
        if data.get("floor_number") is None:
            return None
        building_id = data.get("building_id", existing.get("building_id"))
        if building_id is None:
            return None
        row = conn.execute(
            "SELECT * FROM floors WHERE organization_id = ? AND building_id = ? AND floor_number = ?"
            + exclude_sql + " LIMIT 1",
            (organization_id, building_id, data["floor_number"]) + exclude_params,
        ).fetchone()
        return row_to_dict(row) if row else None

    if resource.name == "buildings":
        if data.get("name") is None:
            return None
        row = conn.execute(
            "SELECT * FROM buildings WHERE organization_id = ? AND name = ?" + exclude_sql + " LIMIT 1",
            (organization_id, str(data["name"]).strip()) + exclude_params,
        ).fetchone()
        return row_to_dict(row) if row else None

    if resource.name == "suites":
        if data.get("suite_number") is None and data.get("name") is None and data.get("floor_id") is None:
            return None
        floor_id = data.get("floor_id", existing.get("floor_id"))
        if data.get("suite_number") is not None:
            raw_key = data["suite_number"]
        elif data.get("name") is not None:
            raw_key = data["name"]
        else:
            raw_key = existing.get("suite_number") or existing.get("name")
        if floor_id is None or raw_key is None:
            return None
        matches = build_suite_matches(raw_key)
        match_sql = " OR ".join(f"{column} = ?" for column, _ in matches)
        row = conn.execute(
            f"SELECT * FROM suites WHERE organization_id = ? AND floor_id = ? AND ({match_sql})"
            + exclude_sql + " LIMIT 1",
            (organization_id, floor_id, *[value for _, value in matches]) + exclude_params,
        ).fetchone()
        return row_to_dict(row) if row else None

    return None


# ---- CRUD ---------------------------------------------------------------


def list_records(
    conn: sqlite3.Connection,
    resource: Resource,
    organization_id: int,
    limit: int = 500,
    skip: int = 0,
    where: str = "",
    params: tuple = (),
) -> List[Dict[str, Any]]:
    rows = scoped_select(
        conn,
        resource.table,
        organization_id,
        where=where,
        params=params,
        order_by="updated_at DESC, id DESC",
        limit=limit,
        offset=skip,
    )
    return [row_to_dict(r) for r in rows]


def get_record(conn: sqlite3.Connection, resource: Resource, record_id: Any, organization_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        f"SELECT * FROM {resource.table} WHERE id = ? AND organization_id = ?",
        (parse_id(record_id), organization_id),
    ).fetchone()
    return row_to_dict(row) if row else None


def create_record(
    conn: sqlite3.Connection,
    resource: Resource,
    data: Dict[str, Any],
    organization_id: int,
) -> RecordResult:
    """
    Insert a record (or update it when the payload names an existing id).
    An id not owned by the organization is ignored and a new row gets a fresh id.
    Returns the conflicting record with duplicate=True instead of inserting a twin.
    """
    requested_id = parse_id(data.get("id"))
    if requested_id is not None:
        if get_record(conn, resource, requested_id, organization_id) is not None:
            updated = update_record(conn, resource, requested_id, data, organization_id)
            return updated

    payload = clean_payload(resource, data)
    duplicate = find_duplicate(conn, resource, organization_id, payload)
    if duplicate:
        if IS_DEV:
            print(f"[RECORDS] Duplicate {resource.name} for organization_id={organization_id}: id={duplicate.get('id')}")
        return RecordResult(record=duplicate, duplicate=True)

    now = now_iso()
    payload["organization_id"] = organization_id
    if resource.class_name:
        payload["class_name"] = resource.class_name
    payload["created_at"] = now
    payload["updated_at"] = now

    columns = ", ".join(payload.keys())
    placeholders = ", ".join("?" for _ in payload)
    cur = conn.execute(
        f"INSERT INTO {resource.table} ({columns}) VALUES ({placeholders})",
        tuple(payload.values()),
    )
    conn.commit()
    record = get_record(conn, resource, cur.lastrowid, organization_id)
    if IS_DEV:
        print(f"[RECORDS] Created {resource.name} id={cur.lastrowid}, organization_id={organization_id}")
    return RecordResult(record=record)


def update_record(
    conn: sqlite3.Connection,
    resource: Resource,
    record_id: Any,
    data: Dict[str, Any],
    organization_id: int,
) -> Optional[RecordResult]:
    """None when the record does not exist in the organization."""
    existing = get_record(conn, resource, record_id, organization_id)
    if existing is None:
        return None

    payload = clean_payload(resource, {k: v for k, v in data.items() if k != "id"})
    duplicate = find_duplicate(conn, resource, organization_id, payload, existing=existing)
    if duplicate:
        return RecordResult(record=duplicate, duplicate=True)

    if payload:
        payload["updated_at"] = now_iso()
        assignments = ", ".join(f"{column} = ?" for column in payload)
        conn.execute(
            f"UPDATE {resource.table} SET {assignments} WHERE id = ? AND organization_id = ?",
            tuple(payload.values()) + (existing["id"], organization_id),
        )
        conn.commit()
    return RecordResult(record=get_record(conn, resource, existing["id"], organization_id))


def delete_record(conn: sqlite3.Connection, resource: Resource, record_id: Any, organization_id: int) -> bool:
    cur = conn.execute(
        f"DELETE FROM {resource.table} WHERE id = ? AND organization_id = ?",
        (parse_id(record_id), organization_id),
    )
    conn.commit()
    return cur.rowcount > 0
