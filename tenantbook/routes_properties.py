"""
tenantbook/routes_properties.py

Buildings, floors and suites.

Portal tenants only see the building, floor and suite their tenant
record points at.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException

from tenantbook.auth_context import AuthContext
from tenantbook.records import RESOURCES
from tenantbook.routes_records import make_record_router


def _tenant_location(column: str):
    def _filter(conn: sqlite3.Connection, ctx: AuthContext) -> Tuple[Optional[str], tuple]:
        if not ctx.tenant_id:
            return None, ()
        row = conn.execute(
            f"SELECT {column} FROM tenants WHERE id = ? AND organization_id = ?",
            (ctx.tenant_id, ctx.organization_id),
        ).fetchone()
        if not row or row[column] is None:
            return None, ()
        return "id = ?", (row[column],)

    return _filter


def prepare_suite(payload: Dict[str, Any], ctx: AuthContext) -> Dict[str, Any]:
    """Suites hang off a floor; the display name falls back to the suite number."""
    if payload.get("floor_id") in (None, ""):
        raise HTTPException(status_code=400, detail="floor_id is required when creating a suite")
    if payload.get("suite_number") is not None:
        payload["suite_number"] = str(payload["suite_number"]).strip()
    if not payload.get("name") and payload.get("suite_number"):
        payload["name"] = payload["suite_number"]
    return payload


buildings_router = make_record_router(
    RESOURCES["buildings"],
    "/api/buildings",
    tenant_filter=_tenant_location("building_id"),
)

floors_router = make_record_router(
    RESOURCES["floors"],
    "/api/floors",
    tenant_filter=_tenant_location("floor_id"),
)

suites_router = make_record_router(
    RESOURCES["suites"],
    "/api/suites",
    tenant_filter=_tenant_location("suite_id"),
    prepare_create=prepare_suite,
)
