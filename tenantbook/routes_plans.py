"""
tenantbook/routes_plans.py

Plan settings, tenant usage and the caller's organization.

Security guarantees:
- Plan settings are readable by any authenticated session, writable by admin roles
- Usage and organization data come from the session's organization only
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from tenantbook.activity import log_activity
from tenantbook.auth_context import AuthContext, require_auth_context
from tenantbook.db import get_db, now_iso, row_to_dict
from tenantbook.dependencies import require_admin
from tenantbook.models import ResourceType
from tenantbook.plans import ensure_plan_settings_exist, get_plan_settings, get_tenant_quota, normalize_plan
from tenantbook.schemas import OrganizationUpdateRequest, PlanSettingsRequest, wrap_success

router = APIRouter(
    prefix="/api/plan_settings",
    tags=["plans"],
)

organization_router = APIRouter(
    prefix="/api",
    tags=["organization"],
)

FLAG_FIELDS = (
    "tenant_directory_enabled",
    "payments_enabled",
    "buildings_enabled",
    "messaging_enabled",
    "announcements_enabled",
    "automation_enabled",
)
SETTING_FIELDS = (
    "name",
    "tenant_limit",
    "building_limit",
    "floor_limit",
    "suite_limit",
    "price",
    "price_yearly",
    "email_quota",
    "sms_quota",
) + FLAG_FIELDS


def _setting_values(req: PlanSettingsRequest) -> Dict[str, Any]:
    values = {}
    for field, value in req.dict(exclude_unset=True).items():
        if field not in SETTING_FIELDS:
            continue
        values[field] = int(value) if field in FLAG_FIELDS and value is not None else value
    return values


@router.get("")
def list_plan_settings(ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        rows = conn.execute("SELECT * FROM plan_settings ORDER BY COALESCE(price, 0), id").fetchall()
    finally:
        conn.close()
    return wrap_success(200, [row_to_dict(r) for r in rows])


@router.get("/{plan_id}")
def get_plan_setting(plan_id: str, ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        row = get_plan_settings(conn, normalize_plan(plan_id))
    finally:
        conn.close()
    if row is None:
        raise HTTPException(status_code=404, detail="Plan settings not found")
    return wrap_success(200, row_to_dict(row))


@router.post("", status_code=201)
def create_plan_setting(req: PlanSettingsRequest, request: Request, ctx: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    """
    Raises:
        HTTPException(400): No plan/id given
        HTTPException(409): Settings for the plan already exist
    """
    raw = req.plan or req.id
    if not raw or not raw.strip():
        raise HTTPException(status_code=400, detail="plan is required")
    plan = normalize_plan(raw)

    conn = get_db()
    try:
        if get_plan_settings(conn, plan) is not None:
            raise HTTPException(status_code=409, detail=f"Plan settings for {plan} already exist")
        values = _setting_values(req)
        values.setdefault("name", plan.capitalize())
        now = now_iso()
        columns = ["id", *values.keys(), "created_at", "updated_at"]
        conn.execute(
            f"INSERT INTO plan_settings ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            (plan, *values.values(), now, now),
        )
        conn.commit()
        row = get_plan_settings(conn, plan)
        log_activity(conn, ctx, request, "CREATE", ResourceType.plan, f"Created plan settings {plan}",
                     resource_id=plan, body=req.dict())
    finally:
        conn.close()
    print(f"[PLANS] Created plan settings: plan={plan}")
    return wrap_success(201, row_to_dict(row))


@router.put("/{plan_id}")
def upsert_plan_setting(
    plan_id: str,
    req: PlanSettingsRequest,
    request: Request,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    """Update a plan's settings, creating the row from defaults first when missing."""
    conn = get_db()
    try:
        plan = ensure_plan_settings_exist(conn, plan_id)
        values = _setting_values(req)
        if values:
            values["updated_at"] = now_iso()
            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(f"UPDATE plan_settings SET {assignments} WHERE id = ?", (*values.values(), plan))
        conn.commit()
        row = get_plan_settings(conn, plan)
        log_activity(conn, ctx, request, "UPDATE", ResourceType.plan, f"Updated plan settings {plan}",
                     resource_id=plan, body=req.dict(exclude_unset=True))
    finally:
        conn.close()
    return wrap_success(200, row_to_dict(row))


# ---- Usage / organization ----------------------------------------------


@organization_router.get("/usage")
def get_usage(ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        quota = get_tenant_quota(conn, ctx.organization_id)
    finally:
        conn.close()
    return {"organization_id": ctx.organization_id, "plan": quota.plan, "tenants": quota.as_dict()}


@organization_router.get("/organization")
def get_organization(ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    conn = get_db()
    try:
        row = conn.execute("SELECT * FROM organizations WHERE id = ?", (ctx.organization_id,)).fetchone()
        if row is None:
            raise HTTPException(status_code=404, detail="Organization not found")
        members = conn.execute(
            "SELECT COUNT(*) AS n FROM organization_memberships WHERE organization_id = ? AND status = 'active'",
            (ctx.organization_id,),
        ).fetchone()["n"]
    finally:
        conn.close()
    organization = row_to_dict(row)
    organization["member_count"] = members
    return wrap_success(200, organization)


@organization_router.put("/organization")
def update_organization(
    req: OrganizationUpdateRequest,
    request: Request,
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    """Rename the organization, change its plan (normalized) or toggle the scheduler flag."""
    changes = req.dict(exclude_unset=True)
    conn = get_db()
    try:
        updates: Dict[str, Any] = {}
        if changes.get("name"):
            updates["name"] = changes["name"].strip()
        if changes.get("plan"):
            updates["plan"] = ensure_plan_settings_exist(conn, changes["plan"])
        if changes.get("scheduler_enabled") is not None:
            updates["scheduler_enabled"] = int(changes["scheduler_enabled"])
        if updates:
            updates["updated_at"] = now_iso()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(f"UPDATE organizations SET {assignments} WHERE id = ?", (*updates.values(), ctx.organization_id))
        conn.commit()
        row = conn.execute("SELECT * FROM organizations WHERE id = ?", (ctx.organization_id,)).fetchone()
        log_activity(conn, ctx, request, "UPDATE", ResourceType.system, "Updated organization",
                     resource_id=ctx.organization_id, body=changes)
    finally:
        conn.close()
    if "plan" in updates:
        print(f"[PLANS] Organization {ctx.organization_id} moved to plan={updates['plan']}")
    return wrap_success(200, row_to_dict(row))
