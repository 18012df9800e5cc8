# ---------------------------------------------------------
# tenantbook/main.py
# TenantBook - Property Management Backend
#
# Run: uvicorn tenantbook.main:app --reload (from repo root)
#
# - FastAPI + SQLite, Redis for token revocation and notification events
# - /api/auth            : register, login, refresh, password reset, logout
# - /api/tenants         : tenant directory with plan quotas
# - /api/tenant          : portal password self-service and admin reset
# - /api/users           : staff users and memberships
# - /api/buildings|floors|suites : property structure
# - /api/leases|payments|tickets|messages|notifications
# - /api/plan_settings, /api/usage, /api/organization
# - /api/activity-logs, /api/error-logs
# ---------------------------------------------------------

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenantbook import (
    routes_activity,
    routes_auth,
    routes_leases,
    routes_messages,
    routes_notifications,
    routes_payments,
    routes_plans,
    routes_properties,
    routes_records,
    routes_tenants,
    routes_tickets,
    routes_users,
)
from tenantbook.config import APP_VERSION, CORS_ORIGINS, ENV, IS_DEV
from tenantbook.db import get_db, init_db
from tenantbook.errors import register_exception_handlers
from tenantbook.redis_client import redis_status

STARTED_AT = time.time()

# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
app = FastAPI(title="TenantBook Backend", version=APP_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if IS_DEV else CORS_ORIGINS,
    allow_credentials=not IS_DEV,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Tenant-Quota-Remaining"],
)

register_exception_handlers(app)

init_db()


# ============================================================================
# API ENDPOINT CLASSIFICATION & SECURITY MODEL
# ============================================================================
#
# [PUBLIC] - No authentication required
#   • /health, /api/health
#   • /api/auth/register, /api/auth/login, /api/auth/validate-user
#   • /api/auth/refreshtoken (uses refresh token, not access token)
#   • /api/auth/forget-password, /api/auth/reset-password
#   • POST /api/contact_messages (website contact form)
#
# [AUTH_ONLY] - Requires authentication, any role
#   • /api/auth/logout, /api/auth/me
#   • /api/plan_settings (read), /api/usage, /api/organization (read)
#   • /api/notifications
#
# [ORG_SCOPED] - Requires authentication AND organization isolation
#   All queries filter by organization_id from the session.
#   IDs from the client are verified against the session's organization.
#   Return 404 (not 403) when an ID doesn't exist in the organization.
#
#   Admin roles (admin, clientadmin) for mutations:
#     • /api/tenants, /api/leases, /api/payments
#     • /api/users, /api/tenant/admin/reset-tenant-password
#     • /api/buildings, /api/floors, /api/suites
#     • /api/announcements, /api/sms_messages
#     • /api/activity-logs, /api/error-logs
#
#   Portal tenants (role=tenant) additionally:
#     • read their own tenant record, leases, payments and location
#     • set their own portal password
#     • open, edit (while Open) and comment on their own tickets
#     • send and read their own messages
#
# ENFORCEMENT RULES:
# 1. All ORG_SCOPED endpoints MUST use AuthContext from require_auth_context()
# 2. Never trust organization_id from request payload for writes
# 3. All DB queries MUST include "WHERE organization_id = ?"
# 4. Tenant creation MUST pass the plan quota check first
#
# ============================================================================

app.include_router(routes_auth.router)
app.include_router(routes_tenants.router)
app.include_router(routes_tenants.portal_router)
app.include_router(routes_users.router)
app.include_router(routes_properties.buildings_router)
app.include_router(routes_properties.floors_router)
app.include_router(routes_properties.suites_router)
app.include_router(routes_records.announcements_router)
app.include_router(routes_records.sms_router)
app.include_router(routes_records.contact_router)
app.include_router(routes_leases.router)
app.include_router(routes_payments.router)
app.include_router(routes_tickets.router)
app.include_router(routes_messages.router)
app.include_router(routes_notifications.router)
app.include_router(routes_plans.router)
app.include_router(routes_plans.organization_router)
app.include_router(routes_activity.router)
app.include_router(routes_activity.error_router)


# ---------------------------------------------------------
# Routes
# ---------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/health")
def api_health():
    """Readiness check: 503 when the database does not answer."""
    database: Dict[str, Any] = {"status": "ok"}
    try:
        conn = get_db()
        try:
            conn.execute("SELECT 1").fetchone()
        finally:
            conn.close()
    except Exception as e:
        print(f"[HEALTH] Database check failed: {e}")
        database = {"status": "error", "error": str(e) if IS_DEV else "unavailable"}

    healthy = database["status"] == "ok"
    body = {
        "status": "ok" if healthy else "error",
        "timestamp": datetime.utcnow().isoformat(),
        "uptime": round(time.time() - STARTED_AT, 3),
        "environment": ENV,
        "version": APP_VERSION,
        "database": database,
        "redis": {"status": redis_status()},
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)
