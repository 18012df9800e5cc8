"""
Plan tiers, plan settings and tenant quota helpers for TenantBook.

This module is intentionally dependency-light: it works on a sqlite3
connection handed in by the caller so db.py can seed plan settings without
circular imports.

All plan enforcement is server-side (never trust the client).
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from tenantbook.config import DEFAULT_PLAN, IS_DEV


PLAN_IDS = ("free", "starter", "pro", "business", "enterprise")

# Display names used by billing pages and older clients
PLAN_NAME_MAPPING: Dict[str, str] = {
    "Affordable for small landlords": "starter",
    "Professional": "pro",
    "Business": "business",
    "Best for growing portfolios": "enterprise",
    "Free": "free",
    "Starter": "starter",
    "Pro": "pro",
    "Enterprise": "enterprise",
}

UNLIMITED_TOKENS = {"unlimited", "infinity", "inf", "-1"}


def normalize_plan(plan_name: Optional[str]) -> str:
    """Map a display name or raw plan value to a plan id. Empty means free."""
    if not plan_name:
        return "free"
    plan_name = str(plan_name).strip()
    if plan_name in PLAN_NAME_MAPPING:
        return PLAN_NAME_MAPPING[plan_name]
    return plan_name.lower() or "free"


def _parse_limit(raw: Optional[str], default: Optional[int]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() in UNLIMITED_TOKENS:
        return None
    try:
        return int(raw)
    except ValueError:
        print(f"[QUOTA] Ignoring invalid tenant limit override: {raw!r}")
        return default


_BUILTIN_TENANT_LIMITS: Dict[str, Optional[int]] = {
    "free": 5,
    "starter": 25,
    "pro": 100,
    "business": 500,
    "enterprise": None,  # unlimited
}

# Fallback limits when an organization's plan has no plan_settings row.
# Overridable per plan with PLAN_TENANT_LIMIT_<PLAN>.
DEFAULT_TENANT_LIMITS: Dict[str, Optional[int]] = {
    plan: _parse_limit(os.environ.get(f"PLAN_TENANT_LIMIT_{plan.upper()}"), limit)
    for plan, limit in _BUILTIN_TENANT_LIMITS.items()
}


# ---- Plan settings ------------------------------------------------------


@dataclass(frozen=True)
class PlanDefaults:
    """Settings written for a plan the first time it is seen."""
    name: str
    tenant_limit: Optional[int]
    tenant_directory_enabled: bool
    payments_enabled: bool
    buildings_enabled: bool
    messaging_enabled: bool = True
    announcements_enabled: bool = True


CUSTOM_PLAN_TENANT_LIMIT = 100


def plan_defaults(plan: str) -> PlanDefaults:
    paid = plan != "free"
    tenant_limit = DEFAULT_TENANT_LIMITS.get(plan, CUSTOM_PLAN_TENANT_LIMIT)
    return PlanDefaults(
        name=plan.capitalize(),
        tenant_limit=tenant_limit,
        tenant_directory_enabled=paid,
        payments_enabled=paid,
        buildings_enabled=paid,
    )


def get_plan_settings(conn: sqlite3.Connection, plan: str) -> Optional[sqlite3.Row]:
    return conn.execute("SELECT * FROM plan_settings WHERE id = ?", (plan,)).fetchone()


def ensure_plan_settings_exist(conn: sqlite3.Connection, plan_name: Optional[str]) -> str:
    """
    Make sure a plan_settings row exists for the plan. Returns the normalized plan.

    The caller owns the transaction.
    """
    plan = normalize_plan(plan_name)
    if get_plan_settings(conn, plan) is not None:
        return plan

    defaults = plan_defaults(plan)
    now = datetime.utcnow().isoformat()
    conn.execute(
        """
        INSERT INTO plan_settings (
            id, name, tenant_limit, tenant_directory_enabled, payments_enabled,
            buildings_enabled, messaging_enabled, announcements_enabled,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            plan,
            defaults.name,
            defaults.tenant_limit,
            int(defaults.tenant_directory_enabled),
            int(defaults.payments_enabled),
            int(defaults.buildings_enabled),
            int(defaults.messaging_enabled),
            int(defaults.announcements_enabled),
            now,
            now,
        ),
    )
    print(f"[QUOTA] Created default plan settings for plan={plan}")
    return plan


def get_organization_plan(conn: sqlite3.Connection, organization_id: Optional[int]) -> str:
    """Return the normalized plan for an organization (DEFAULT_PLAN when unknown)."""
    if organization_id is None:
        return normalize_plan(DEFAULT_PLAN)
    row = conn.execute("SELECT plan FROM organizations WHERE id = ?", (organization_id,)).fetchone()
    if row and row["plan"]:
        return normalize_plan(row["plan"])
    return normalize_plan(DEFAULT_PLAN)


def tenant_directory_enabled(conn: sqlite3.Connection, plan: str) -> bool:
    """Portal logins are allowed when the plan enables the tenant directory (paid plans by default)."""
    settings = get_plan_settings(conn, plan)
    if settings is None:
        return plan != "free"
    return bool(settings["tenant_directory_enabled"])


# ---- Tenant quota -------------------------------------------------------


def resolve_tenant_limit(conn: sqlite3.Connection, plan: str) -> Optional[int]:
    """
    Tenant limit for a plan. None means unlimited.

    plan_settings wins when present (NULL or negative = unlimited); otherwise
    DEFAULT_TENANT_LIMITS applies, and plans outside the tiers get CUSTOM_PLAN_TENANT_LIMIT
    (the same value plan_defaults seeds).
    """
    settings = get_plan_settings(conn, plan)
    if settings is not None:
        limit = settings["tenant_limit"]
        if limit is None or limit < 0:
            return None
        return int(limit)
    return DEFAULT_TENANT_LIMITS.get(plan, CUSTOM_PLAN_TENANT_LIMIT)


@dataclass
class TenantQuota:
    plan: str
    used: int
    limit: Optional[int]

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    def as_dict(self) -> Dict[str, Optional[int]]:
        return {"used": self.used, "limit": self.limit, "remaining": self.remaining}

    def header_value(self) -> str:
        return "unlimited" if self.unlimited else str(self.remaining)


class QuotaExceededError(Exception):
    """Raised when creating tenants would exceed the organization's plan limit."""

    def __init__(self, message: str, quota: TenantQuota):
        super().__init__(message)
        self.message = message
        self.quota = quota


def get_tenant_quota(conn: sqlite3.Connection, organization_id: int) -> TenantQuota:
    plan = get_organization_plan(conn, organization_id)
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM tenants WHERE organization_id = ?",
        (organization_id,),
    ).fetchone()
    used = int(row["n"]) if row else 0
    return TenantQuota(plan=plan, used=used, limit=resolve_tenant_limit(conn, plan))


def enforce_tenant_quota(conn: sqlite3.Connection, organization_id: int, adding: int = 1) -> TenantQuota:
    """
    Raise QuotaExceededError if adding `adding` tenants would pass the plan limit.
    Returns the current quota on success.
    """
    quota = get_tenant_quota(conn, organization_id)

    if quota.unlimited:
        return quota

    if quota.limit <= 0:
        print(f"[QUOTA] Plan {quota.plan} does not allow tenants: organization_id={organization_id}")
        raise QuotaExceededError("Your plan does not allow creating tenants", quota)

    if quota.used + adding > quota.limit:
        print(f"[QUOTA] Tenant limit reached: organization_id={organization_id}, "
              f"plan={quota.plan}, used={quota.used}, limit={quota.limit}, adding={adding}")
        raise QuotaExceededError(
            f'Tenant limit reached for plan "{quota.plan}" ({quota.limit}). '
            f"Please upgrade to add more tenants.",
            quota,
        )

    if IS_DEV:
        print(f"[QUOTA] Tenant quota ok: organization_id={organization_id}, "
              f"used={quota.used}, limit={quota.limit}, adding={adding}")
    return quota
