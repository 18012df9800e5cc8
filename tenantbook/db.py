# tenantbook/db.py
# SQLite storage layer: connections, row conversion and idempotent schema setup

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path as FsPath
from typing import Any, Dict, Optional

from tenantbook.config import DATABASE_PATH, ERROR_LOG_RETENTION_DAYS, IS_DEV
from tenantbook.plans import PLAN_IDS, ensure_plan_settings_exist

if FsPath(DATABASE_PATH).is_absolute():
    DB_PATH = DATABASE_PATH
else:
    DB_PATH = str(FsPath(__file__).resolve().parent / DATABASE_PATH)

# Columns stored as JSON text and decoded on read
JSON_COLUMNS = {"recipients", "tags", "metadata", "recurring_charges", "late_fee"}

# Columns stored as 0/1 and exposed as booleans
BOOL_COLUMNS = {
    "has_portal_access",
    "password_set",
    "is_deleted",
    "scheduler_enabled",
    "tenant_directory_enabled",
    "payments_enabled",
    "buildings_enabled",
    "messaging_enabled",
    "announcements_enabled",
    "automation_enabled",
}


def get_db() -> sqlite3.Connection:
    """Create and return a SQLite connection with Row factory."""
    conn = sqlite3.connect(DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def now_iso() -> str:
    return datetime.utcnow().isoformat()


def row_to_dict(row) -> dict:
    """
    Convert a sqlite3.Row to a plain dict.

    This is the single boundary for turning DB rows into API payloads:
    JSON columns are decoded and flag columns become booleans.
    Returns {} for None.
    """
    if row is None:
        return {}
    data = dict(row)
    for key, value in data.items():
        if key in JSON_COLUMNS and isinstance(value, str):
            try:
                data[key] = json.loads(value)
            except ValueError:
                pass
        elif key in BOOL_COLUMNS and value is not None:
            data[key] = bool(value)
    return data


def encode_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value)


# ---------------------------------------------------------
# Migration helpers
# ---------------------------------------------------------
def get_table_columns(conn: sqlite3.Connection, table_name: str) -> set:
    """Return set of column names for a table using PRAGMA table_info."""
    cur = conn.cursor()
    cur.execute(f"PRAGMA table_info({table_name})")
    return {row["name"] for row in cur.fetchall()}


def ensure_column(conn: sqlite3.Connection, table_name: str, column_name: str, ddl_fragment: str) -> bool:
    """Add column to table if missing. Returns True if the migration was applied."""
    if column_name in get_table_columns(conn, table_name):
        return False

    try:
        conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {ddl_fragment}")
        conn.commit()
        print(f"[MIGRATION] Added column {table_name}.{column_name} ({ddl_fragment})")
        return True
    except sqlite3.OperationalError as e:
        if "duplicate column" not in str(e).lower():
            print(f"[MIGRATION] Warning: Could not add {table_name}.{column_name}: {e}")
        return False


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        owner_user_id INTEGER,
        plan TEXT DEFAULT 'starter',
        status TEXT DEFAULT 'active',
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT DEFAULT 'user',
        plan TEXT,
        organization_id INTEGER,
        tenant_id TEXT,
        is_deleted INTEGER DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS organization_memberships (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        organization_id INTEGER NOT NULL,
        role TEXT DEFAULT 'user',
        status TEXT DEFAULT 'active',
        created_at TEXT,
        UNIQUE(user_id, organization_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plan_settings (
        id TEXT PRIMARY KEY,
        name TEXT,
        tenant_limit INTEGER,
        building_limit INTEGER,
        floor_limit INTEGER,
        suite_limit INTEGER,
        price REAL DEFAULT 0,
        price_yearly REAL DEFAULT 0,
        email_quota INTEGER,
        sms_quota INTEGER,
        tenant_directory_enabled INTEGER DEFAULT 0,
        payments_enabled INTEGER DEFAULT 0,
        buildings_enabled INTEGER DEFAULT 0,
        messaging_enabled INTEGER DEFAULT 1,
        announcements_enabled INTEGER DEFAULT 1,
        automation_enabled INTEGER DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id TEXT PRIMARY KEY,
        organization_id INTEGER NOT NULL,
        first_name TEXT,
        last_name TEXT,
        email TEXT,
        phone TEXT,
        building_id INTEGER,
        floor_id INTEGER,
        suite_id INTEGER,
        lease_start TEXT,
        lease_end TEXT,
        status TEXT DEFAULT 'Active',
        rent_due REAL DEFAULT 0,
        rent_paid REAL DEFAULT 0,
        balance REAL DEFAULT 0,
        has_portal_access INTEGER DEFAULT 0,
        password_hash TEXT,
        password_set INTEGER DEFAULT 0,
        tags TEXT,
        notes TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS leases (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        tenant_id TEXT,
        unit_id TEXT,
        lease_start TEXT,
        lease_end TEXT,
        rent_amount REAL DEFAULT 0,
        due_day INTEGER DEFAULT 1,
        grace_period_days INTEGER DEFAULT 0,
        late_fee TEXT,
        deposit REAL DEFAULT 0,
        recurring_charges TEXT,
        status TEXT DEFAULT 'Active',
        notes TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        tenant_id TEXT,
        lease_id INTEGER,
        amount REAL NOT NULL DEFAULT 0,
        due_date TEXT,
        paid_date TEXT,
        status TEXT DEFAULT 'Pending',
        method TEXT,
        notes TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        tenant_id TEXT,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT DEFAULT 'Open',
        priority TEXT DEFAULT 'Medium',
        created_by_user_id TEXT,
        assigned_to_user_id INTEGER,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_comments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        ticket_id INTEGER NOT NULL,
        author_id TEXT,
        author_role TEXT,
        body TEXT NOT NULL,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS buildings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        name TEXT,
        address TEXT,
        city TEXT,
        state TEXT,
        country TEXT,
        zip_code TEXT,
        class_name TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS floors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        building_id INTEGER,
        floor_number INTEGER,
        name TEXT,
        class_name TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS suites (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        building_id INTEGER,
        floor_id INTEGER,
        suite_number TEXT,
        name TEXT,
        size_sqft REAL,
        rent REAL,
        status TEXT,
        class_name TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        sender_id TEXT,
        sender_role TEXT,
        sender_tenant_id TEXT,
        to_tenant_id TEXT,
        subject TEXT,
        body TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS announcements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        title TEXT,
        body TEXT,
        created_by TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sms_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        to_tenant_id TEXT,
        phone TEXT,
        body TEXT,
        status TEXT DEFAULT 'queued',
        created_by TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS contact_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        name TEXT,
        email TEXT,
        phone TEXT,
        subject TEXT,
        message TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        title TEXT,
        body TEXT,
        resource_type TEXT,
        resource_id TEXT,
        recipients TEXT,
        created_by TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notification_reads (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        notification_id INTEGER NOT NULL,
        user_key TEXT NOT NULL,
        read_at TEXT,
        UNIQUE(notification_id, user_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS activity_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER,
        user_id TEXT,
        username TEXT,
        action TEXT NOT NULL,
        resource_type TEXT NOT NULL,
        resource_id TEXT,
        description TEXT,
        ip TEXT,
        user_agent TEXT,
        status TEXT DEFAULT 'SUCCESS',
        metadata TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS error_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        message TEXT,
        name TEXT,
        stack TEXT,
        route TEXT,
        method TEXT,
        ip TEXT,
        user_id TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS password_resets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        token_hash TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        used_at TEXT,
        created_at TEXT
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tenants_org ON tenants(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_leases_org_unit ON leases(organization_id, unit_id)",
    "CREATE INDEX IF NOT EXISTS idx_payments_org ON payments(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_org_tenant ON tickets(organization_id, tenant_id)",
    "CREATE INDEX IF NOT EXISTS idx_floors_org_building ON floors(organization_id, building_id)",
    "CREATE INDEX IF NOT EXISTS idx_suites_org_floor ON suites(organization_id, floor_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_org ON messages(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_org_created ON notifications(organization_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_activity_org_created ON activity_logs(organization_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_error_logs_created ON error_logs(created_at)",
]


def purge_error_logs(conn: sqlite3.Connection, days: int = ERROR_LOG_RETENTION_DAYS) -> int:
    """Delete error log rows older than the retention window. Returns rows removed."""
    cutoff = (datetime.utcnow() - timedelta(days=days)).isoformat()
    cur = conn.execute("DELETE FROM error_logs WHERE created_at < ?", (cutoff,))
    conn.commit()
    if cur.rowcount:
        print(f"[DB] Purged {cur.rowcount} error log(s) older than {days} days")
    return cur.rowcount


def init_db() -> None:
    conn = get_db()
    try:
        cur = conn.cursor()
        for ddl in SCHEMA:
            cur.execute(ddl)
        for ddl in INDEXES:
            cur.execute(ddl)
        conn.commit()

        # Added after the first schema revision
        ensure_column(conn, "organizations", "scheduler_enabled", "INTEGER DEFAULT 0")

        for plan in PLAN_IDS:
            ensure_plan_settings_exist(conn, plan)
        conn.commit()

        purge_error_logs(conn)
        if IS_DEV:
            print(f"[DB] Schema ready at {DB_PATH}")
    finally:
        conn.close()


def fetch_one(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> Dict[str, Any]:
    """Run a query and return the first row as a dict ({} when nothing matched)."""
    return row_to_dict(conn.execute(sql, params).fetchone())
