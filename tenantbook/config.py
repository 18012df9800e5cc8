# tenantbook/config.py
# Environment-aware configuration for the TenantBook backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "tenantbook-dev-secret")
REFRESH_SECRET_KEY = os.environ.get("REFRESH_SECRET_KEY", SECRET_KEY + "-refresh")
ALGORITHM = "HS256"

# Token lifetimes
ACCESS_TOKEN_HOURS = int(os.environ.get("ACCESS_TOKEN_HOURS", "24"))
REFRESH_TOKEN_DAYS = int(os.environ.get("REFRESH_TOKEN_DAYS", "7"))
RESET_TOKEN_MINUTES = int(os.environ.get("RESET_TOKEN_MINUTES", "30"))

# Database configuration (relative paths resolve against the package directory)
DATABASE_PATH = os.environ.get("DATABASE_PATH", "tenantbook.db")

# Redis (blacklist, logout markers, notification pub/sub). Empty disables it.
REDIS_URL = os.environ.get("REDIS_URL", "").strip()
REDIS_ENABLED = bool(REDIS_URL)
NOTIFICATIONS_CHANNEL = os.environ.get("NOTIFICATIONS_CHANNEL", "notifications")
LOGOUT_MARKER_TTL_SECONDS = int(os.environ.get("LOGOUT_MARKER_TTL_SECONDS", "86400"))

# Plans
DEFAULT_PLAN = os.environ.get("DEFAULT_PLAN", "starter")

# Public contact form lands in this organization unless the body names one
PUBLIC_CONTACT_ORGANIZATION_ID = int(os.environ.get("PUBLIC_CONTACT_ORGANIZATION_ID", "1"))

APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")
ERROR_LOG_RETENTION_DAYS = int(os.environ.get("ERROR_LOG_RETENTION_DAYS", "30"))

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Database: SQLite ({DATABASE_PATH})")
print(f"[CONFIG] Redis: {'enabled' if REDIS_ENABLED else 'disabled'}")
print(f"[CONFIG] Access token: {ACCESS_TOKEN_HOURS} hours")
print(f"[CONFIG] Refresh token: {REFRESH_TOKEN_DAYS} days")
