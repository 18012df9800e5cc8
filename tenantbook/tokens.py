# tenantbook/tokens.py
# JWT issuing/decoding and password/reset-token hashing

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from tenantbook.config import (
    ACCESS_TOKEN_HOURS,
    ALGORITHM,
    REFRESH_SECRET_KEY,
    REFRESH_TOKEN_DAYS,
    SECRET_KEY,
)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return hash_password(password) == password_hash


def generate_reset_token() -> str:
    """High-entropy password reset token (never stored in plain text)."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def session_claims(
    subject: Any,
    email: str,
    role: str,
    organization_id: Optional[int],
    plan: str,
    tenant_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Claims shared by access and refresh tokens."""
    claims = {
        "sub": str(subject),
        "id": subject,
        "email": email,
        "role": role,
        "organization_id": organization_id,
        "plan": plan,
    }
    if tenant_id:
        claims["tenant_id"] = tenant_id
    return claims


def _encode(claims: Dict[str, Any], secret: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = int(now.timestamp())
    payload["iat_ms"] = int(now.timestamp() * 1000)
    payload["exp"] = int((now + lifetime).timestamp())
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def create_access_token(claims: Dict[str, Any]) -> str:
    return _encode(claims, SECRET_KEY, timedelta(hours=ACCESS_TOKEN_HOURS))


def create_refresh_token(claims: Dict[str, Any]) -> str:
    payload = dict(claims)
    payload["type"] = "refresh"
    return _encode(payload, REFRESH_SECRET_KEY, timedelta(days=REFRESH_TOKEN_DAYS))


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode an access token. Raises jwt.InvalidTokenError (incl. expiry)."""
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])


def decode_refresh_token(token: str) -> Dict[str, Any]:
    payload = jwt.decode(token, REFRESH_SECRET_KEY, algorithms=[ALGORITHM])
    if payload.get("type") != "refresh":
        raise jwt.InvalidTokenError("Not a refresh token")
    return payload


def issued_at_ms(payload: Dict[str, Any]) -> int:
    """Issue time in ms; tokens without iat_ms fall back to iat * 1000."""
    if payload.get("iat_ms") is not None:
        return int(payload["iat_ms"])
    return int(payload.get("iat", 0)) * 1000
