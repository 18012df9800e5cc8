"""
tenantbook/routes_auth.py

Authentication endpoints: register, login (staff and portal tenants),
token refresh, password reset and logout with token revocation.

Security guarantees:
- Passwords are only stored hashed
- Login failures never reveal whether the email exists
- Logout blacklists the token in Redis and stamps a per-identity logout
  marker so older tokens for the same identity stop working
"""

from __future__ import annotations

import sqlite3
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from tenantbook.activity import log_activity
from tenantbook.auth_context import SESSION_COOKIE, AuthContext, require_auth_context, session_is_stale
from tenantbook.config import ACCESS_TOKEN_HOURS, DEFAULT_PLAN, IS_DEV, IS_PROD, RESET_TOKEN_MINUTES
from tenantbook.db import get_db, now_iso
from tenantbook.models import ActivityStatus, ResourceType, UserRole
from tenantbook.plans import ensure_plan_settings_exist, get_organization_plan, tenant_directory_enabled
from tenantbook.redis_client import is_token_revoked, mark_user_logout, revoke_token
from tenantbook.schemas import (
    ForgetPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ValidateUserRequest,
)
from tenantbook.tokens import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    generate_reset_token,
    hash_password,
    hash_token,
    session_claims,
    verify_password,
)

router = APIRouter(
    prefix="/api/auth",
    tags=["auth"],
)

INVALID_CREDENTIALS = "Invalid email or password"


def _issue_tokens(response: Response, claims: Dict[str, Any]) -> Dict[str, str]:
    token = create_access_token(claims)
    refresh = create_refresh_token(claims)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        secure=IS_PROD,
        samesite="lax",
        max_age=ACCESS_TOKEN_HOURS * 3600,
    )
    return {"token": token, "refreshToken": refresh}


def _user_claims(conn: sqlite3.Connection, user: sqlite3.Row) -> Dict[str, Any]:
    plan = get_organization_plan(conn, user["organization_id"])
    return session_claims(
        subject=user["id"],
        email=user["email"],
        role=user["role"] or UserRole.user.value,
        organization_id=user["organization_id"],
        plan=plan,
        tenant_id=user["tenant_id"],
    )


def _tenant_claims(conn: sqlite3.Connection, tenant: sqlite3.Row) -> Dict[str, Any]:
    plan = get_organization_plan(conn, tenant["organization_id"])
    return session_claims(
        subject=tenant["id"],
        email=tenant["email"],
        role=UserRole.tenant.value,
        organization_id=tenant["organization_id"],
        plan=plan,
        tenant_id=tenant["id"],
    )


def _user_info(claims: Dict[str, Any], name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": claims["id"],
        "email": claims["email"],
        "name": name,
        "role": claims["role"],
        "organization_id": claims["organization_id"],
        "tenant_id": claims.get("tenant_id"),
        "plan": claims["plan"],
        "isTenant": claims["role"] == UserRole.tenant.value,
    }


def _find_user(conn: sqlite3.Connection, identifier: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        """
        SELECT * FROM users
        WHERE (LOWER(email) = ? OR LOWER(username) = ?) AND COALESCE(is_deleted, 0) = 0
        ORDER BY id LIMIT 1
        """,
        (identifier, identifier),
    ).fetchone()


@router.post("/register", status_code=201)
def register(req: RegisterRequest, request: Request, response: Response) -> Dict[str, Any]:
    """
    Create an organization, its first admin (role clientadmin) and an active
    membership, then log the new user in.

    Raises:
        HTTPException(409): Email or username already taken
    """
    conn = get_db()
    try:
        taken = conn.execute(
            "SELECT id FROM users WHERE LOWER(email) = ? OR LOWER(username) = ?",
            (req.email, req.username.lower()),
        ).fetchone()
        if taken:
            print(f"[REGISTER] Duplicate registration attempt: email={req.email!r}")
            raise HTTPException(status_code=409, detail="User already exists")

        plan = ensure_plan_settings_exist(conn, req.plan or DEFAULT_PLAN)
        now = now_iso()
        org_name = req.organization_name or f"{req.username}'s Organization"
        cur = conn.execute(
            "INSERT INTO organizations (name, plan, status, created_at, updated_at) VALUES (?, ?, 'active', ?, ?)",
            (org_name, plan, now, now),
        )
        organization_id = cur.lastrowid

        cur = conn.execute(
            """
            INSERT INTO users (username, email, password_hash, role, plan, organization_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (req.username, req.email, hash_password(req.password), UserRole.clientadmin.value, plan,
             organization_id, now, now),
        )
        user_id = cur.lastrowid
        conn.execute("UPDATE organizations SET owner_user_id = ? WHERE id = ?", (user_id, organization_id))
        conn.execute(
            "INSERT INTO organization_memberships (user_id, organization_id, role, status, created_at) "
            "VALUES (?, ?, ?, 'active', ?)",
            (user_id, organization_id, UserRole.clientadmin.value, now),
        )
        conn.commit()
        print(f"[REGISTER] Created user_id={user_id}, organization_id={organization_id}, plan={plan}")

        user = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        claims = _user_claims(conn, user)
        log_activity(
            conn, None, request, "REGISTER", ResourceType.user,
            f"User {req.username} registered", resource_id=user_id,
            organization_id=organization_id, user_id=user_id, username=req.username,
            body=req.dict(),
        )
    finally:
        conn.close()

    tokens = _issue_tokens(response, claims)
    return {**tokens, "user": _user_info(claims, name=req.username)}


@router.post("/login")
def login(req: LoginRequest, request: Request, response: Response) -> Dict[str, Any]:
    """
    Log in a staff user (email or username) or, failing that, a portal tenant.

    Portal tenants need has_portal_access and a plan with the tenant
    directory enabled. A tenant without a stored password sets it on
    first login.

    Raises:
        HTTPException(400): Missing identifier or password
        HTTPException(401): Bad credentials
    """
    identifier = req.identifier
    if not identifier or not req.password.strip():
        raise HTTPException(status_code=400, detail="Email and password are required")

    conn = get_db()
    try:
        user = _find_user(conn, identifier)
        if user:
            if not verify_password(req.password, user["password_hash"]):
                print(f"[LOGIN] Bad password: user_id={user['id']}")
                log_activity(
                    conn, None, request, "LOGIN", ResourceType.auth, "Failed login",
                    status=ActivityStatus.failed.value, organization_id=user["organization_id"],
                    user_id=user["id"], username=user["username"], body=req.dict(),
                )
                raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
            claims = _user_claims(conn, user)
            name = user["username"]
        else:
            tenant = conn.execute(
                "SELECT * FROM tenants WHERE LOWER(email) = ? AND has_portal_access = 1 ORDER BY created_at LIMIT 1",
                (identifier,),
            ).fetchone()
            if not tenant:
                print("[LOGIN] No user or portal tenant for identifier")
                log_activity(
                    conn, None, request, "LOGIN", ResourceType.auth, "Failed login (unknown identity)",
                    status=ActivityStatus.failed.value, body=req.dict(),
                )
                raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

            plan = ensure_plan_settings_exist(conn, get_organization_plan(conn, tenant["organization_id"]))
            conn.commit()
            if not tenant_directory_enabled(conn, plan):
                print(f"[LOGIN] Tenant directory disabled: organization_id={tenant['organization_id']}, plan={plan}")
                raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

            if tenant["password_hash"]:
                if not verify_password(req.password, tenant["password_hash"]):
                    log_activity(
                        conn, None, request, "LOGIN", ResourceType.auth, "Failed tenant login",
                        status=ActivityStatus.failed.value, organization_id=tenant["organization_id"],
                        user_id=tenant["id"], body=req.dict(),
                    )
                    raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
            else:
                # First portal login sets the password
                conn.execute(
                    "UPDATE tenants SET password_hash = ?, password_set = 1, updated_at = ? WHERE id = ?",
                    (hash_password(req.password), now_iso(), tenant["id"]),
                )
                conn.commit()
                print(f"[LOGIN] Initial portal password set: tenant_id={tenant['id']}")
            claims = _tenant_claims(conn, tenant)
            name = f"{tenant['first_name'] or ''} {tenant['last_name'] or ''}".strip()

        log_activity(
            conn, None, request, "LOGIN", ResourceType.auth, "Successful login",
            organization_id=claims["organization_id"], user_id=claims["id"],
            username=name, body=req.dict(),
        )
    finally:
        conn.close()

    print(f"[LOGIN] Session issued: id={claims['id']}, role={claims['role']}, organization_id={claims['organization_id']}")
    tokens = _issue_tokens(response, claims)
    return {**tokens, "user": _user_info(claims, name=name)}


@router.post("/validate-user")
def validate_user(req: ValidateUserRequest) -> Dict[str, Any]:
    """Check that an email/username is free before registration."""
    values = [v.strip().lower() for v in (req.email, req.username) if v and v.strip()]
    if not values:
        raise HTTPException(status_code=400, detail="email or username is required")

    conn = get_db()
    try:
        for value in values:
            row = conn.execute(
                "SELECT id FROM users WHERE LOWER(email) = ? OR LOWER(username) = ?",
                (value, value),
            ).fetchone()
            if row:
                raise HTTPException(status_code=409, detail="User already exists")
    finally:
        conn.close()
    return {"available": True}


@router.post("/refreshtoken")
def refresh_token(req: RefreshRequest, response: Response) -> Dict[str, Any]:
    """
    Exchange a refresh token for a new token pair.
    The identity is re-read so role/plan/organization changes apply.
    """
    if is_token_revoked(req.refreshToken):
        print("[AUTH] Rejected blacklisted refresh token")
        raise HTTPException(status_code=401, detail="Token revoked")
    try:
        payload = decode_refresh_token(req.refreshToken)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=403, detail="Invalid refresh token")

    identity = payload.get("id") or payload.get("sub")
    if session_is_stale(payload):
        raise HTTPException(
            status_code=401,
            detail={"message": "Session expired, please login again", "clearSession": True},
        )

    conn = get_db()
    try:
        if payload.get("role") == UserRole.tenant.value and payload.get("tenant_id"):
            tenant = conn.execute(
                "SELECT * FROM tenants WHERE id = ? AND has_portal_access = 1",
                (payload["tenant_id"],),
            ).fetchone()
            if not tenant:
                raise HTTPException(status_code=401, detail="User not found")
            claims = _tenant_claims(conn, tenant)
        else:
            user = conn.execute(
                "SELECT * FROM users WHERE id = ? AND COALESCE(is_deleted, 0) = 0",
                (identity,),
            ).fetchone()
            if not user:
                raise HTTPException(status_code=401, detail="User not found")
            claims = _user_claims(conn, user)
    finally:
        conn.close()

    if IS_DEV:
        print(f"[AUTH] Refreshed session: id={claims['id']}, role={claims['role']}")
    return _issue_tokens(response, claims)


@router.post("/forget-password")
def forget_password(req: ForgetPasswordRequest) -> Dict[str, Any]:
    """
    Start a password reset. Always answers the same way so the endpoint
    cannot be used to discover accounts.
    """
    email = req.email.strip().lower()
    result: Dict[str, Any] = {"message": "If the account exists, a reset link has been sent"}

    conn = get_db()
    try:
        user = _find_user(conn, email)
        if user:
            token = generate_reset_token()
            now = datetime.utcnow()
            conn.execute(
                "INSERT INTO password_resets (user_id, token_hash, expires_at, created_at) VALUES (?, ?, ?, ?)",
                (user["id"], hash_token(token),
                 (now + timedelta(minutes=RESET_TOKEN_MINUTES)).isoformat(), now.isoformat()),
            )
            conn.commit()
            if IS_DEV:
                print(f"[AUTH] Password reset token for user_id={user['id']}: {token}")
                result["resetToken"] = token
    finally:
        conn.close()
    return result


@router.post("/reset-password")
def reset_password(req: ResetPasswordRequest, request: Request) -> Dict[str, Any]:
    """
    Complete a password reset with a one-time token.

    Raises:
        HTTPException(400): Unknown, used or expired token
    """
    conn = get_db()
    try:
        row = conn.execute(
            "SELECT * FROM password_resets WHERE token_hash = ?",
            (hash_token(req.token),),
        ).fetchone()
        if not row or row["used_at"] or datetime.fromisoformat(row["expires_at"]) < datetime.utcnow():
            raise HTTPException(status_code=400, detail="Invalid or expired reset token")

        now = now_iso()
        conn.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            (hash_password(req.password), now, row["user_id"]),
        )
        conn.execute("UPDATE password_resets SET used_at = ? WHERE id = ?", (now, row["id"]))
        conn.commit()

        user = conn.execute("SELECT id, username, organization_id FROM users WHERE id = ?", (row["user_id"],)).fetchone()
        if user:
            log_activity(
                conn, None, request, "PASSWORD_RESET", ResourceType.user, "Password reset completed",
                resource_id=user["id"], organization_id=user["organization_id"],
                user_id=user["id"], username=user["username"],
            )
    finally:
        conn.close()
    return {"message": "Password has been reset"}


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    req: Optional[LogoutRequest] = None,
    ctx: AuthContext = Depends(require_auth_context),
) -> Dict[str, Any]:
    """
    Revoke the current token, the refresh token when one is sent, and every
    older token for this identity.
    Works without Redis (only the cookie is cleared then).
    """
    now = int(time.time())
    revoked = revoke_token(ctx.token, max(1, (ctx.expires_at or now + 1) - now))
    if req and req.refreshToken:
        try:
            refresh = decode_refresh_token(req.refreshToken)
        except jwt.InvalidTokenError:
            refresh = None
        if refresh and str(refresh.get("id")) == ctx.actor_id:
            revoke_token(req.refreshToken, max(1, int(refresh["exp"]) - now))
        elif IS_DEV:
            print(f"[AUTH] Logout ignored refresh token not owned by user_key={ctx.user_key}")
    mark_user_logout(ctx.actor_id)

    conn = get_db()
    try:
        log_activity(conn, ctx, request, "LOGOUT", ResourceType.auth, "User logged out")
    finally:
        conn.close()

    response.delete_cookie(SESSION_COOKIE)
    response.headers["Clear-Site-Data"] = '"cache", "cookies", "storage"'
    print(f"[AUTH] Logout: user_key={ctx.user_key}, token_revoked={revoked}")
    return {"message": "Logged out"}


@router.get("/me")
def me(ctx: AuthContext = Depends(require_auth_context)) -> Dict[str, Any]:
    return ctx.public_dict()
