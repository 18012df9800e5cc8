"""
tenantbook/schemas.py

Pydantic request schemas and the success envelope.
All schemas ignore unknown fields and never accept organization_id:
the organization always comes from the session.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, validator

from tenantbook.models import LeaseStatus, PaymentStatus, TenantStatus, TicketPriority, TicketStatus, UserRole


def wrap_success(status_code: int, data: Any) -> Dict[str, Any]:
    """Envelope used by the collection routers."""
    return {"status": "Success", "statusCode": status_code, "data": data}


def parse_day(value: Any) -> Optional[date]:
    """Accept date, datetime or ISO strings ('2024-01-31', '2024-01-31T10:00:00Z'); return the day."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return date.fromisoformat(text[:10])


def _check_day(v):
    if v is None:
        return v
    try:
        parse_day(v)
    except ValueError:
        raise ValueError("must be an ISO date (YYYY-MM-DD)")
    return str(v)


class _Schema(BaseModel):
    class Config:
        extra = "ignore"
        use_enum_values = True


# ========================================================================
# AUTH
# ========================================================================

class RegisterRequest(_Schema):
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6, max_length=200)
    organization_name: Optional[str] = Field(None, max_length=200)
    plan: Optional[str] = Field(None, description="Plan id or display name (default starter)")

    @validator("email", pre=True)
    def normalize_email(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
        if not v or "@" not in v:
            raise ValueError("email must be a valid address")
        return v

    @validator("username", pre=True)
    def trim_username(cls, v):
        return v.strip() if isinstance(v, str) else v


class LoginRequest(_Schema):
    email: Optional[str] = Field(None, description="Email or username")
    username: Optional[str] = None
    password: str = ""

    @property
    def identifier(self) -> str:
        return (self.email or self.username or "").strip().lower()


class ValidateUserRequest(_Schema):
    email: Optional[str] = None
    username: Optional[str] = None


class RefreshRequest(_Schema):
    refreshToken: str = Field(..., min_length=1)


class LogoutRequest(_Schema):
    refreshToken: Optional[str] = None


class ForgetPasswordRequest(_Schema):
    email: str


class ResetPasswordRequest(_Schema):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6, max_length=200)


# ========================================================================
# ORGANIZATION / PLANS
# ========================================================================

class PlanSettingsRequest(_Schema):
    id: Optional[str] = None
    plan: Optional[str] = None
    name: Optional[str] = None
    tenant_limit: Optional[int] = Field(None, description="NULL or negative = unlimited")
    building_limit: Optional[int] = None
    floor_limit: Optional[int] = None
    suite_limit: Optional[int] = None
    price: Optional[float] = Field(None, ge=0)
    price_yearly: Optional[float] = Field(None, ge=0)
    email_quota: Optional[int] = None
    sms_quota: Optional[int] = None
    tenant_directory_enabled: Optional[bool] = None
    payments_enabled: Optional[bool] = None
    buildings_enabled: Optional[bool] = None
    messaging_enabled: Optional[bool] = None
    announcements_enabled: Optional[bool] = None
    automation_enabled: Optional[bool] = None


class OrganizationUpdateRequest(_Schema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    plan: Optional[str] = None
    scheduler_enabled: Optional[bool] = None


# ========================================================================
# TENANTS
# ========================================================================

class TenantFields(_Schema):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=254)
    phone: Optional[str] = Field(None, max_length=50)
    building_id: Optional[int] = None
    floor_id: Optional[int] = None
    suite_id: Optional[int] = None
    lease_start: Optional[str] = None
    lease_end: Optional[str] = None
    status: Optional[TenantStatus] = None
    rent_due: Optional[float] = None
    rent_paid: Optional[float] = None
    balance: Optional[float] = None
    has_portal_access: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=1, max_length=200)
    use_tenant_id_as_password: bool = False
    tags: Optional[List[str]] = None
    notes: Optional[str] = None

    @validator("email", pre=True)
    def lower_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @validator("lease_start", "lease_end")
    def check_dates(cls, v):
        return _check_day(v)


class TenantCreateRequest(TenantFields):
    id: Optional[str] = None
    first_name: str = Field(..., min_length=1, max_length=100)
    status: TenantStatus = TenantStatus.active.value
    has_portal_access: bool = False

    @validator("first_name", pre=True)
    def trim_first_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class TenantUpdateRequest(TenantFields):
    pass


class TenantBatchRequest(_Schema):
    tenants: List[TenantCreateRequest] = Field(..., min_length=1, max_length=500)


class TenantSetPasswordRequest(_Schema):
    currentPassword: Optional[str] = None
    newPassword: str = Field(..., min_length=6, max_length=200)


class TenantPasswordResetRequest(_Schema):
    temporaryPassword: Optional[str] = Field(None, max_length=200)


# ========================================================================
# STAFF USERS
# ========================================================================

STAFF_ROLES = (UserRole.admin.value, UserRole.clientadmin.value, UserRole.user.value)


class UserFields(_Schema):
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, min_length=3, max_length=254)
    password: Optional[str] = Field(None, min_length=6, max_length=200)
    role: Optional[str] = None

    @validator("email", pre=True)
    def normalize_email(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if "@" not in v:
                raise ValueError("email must be a valid address")
        return v

    @validator("role")
    def check_role(cls, v):
        if v is not None and v not in STAFF_ROLES:
            raise ValueError(f"role must be one of {', '.join(STAFF_ROLES)}")
        return v


class UserCreateRequest(UserFields):
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6, max_length=200)
    role: str = UserRole.user.value


class UserUpdateRequest(UserFields):
    status: Optional[str] = None

    @validator("status")
    def check_status(cls, v):
        if v is not None and v not in ("active", "inactive"):
            raise ValueError("status must be active or inactive")
        return v


# ========================================================================
# LEASES / PAYMENTS
# ========================================================================

class LeaseFields(_Schema):
    tenant_id: Optional[str] = None
    unit_id: Optional[Union[str, int]] = None
    lease_start: Optional[str] = None
    lease_end: Optional[str] = None
    rent_amount: Optional[float] = Field(None, ge=0)
    due_day: Optional[int] = Field(None, ge=1, le=28)
    grace_period_days: Optional[int] = Field(None, ge=0, le=31)
    late_fee: Optional[Dict[str, Any]] = None
    deposit: Optional[float] = Field(None, ge=0)
    recurring_charges: Optional[List[Dict[str, Any]]] = None
    status: Optional[LeaseStatus] = None
    notes: Optional[str] = None

    @validator("unit_id")
    def unit_as_text(cls, v):
        return str(v) if v is not None else v

    @validator("lease_start", "lease_end")
    def check_dates(cls, v):
        return _check_day(v)


class LeaseCreateRequest(LeaseFields):
    id: Optional[int] = None
    rent_amount: float = Field(0, ge=0)
    due_day: int = Field(1, ge=1, le=28)
    grace_period_days: int = Field(0, ge=0, le=31)
    status: LeaseStatus = LeaseStatus.active.value


class LeaseUpdateRequest(LeaseFields):
    pass


class PaymentFields(_Schema):
    tenant_id: Optional[str] = None
    lease_id: Optional[int] = None
    amount: Optional[float] = Field(None, ge=0)
    due_date: Optional[str] = None
    paid_date: Optional[str] = None
    status: Optional[PaymentStatus] = None
    method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None

    @validator("due_date", "paid_date")
    def check_dates(cls, v):
        return _check_day(v)


class PaymentCreateRequest(PaymentFields):
    id: Optional[int] = None
    amount: float = Field(..., ge=0)
    status: PaymentStatus = PaymentStatus.pending.value


class PaymentUpdateRequest(PaymentFields):
    pass


# ========================================================================
# TICKETS / MESSAGES
# ========================================================================

class TicketCreateRequest(_Schema):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    priority: TicketPriority = TicketPriority.medium.value
    status: TicketStatus = TicketStatus.open.value
    tenant_id: Optional[str] = None
    assigned_to_user_id: Optional[int] = None

    @validator("title", pre=True)
    def trim_title(cls, v):
        return v.strip() if isinstance(v, str) else v


class TicketUpdateRequest(_Schema):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    priority: Optional[TicketPriority] = None
    status: Optional[TicketStatus] = None
    tenant_id: Optional[str] = None
    assigned_to_user_id: Optional[int] = None


class CommentRequest(_Schema):
    body: str = Field(..., min_length=1, max_length=5000)


class MessageRequest(_Schema):
    subject: Optional[str] = Field(None, max_length=200)
    body: str = Field(..., min_length=1, max_length=10000)
    to_tenant_id: Optional[str] = None
    recipients: Optional[Union[str, Dict[str, List[Any]]]] = None
