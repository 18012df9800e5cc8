from enum import Enum


# Enums
class UserRole(str, Enum):
    admin = "admin"
    clientadmin = "clientadmin"
    user = "user"
    tenant = "tenant"


ADMIN_ROLES = {UserRole.admin.value, UserRole.clientadmin.value}


class PlanName(str, Enum):
    free = "free"
    starter = "starter"
    pro = "pro"
    business = "business"
    enterprise = "enterprise"


class TenantStatus(str, Enum):
    active = "Active"
    pending = "Pending"
    vacated = "Vacated"
    expiring_soon = "Expiring Soon"


class LeaseStatus(str, Enum):
    active = "Active"
    expired = "Expired"
    pending = "Pending"
    terminated = "Terminated"


class PaymentStatus(str, Enum):
    paid = "Paid"
    overdue = "Overdue"
    pending = "Pending"


class TicketStatus(str, Enum):
    open = "Open"
    in_progress = "In Progress"
    resolved = "Resolved"
    closed = "Closed"


class TicketPriority(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"
    critical = "Critical"


class ActivityStatus(str, Enum):
    success = "SUCCESS"
    failed = "FAILED"


class ResourceType(str, Enum):
    user = "USER"
    auth = "AUTH"
    system = "SYSTEM"
    tenant = "TENANT"
    lease = "LEASE"
    payment = "PAYMENT"
    ticket = "TICKET"
    building = "BUILDING"
    floor = "FLOOR"
    suite = "SUITE"
    message = "MESSAGE"
    notification = "NOTIFICATION"
    plan = "PLAN"
