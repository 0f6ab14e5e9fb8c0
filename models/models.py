# seatflow_backend/models.py
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, JSON
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    """Naive UTC timestamp; the store keeps datetimes without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Explicit column type for every timestamp: naive UTC, no tz-aware check on bind
NAIVE_UTC = DateTime(timezone=False)


# ============================================================
# ENUMS
# ============================================================
class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "superadmin"


class PlanName(str, Enum):
    BASIC = "Basic"
    STANDARD = "Standard"
    PLUS = "Plus"


class BillingCycle(str, Enum):
    TRIAL = "Trial"
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


class DeactivationReason(str, Enum):
    REMOVED_BY_ADMIN = "removed_by_admin"
    ORGANIZATION_DEACTIVATED = "organization_deactivated"


# Statuses that still let an organization add users
SEAT_GRANTING_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


# ============================================================
# PLAN (catalog)
# ============================================================
class Plan(SQLModel, table=True):
    __tablename__ = "plan"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=20, index=True)
    price: float = Field(default=0.0, ge=0)
    billing_cycle: str = Field(default=BillingCycle.MONTHLY.value, max_length=20)
    trial_days: int = Field(default=0, ge=0)
    features: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    max_users: int = Field(ge=1)
    storage: int = Field(ge=1, description="Storage allowance in GB")
    stripe_price_id: str = Field(max_length=255, index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)

    organizations: List["Organization"] = Relationship(back_populates="plan")


# ============================================================
# ORGANIZATION (tenant)
# ============================================================
class Organization(SQLModel, table=True):
    __tablename__ = "organization"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    email: str = Field(max_length=100)

    plan_id: int = Field(foreign_key="plan.id", index=True)
    # Entitlement snapshot copied from the plan when access was granted.
    # Governs seats and features; never re-derived from the live plan.
    active_plan: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    subscription_status: str = Field(default=SubscriptionStatus.TRIALING.value, max_length=20, index=True)
    subscription_start_date: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
    subscription_end_date: datetime = Field(sa_type=NAIVE_UTC)

    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)

    # Seat counter; rewritten from a live count on every membership change
    active_users: int = Field(default=0)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)

    plan: Optional["Plan"] = Relationship(back_populates="organizations")
    users: List["User"] = Relationship(back_populates="organization")


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(max_length=100, unique=True, index=True, nullable=False)
    password_hash: str = Field(nullable=False)
    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)

    role: str = Field(default=UserRole.USER.value, max_length=20, index=True)
    is_active: bool = Field(default=True, index=True)
    deactivation_reason: Optional[str] = Field(default=None, max_length=40)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)

    organization_id: int = Field(foreign_key="organization.id", index=True)
    organization: Optional["Organization"] = Relationship(back_populates="users")


# ============================================================
# WEBHOOK EVENT LEDGER
# ============================================================
class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_event"

    id: Optional[int] = Field(default=None, primary_key=True)
    stripe_event_id: str = Field(unique=True, index=True, max_length=255)
    event_type: str = Field(max_length=100, index=True)
    organization_id: Optional[int] = Field(default=None, index=True)
    note: Optional[str] = Field(default=None, max_length=500)
    processed_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "utcnow",
    "Plan",
    "Organization",
    "User",
    "WebhookEvent",
    "UserRole",
    "PlanName",
    "BillingCycle",
    "SubscriptionStatus",
    "DeactivationReason",
    "SEAT_GRANTING_STATUSES",
]
