# organization_schema.py
from pydantic import Field
from typing import Optional, Dict, Any
from datetime import datetime

from models.models import SubscriptionStatus
from schemas.base import CamelModel, NormalizedEmail
from schemas.plan_schema import PlanRead, PlanSnapshot


class OrganizationCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: NormalizedEmail
    plan_id: int
    # status and window are set by the server


class OrganizationUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[NormalizedEmail] = None
    plan_id: Optional[int] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None


class OrganizationRead(CamelModel):
    id: int
    name: str
    email: str
    plan_id: int
    active_plan: Optional[PlanSnapshot] = None
    subscription_status: str
    subscription_start_date: datetime
    subscription_end_date: datetime
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    active_users: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class OrganizationWithStats(OrganizationRead):
    plan: Optional[PlanRead] = None
    member_count: int = 0


class ToggleStatusResponse(CamelModel):
    message: str
    is_active: bool


# ---------------------------
# Subscription / checkout
# ---------------------------
class SubscribeRequest(CamelModel):
    plan_id: int


class CheckoutSessionResponse(CamelModel):
    id: str
    url: Optional[str] = None


class SubscriptionDetail(CamelModel):
    status: str
    max_users: Optional[int] = None
    end_date: datetime
    stripe_subscription: Optional[Dict[str, Any]] = None


class SubscriptionResponse(CamelModel):
    organization: OrganizationRead
    plan: Optional[PlanRead] = None
    subscription: SubscriptionDetail


class WebhookAck(CamelModel):
    received: bool = True
