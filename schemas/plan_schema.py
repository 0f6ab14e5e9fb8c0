# plan_schema.py
from pydantic import Field
from typing import Optional, List
from datetime import datetime

from models.models import PlanName, BillingCycle
from schemas.base import CamelModel


# ---------------------------
# Pricing Plan
# ---------------------------
class PlanCreate(CamelModel):
    name: PlanName
    price: float = Field(..., ge=0)
    billing_cycle: BillingCycle
    trial_days: int = Field(default=0, ge=0)
    features: List[str] = Field(..., min_length=1)
    max_users: int = Field(..., ge=1)
    storage: int = Field(..., ge=1)


class PlanUpdate(CamelModel):
    name: Optional[PlanName] = None
    price: Optional[float] = Field(default=None, ge=0)
    billing_cycle: Optional[BillingCycle] = None
    trial_days: Optional[int] = Field(default=None, ge=0)
    features: Optional[List[str]] = Field(default=None, min_length=1)
    max_users: Optional[int] = Field(default=None, ge=1)
    storage: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class PlanRead(CamelModel):
    id: int
    name: str
    price: float
    billing_cycle: str
    trial_days: int
    features: List[str]
    max_users: int
    storage: int
    stripe_price_id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ---------------------------
# Entitlement snapshot (Organization.active_plan)
# ---------------------------
class PlanSnapshot(CamelModel):
    name: str
    max_users: int
    features: List[str] = []
    price: float
    billing_cycle: str
    storage: Optional[int] = None
