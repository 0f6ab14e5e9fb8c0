# user_schema.py
from pydantic import Field, ConfigDict
from typing import Optional
from datetime import datetime

from schemas.base import CamelModel, NormalizedEmail


# ---------------------------
# Create & Auth
# ---------------------------
class RegisterRequest(CamelModel):
    email: NormalizedEmail
    password: str = Field(..., min_length=6)
    organization_name: str = Field(..., min_length=1, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class UserCreate(CamelModel):
    email: NormalizedEmail
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class UserLogin(CamelModel):
    email: NormalizedEmail
    password: str = Field(..., min_length=1)


# ---------------------------
# Read / Update
# ---------------------------
class UserRead(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    organization_id: int
    created_at: datetime


class UserUpdate(CamelModel):
    """Fields an admin or the user may change. Role and organization are never writable."""
    email: Optional[NormalizedEmail] = None
    password: Optional[str] = Field(default=None, min_length=6)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)

    model_config = ConfigDict(extra="ignore")


class OrganizationSummary(CamelModel):
    id: int
    name: str
    subscription_status: str
    is_new_organization: bool = False


class AuthResponse(CamelModel):
    message: Optional[str] = None
    token: str
    user: UserRead
    organization: Optional[OrganizationSummary] = None


class SeatUsage(CamelModel):
    current_users: int
    max_users: int
    plan_name: Optional[str] = None


class UserCreatedResponse(CamelModel):
    message: str
    user: UserRead
    organization: SeatUsage


class MessageResponse(CamelModel):
    message: str
