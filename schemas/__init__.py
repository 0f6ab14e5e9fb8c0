from .base import CamelModel, NormalizedEmail
from .organization_schema import (
    OrganizationCreate, OrganizationRead, OrganizationUpdate, OrganizationWithStats, ToggleStatusResponse,
    SubscribeRequest, CheckoutSessionResponse, SubscriptionDetail, SubscriptionResponse, WebhookAck,
)
from .plan_schema import PlanCreate, PlanRead, PlanUpdate, PlanSnapshot
from .user_schema import (
    RegisterRequest, UserCreate, UserLogin, UserRead, UserUpdate,
    OrganizationSummary, AuthResponse, SeatUsage, UserCreatedResponse, MessageResponse,
)

__all__ = [
    # Base
    "CamelModel", "NormalizedEmail",

    # Organization & subscription
    "OrganizationCreate", "OrganizationRead", "OrganizationUpdate", "OrganizationWithStats", "ToggleStatusResponse",
    "SubscribeRequest", "CheckoutSessionResponse", "SubscriptionDetail", "SubscriptionResponse", "WebhookAck",

    # Plan
    "PlanCreate", "PlanRead", "PlanUpdate", "PlanSnapshot",

    # User
    "RegisterRequest", "UserCreate", "UserLogin", "UserRead", "UserUpdate",
    "OrganizationSummary", "AuthResponse", "SeatUsage", "UserCreatedResponse", "MessageResponse",
]
