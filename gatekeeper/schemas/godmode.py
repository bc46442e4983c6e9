from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gatekeeper.models.subscription import PlanTier
from gatekeeper.services.roles import Role, parse_role

OverrideStatus = Literal["active", "inactive", "trialing", "past_due", "canceled"]


class ToggleRoleRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    role: Role

    @field_validator("role", mode="before")
    @classmethod
    def _canonical_role(cls, value: object) -> object:
        return parse_role(value) or value


class ToggleRoleResponse(BaseModel):
    user_id: str
    roles: list[str]
    granted: bool


class MaintenanceUpdate(BaseModel):
    enabled: bool


class MaintenanceRead(BaseModel):
    enabled: bool


class SubscriptionOverride(BaseModel):
    plan: PlanTier
    status: OverrideStatus

    @field_validator("plan", "status", mode="before")
    @classmethod
    def _lowercase(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    business_id: str
    plan: PlanTier
    status: str
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    ends_at: datetime | None = None
    exists: bool = True
