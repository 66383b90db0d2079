"""
Billing Application DTOs
========================

Data Transfer Objects for the billing API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

DimensionStr = Literal["tickets", "messages", "storage", "api"]


# ========== Request DTOs ==========

class SubscriptionCreateDTO(BaseModel):
    plan_id: Optional[str] = Field(None, description="Defaults to the catalog's default plan")


class ChangePlanDTO(BaseModel):
    plan_id: str = Field(..., min_length=1)


class CancelSubscriptionDTO(BaseModel):
    immediately: bool = Field(default=False, description="Cancel now instead of at period end")


class UsageIncrementDTO(BaseModel):
    dimension: DimensionStr
    amount: int = Field(default=1, ge=1)


# ========== Response DTOs ==========

class PlanLimitsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tickets_per_month: int
    messages_per_month: int
    storage_per_org_mb: int
    api_requests_per_minute: int
    agents_per_org: int
    customers_per_org: int


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    name: str
    price: Decimal
    currency: str
    limits: PlanLimitsResponse
    features: Dict[str, bool]
    alerts_enabled: bool
    alert_threshold: int
    is_default: bool


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    plan_id: str
    previous_plan_id: Optional[str] = None
    status: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    canceled_at: Optional[datetime] = None


class UsageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    period_start: datetime
    period_end: datetime
    is_current: bool
    tickets_created: int
    messages_created: int
    storage_used_mb: int
    api_requests_count: int
    tickets_remaining: int
    messages_remaining: int
    storage_remaining_mb: int
    api_requests_remaining: int


class LimitCheckResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    allowed: bool
    dimension: DimensionStr
    current: int
    limit: int
    remaining: int
    percent_used: int
    should_alert: bool
    upgrade_url: Optional[str] = None


class PlanChangeResponse(BaseModel):
    subscription: SubscriptionResponse
    previous_plan_id: str
    plan_id: str
    is_upgrade: bool
    usage: Optional[UsageResponse] = None


class UsageHistoryResponse(BaseModel):
    items: List[UsageResponse]
