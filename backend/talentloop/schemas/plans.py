# backend/talentloop/schemas/plans.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from talentloop.schemas.base import CamelModel


class PlanInfo(CamelModel):
    id: uuid.UUID
    name: str
    price: float
    currency: str
    description: Optional[str] = None
    max_users: Optional[int] = None
    max_contacts: Optional[int] = None
    has_api: bool = False
    billing_period_days: int
    stripe_price_id: Optional[str] = None
    level: int
    is_free: bool
    status: Optional[str] = None
    expires_at: Optional[datetime] = None


class AvailablePlan(PlanInfo):
    features: list[str] = []


class CompanyInfo(CamelModel):
    id: uuid.UUID
    name: str
    slug: str
    type: str


class UsageInfo(CamelModel):
    current_users: int
    max_users: Optional[int] = None


class LimitsInfo(CamelModel):
    contacts: Optional[int] = None
    api: bool = False


class PlanInfoResponse(CamelModel):
    plan: PlanInfo
    company: CompanyInfo
    usage: UsageInfo
    limits: LimitsInfo


class UpgradeRequest(CamelModel):
    new_plan: Optional[str] = Field(default=None, max_length=50)
    stripe_price_id: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def strip_blank(self) -> "UpgradeRequest":
        if self.new_plan is not None and not self.new_plan.strip():
            self.new_plan = None
        if self.stripe_price_id is not None and not self.stripe_price_id.strip():
            self.stripe_price_id = None
        return self


class UpgradeResponse(CamelModel):
    success: bool
    message: str
    new_plan: PlanInfo
    next_billing_date: Optional[datetime] = None


class SubscriptionActionResponse(CamelModel):
    success: bool
    message: str
    status: str
    expires_at: Optional[datetime] = None


class HistoryEvent(CamelModel):
    id: uuid.UUID
    action: str
    previous_plan: Optional[str] = None
    previous_plan_price: Optional[float] = None
    previous_expires_at: Optional[datetime] = None
    new_plan: Optional[str] = None
    new_plan_price: Optional[float] = None
    new_expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    triggered_by: Optional[str] = None
    created_at: datetime


class DetailedHistoryEvent(HistoryEvent):
    description: str


class HistorySummary(CamelModel):
    total_upgrades: int
    total_downgrades: int
    total_cancellations: int
    days_since_creation: int
    days_until_expiry: Optional[int] = None


class HistoryResponse(CamelModel):
    current_status: str
    current_plan: str
    current_plan_price: float
    current_expires_at: Optional[datetime] = None
    started_at: datetime
    events: list[HistoryEvent]
    summary: HistorySummary


class DetailedHistoryResponse(CamelModel):
    current_plan: str
    events: list[DetailedHistoryEvent]


class CheckoutSessionRequest(CamelModel):
    price_id: str = Field(min_length=1, max_length=100)
    success_url: str = Field(min_length=1)
    cancel_url: str = Field(min_length=1)


class CheckoutSessionResponse(CamelModel):
    session_id: str
    url: Optional[str] = None


class VerifyCheckoutRequest(CamelModel):
    session_id: str = Field(min_length=1, max_length=255)


class VerifyCheckoutResponse(CamelModel):
    success: bool
    message: str
    plan: Optional[str] = None


class BillingPortalRequest(CamelModel):
    return_url: str = Field(min_length=1)


class BillingPortalResponse(CamelModel):
    url: str


class SubscriptionValidResponse(CamelModel):
    is_valid: bool
