"""
Request & response models for the payment API. Field names are camelCase on
the wire and snake_case in Python.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from alumni_payments.models import PaymentStatus, PaymentType
from alumni_payments.validation import MAX_PAYMENT_AMOUNT

StrictAmount = Annotated[int, Field(strict=True, gt=0, le=MAX_PAYMENT_AMOUNT)]
StrictSetting = Annotated[int, Field(strict=True)]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ──────────────── Checkout ────────────────

class CheckoutRequest(ApiModel):
    type: PaymentType
    amount: StrictAmount
    tenant_id: str = Field(..., min_length=1)
    description: Optional[str] = None
    is_anonymous: Optional[bool] = None
    event_id: Optional[str] = None


class CheckoutResponse(ApiModel):
    session_id: str
    url: str


# ──────────────── Settings ────────────────

class PaymentSettingsUpdate(ApiModel):
    model_config = ConfigDict(extra="forbid")

    annual_fee_enabled: Optional[bool] = Field(None, strict=True)
    annual_fee_amount: Optional[StrictSetting] = None
    annual_fee_description: Optional[str] = None
    donation_enabled: Optional[bool] = Field(None, strict=True)
    donation_min_amount: Optional[StrictSetting] = None
    donation_max_amount: Optional[StrictSetting] = None
    donation_presets: Optional[List[StrictSetting]] = None
    show_donor_list: Optional[bool] = Field(None, strict=True)
    allow_anonymous: Optional[bool] = Field(None, strict=True)


class PaymentSettingsResponse(ApiModel):
    annual_fee_enabled: bool
    annual_fee_amount: int
    annual_fee_description: Optional[str] = None
    donation_enabled: bool
    donation_min_amount: int
    donation_max_amount: int
    donation_presets: List[int]
    show_donor_list: bool
    allow_anonymous: bool


# ──────────────── Payments (admin) ────────────────

class PaymentOut(ApiModel):
    id: str
    tenant_id: str
    external_session_id: str
    external_payment_reference_id: Optional[str] = None
    type: PaymentType
    amount: int
    currency: str
    status: PaymentStatus
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    is_anonymous: bool
    description: Optional[str] = None
    event_id: Optional[str] = None
    extra_metadata: Dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PaymentPageResponse(ApiModel):
    payments: List[PaymentOut]
    total: int
    page: int
    total_pages: int


class PaymentTotals(ApiModel):
    total_amount: int
    total_count: int
    average_amount: float = 0


class TypeTotal(ApiModel):
    type: PaymentType
    amount: int
    count: int


class MonthTotal(ApiModel):
    month: str
    amount: int
    count: int


class StatsComparison(ApiModel):
    amount_change: int
    count_change: int
    previous: PaymentTotals


class PaymentStatsResponse(ApiModel):
    """Only the sections the request asked for are present."""

    total_amount: int
    total_count: int
    by_type: Optional[List[TypeTotal]] = None
    by_month: Optional[List[MonthTotal]] = None
    comparison: Optional[StatsComparison] = None


# ──────────────── Webhook ────────────────

class WebhookResponse(ApiModel):
    received: bool = True
    handled: bool
    event_type: Optional[str] = None
