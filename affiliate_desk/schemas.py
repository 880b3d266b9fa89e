"""Pydantic schemas for API requests and responses."""
from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from affiliate_desk.models import PAYMENT_STATUS_ENUM


class PaymentOrderCreate(BaseModel):
    """A gateway order created upstream, recorded before the customer pays."""

    user_id: int
    course_id: int
    bundle_course_id: Optional[int] = None
    order_id: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0)
    currency: str = "INR"

    @field_validator("order_id", mode="before")
    def strip_order_id(cls, value: Any) -> str:
        if value is None:
            raise ValueError("Order id is required.")
        return str(value).strip()

    @field_validator("amount")
    def quantize_amount(cls, value: Decimal) -> Decimal:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @field_validator("currency")
    def upper_currency(cls, value: str) -> str:
        return value.strip().upper()


class PaymentEvent(BaseModel):
    """Verified payment notification forwarded by the gateway adapter."""

    payment_id: str = Field(..., alias="paymentId", min_length=1)
    order_id: str = Field(..., alias="orderId", min_length=1)
    status: str
    currency: Optional[str] = None
    method: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("status")
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in PAYMENT_STATUS_ENUM:
            raise ValueError(f"Status must be one of {', '.join(PAYMENT_STATUS_ENUM)}.")
        return normalized


class PaymentRead(BaseModel):
    id: int
    user_id: int
    course_id: int
    bundle_course_id: Optional[int]
    gateway_order_id: str
    gateway_payment_id: Optional[str]
    status: str
    currency: str
    method: Optional[str]
    amount_paid: Decimal
    paid_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CaptureResult(BaseModel):
    outcome: str
    message: str
    payment_id: Optional[int] = None
    enrolled_course_ids: List[int] = Field(default_factory=list)
    commission_id: Optional[int] = None
    commission_amount: Optional[Decimal] = None


class CommissionRead(BaseModel):
    id: int
    user_id: int
    referral_user_id: Optional[int]
    transaction_id: int
    bundle_course_id: Optional[int]
    amount: Decimal
    percent: Optional[Decimal]
    base_amount: Optional[Decimal]
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PayoutGenerateRequest(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    week_start: date
    week_end: date

    @field_validator("week_start", "week_end", mode="before")
    def ensure_present(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError(f"{info.field_name.replace('_', ' ').title()} is required.")
        return value

    @model_validator(mode="after")
    def check_range(self) -> "PayoutGenerateRequest":
        if self.week_end < self.week_start:
            raise ValueError("week_end must not be before week_start.")
        return self


class PayoutRead(BaseModel):
    id: int
    user_id: int
    commission_ids: List[int]
    total_amount: Decimal
    tds_amount: Decimal
    tds_percent: Decimal
    net_amount: Decimal
    beneficiary_name: str
    account_number: str
    ifsc_code: str
    transaction_type: str
    transaction_date: Optional[datetime]
    utr_number: Optional[str]
    remarks: Optional[str]
    failure_reason: Optional[str]
    status: str
    from_date: date
    to_date: date
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FailedPayoutRead(BaseModel):
    id: int
    user_id: int
    full_name: str
    email: str
    referral_code: str
    amount: Decimal
    reason: str
    transaction_date: str
    payout_date: str


class EligibleAffiliateRead(BaseModel):
    id: int
    full_name: str
    email: str
    kyc_status: str
    total_pending_amount: Decimal
    unpaid_from_last_week: Decimal


class PayoutFileRead(BaseModel):
    file_name: str
    url: str
    created_at: datetime


class IndustryEarningRead(BaseModel):
    label: str
    current_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class EarningsSummary(BaseModel):
    user_id: int
    referral_earnings: Decimal
    level: str
    industry_earnings: List[IndustryEarningRead]
    commission_totals: dict[str, Decimal]


class TdsReportRow(BaseModel):
    """One affiliate's paid payouts for a month, with the tax withheld."""

    user_id: int
    name: str
    affiliate_code: str
    pan: str = ""
    total_income: Decimal = Decimal("0.00")
    income_breakdown: List[str] = Field(default_factory=list)
    total_paid_amount: Decimal = Decimal("0.00")
    paid_breakdown: List[str] = Field(default_factory=list)
    total_tds: Decimal = Decimal("0.00")
    tds_breakdown: List[str] = Field(default_factory=list)
    payment_dates: List[str] = Field(default_factory=list)


class TdsGenerateRequest(BaseModel):
    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class TdsFileRead(BaseModel):
    file_name: str
    month: str
    url: str
    created_at: datetime
