import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from feedesk.api.v1.fees.schemas import CamelModel
from feedesk.clients.checkout import CheckoutOptions

GSTIN_RE = re.compile(r"^\d{2}[A-Z]{5}\d{4}[A-Z]\d[Z][A-Z0-9]$")
PAN_RE = re.compile(r"^[A-Z]{5}\d{4}[A-Z]$")
IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")


# --- Gateway ---
class PaymentConfig(CamelModel):
    key_id: str = ""
    enabled: bool = False


class CreateOrderRequest(CamelModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Partial amount; defaults to the balance")


class VerifyPaymentRequest(BaseModel):
    """The triple the hosted checkout hands back on success. Gateway keys are snake_case."""

    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1, repr=False)


class FailOrderRequest(CamelModel):
    reason: Optional[str] = None


class FailedOrder(CamelModel):
    id: str
    amount_paise: int = 0
    failure_reason: Optional[str] = None
    failed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_paise) / 100


class OnlineRefundRequest(CamelModel):
    payment_id: str
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: Optional[str] = None


class MultiPayOrderRequest(CamelModel):
    record_ids: List[str] = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(None, gt=0)


class MultiPayOrderResponse(CamelModel):
    checkout: CheckoutOptions
    internal_order_ids: List[str] = Field(default_factory=list)
    records: List[Dict[str, Any]] = Field(default_factory=list)


class CreateOrderResponse(CamelModel):
    """Options ready to hand to the hosted checkout plus the internal order id."""

    checkout: CheckoutOptions
    internal_order_id: Optional[str] = None
    pay_amount: Optional[Decimal] = None


class MultiPayResult(CamelModel):
    success: bool = True
    record_ids: List[str] = Field(default_factory=list)
    total_paise: Optional[int] = None
    message: Optional[str] = None


# --- Payment settings / onboarding ---
def _clean_upper(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().upper()
    return value or ""


class PaymentSettingsUpdate(CamelModel):
    """Empty strings clear a field; omitted fields are left alone."""

    gst_number: Optional[str] = None
    pan_number: Optional[str] = None
    contact_phone: Optional[str] = None
    bank_account_name: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_ifsc_code: Optional[str] = None
    bank_name: Optional[str] = None

    @field_validator("gst_number")
    @classmethod
    def _gstin(cls, v: Optional[str]) -> Optional[str]:
        v = _clean_upper(v)
        if v and not GSTIN_RE.match(v):
            raise ValueError("Invalid GSTIN format")
        return v

    @field_validator("pan_number")
    @classmethod
    def _pan(cls, v: Optional[str]) -> Optional[str]:
        v = _clean_upper(v)
        if v and not PAN_RE.match(v):
            raise ValueError("Invalid PAN format")
        return v

    @field_validator("bank_ifsc_code")
    @classmethod
    def _ifsc(cls, v: Optional[str]) -> Optional[str]:
        v = _clean_upper(v)
        if v and not IFSC_RE.match(v):
            raise ValueError("Invalid IFSC format")
        return v

    @field_validator("bank_account_number")
    @classmethod
    def _account_number(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().replace(" ", "")
        if v and not (v.isdigit() and 9 <= len(v) <= 18):
            raise ValueError("Account number must be 9 to 18 digits")
        return v

    @field_validator("bank_account_name", "bank_name", "contact_phone")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else None


class PaymentSettings(CamelModel):
    id: Optional[str] = None
    name: Optional[str] = None
    gst_number: Optional[str] = None
    pan_number: Optional[str] = None
    contact_phone: Optional[str] = None
    bank_account_name: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_ifsc_code: Optional[str] = None
    bank_name: Optional[str] = None
    bank_verified: bool = False
    bank_verified_at: Optional[datetime] = None
    razorpay_account_id: Optional[str] = None
    razorpay_activated: bool = False
    razorpay_onboarding_status: Optional[str] = None
    platform_fee_percent: Optional[Decimal] = None
    message: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class LinkedAccountRequest(CamelModel):
    owner_name: str = Field(..., min_length=1)
    owner_email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    owner_phone: str = Field(..., pattern=r"^\+?\d{10,13}$")
    business_type: Optional[str] = None


class OnboardingStep(CamelModel):
    key: str
    title: str
    complete: bool
    missing: List[str] = Field(default_factory=list)


class OnboardingStatus(CamelModel):
    steps: List[OnboardingStep]
    next_step: Optional[str] = None
    ready: bool = False
