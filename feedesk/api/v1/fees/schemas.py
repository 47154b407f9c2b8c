"""Fees schemas: typed upstream payloads, engine output and request bodies."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from feedesk.core.enums import (
    FeeCycle,
    FeeStatus,
    GstSupplyType,
    PaymentMode,
    RefundStatus,
    TaxType,
)


class CamelModel(BaseModel):
    """Accepts the fee service's camelCase keys as well as snake_case names."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


def normalize_mode(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    mode = value.strip().upper()
    if mode == "RAZORPAY":
        return PaymentMode.ONLINE.value
    if mode not in PaymentMode.__members__:
        return PaymentMode.OTHER.value
    return mode


# --- Fee Structure ---
class LineItem(CamelModel):
    label: str
    amount: Decimal = Field(..., ge=0)


class InstallmentItem(CamelModel):
    label: str
    amount: Decimal = Field(..., gt=0)


class FeeStructure(CamelModel):
    """Admin-defined fee template."""

    id: str
    coaching_id: str = ""
    name: str
    description: Optional[str] = None
    amount: Decimal
    currency: str = "INR"
    cycle: FeeCycle = FeeCycle.MONTHLY
    late_fine_per_day: Decimal = Decimal("0")
    tax_type: TaxType = TaxType.NONE
    gst_rate: Decimal = Decimal("0")
    gst_supply_type: GstSupplyType = GstSupplyType.INTRA_STATE
    sac_code: Optional[str] = None
    hsn_code: Optional[str] = None
    cess_rate: Decimal = Decimal("0")
    line_items: List[LineItem] = Field(default_factory=list)
    allow_installments: bool = False
    installment_count: int = Field(0, ge=0)
    installment_amounts: List[InstallmentItem] = Field(default_factory=list)
    is_active: bool = True
    is_current: bool = False
    assignment_count: int = 0
    created_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _lift_count(cls, data: Any) -> Any:
        # upstream reports assignment totals as {"_count": {"assignments": n}}
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if v is not None}
        if isinstance(data.get("_count"), dict):
            data.setdefault("assignmentCount", data["_count"].get("assignments", 0))
        return data

    @property
    def cycle_label(self) -> str:
        return self.cycle.label

    @property
    def has_installment_plan(self) -> bool:
        return bool(self.installment_amounts) or self.installment_count > 0


# --- Member / payments / refunds ---
class FeeMemberInfo(CamelModel):
    member_id: str
    user_id: Optional[str] = None
    ward_id: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "memberId" in data or "member_id" in data:
            return data
        user = data.get("user") or {}
        ward = data.get("ward") or {}
        parent = ward.get("parent") or {}
        return {
            "memberId": data.get("id"),
            "userId": data.get("userId"),
            "wardId": data.get("wardId"),
            "name": user.get("name") or ward.get("name"),
            "picture": user.get("picture") or ward.get("picture"),
            "email": user.get("email"),
            "phone": user.get("phone"),
            "parentName": parent.get("name"),
            "parentPhone": parent.get("phone"),
        }


class _PaymentBase(CamelModel):
    id: str
    amount: Decimal
    transaction_ref: Optional[str] = None
    receipt_no: Optional[str] = None
    notes: Optional[str] = None
    paid_at: datetime

    @property
    def mode_label(self) -> str:
        return PaymentMode(self.mode).label


class ManualPayment(_PaymentBase):
    mode: Literal["CASH", "UPI", "BANK_TRANSFER", "CHEQUE", "OTHER"]


class OnlinePayment(_PaymentBase):
    mode: Literal["ONLINE"]
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


FeePayment = Annotated[Union[ManualPayment, OnlinePayment], Field(discriminator="mode")]


class FeeRefund(CamelModel):
    id: str
    amount: Decimal
    mode: PaymentMode = PaymentMode.CASH
    reason: Optional[str] = None
    status: RefundStatus = RefundStatus.PROCESSED
    refunded_at: datetime
    razorpay_refund_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    processed_by_name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, dict) and "mode" in data:
            data = dict(data)
            data["mode"] = normalize_mode(data["mode"])
        return data

    @property
    def is_online(self) -> bool:
        return self.mode == PaymentMode.ONLINE


# --- Fee Record ---
class FeeRecord(CamelModel):
    """One student's billing instance."""

    id: str
    coaching_id: str
    member_id: str
    assignment_id: Optional[str] = None
    title: str
    base_amount: Decimal
    discount_amount: Decimal = Decimal("0")
    fine_amount: Decimal = Decimal("0")
    final_amount: Decimal
    # None when upstream omits it; the payment history is used instead
    paid_amount: Optional[Decimal] = None
    due_date: date
    paid_at: Optional[datetime] = None
    status: FeeStatus
    receipt_no: Optional[str] = None
    notes: Optional[str] = None
    reminder_sent_at: Optional[datetime] = None
    reminder_count: int = 0

    tax_type: TaxType = TaxType.NONE
    tax_amount: Decimal = Decimal("0")
    cgst_amount: Decimal = Decimal("0")
    sgst_amount: Decimal = Decimal("0")
    igst_amount: Decimal = Decimal("0")
    cess_amount: Decimal = Decimal("0")
    gst_rate: Decimal = Decimal("0")
    gst_supply_type: Optional[GstSupplyType] = None
    sac_code: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)

    coaching_name: Optional[str] = None
    coaching_gst_number: Optional[str] = None
    member: Optional[FeeMemberInfo] = None
    fee_structure: Optional[FeeStructure] = None
    payments: List[FeePayment] = Field(default_factory=list)
    refunds: List[FeeRefund] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # nulls from upstream mean "use the default"
        data = {k: v for k, v in data.items() if v is not None}
        assignment = data.get("assignment")
        if isinstance(assignment, dict) and assignment.get("feeStructure") and not data.get("feeStructure"):
            data["feeStructure"] = assignment["feeStructure"]
        coaching = data.get("coaching")
        if isinstance(coaching, dict):
            data.setdefault("coachingName", coaching.get("name"))
            data.setdefault("coachingGstNumber", coaching.get("gstNumber"))
        for key in ("dueDate", "due_date"):
            if isinstance(data.get(key), str):
                data[key] = data[key][:10]
        payments = data.get("payments")
        if isinstance(payments, list):
            data["payments"] = [
                {**p, "mode": normalize_mode(p.get("mode"))} if isinstance(p, dict) else p
                for p in payments
            ]
        return data

    @property
    def is_waived(self) -> bool:
        return self.status == FeeStatus.WAIVED


class RecordPage(CamelModel):
    total: int
    page: int
    limit: int
    records: List[FeeRecord]

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total


# --- Breakdown engine output ---
class TaxLine(CamelModel):
    label: str
    rate: Decimal
    amount: Decimal


class FeeTotals(CamelModel):
    base_amount: Decimal
    discount_amount: Decimal
    after_discount: Decimal
    fine_amount: Decimal
    tax_type: TaxType
    tax_amount: Decimal
    tax_is_additive: bool
    tax_lines: List[TaxLine] = Field(default_factory=list)
    final_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    is_paid: bool
    is_partial: bool
    is_waived: bool
    days_overdue: int
    status: FeeStatus
    display: Dict[str, str] = Field(default_factory=dict)


class InstallmentOption(CamelModel):
    label: str
    amount: Decimal
    cumulative: Decimal
    is_paid: bool
    is_payable: bool


class RecordActions(CamelModel):
    can_collect: bool
    can_waive: bool
    can_refund: bool
    can_pay_online: bool
    can_pay_installment: bool
    can_remind: bool


class RecordView(CamelModel):
    record: FeeRecord
    totals: FeeTotals
    installments: List[InstallmentOption] = Field(default_factory=list)
    next_installment_amount: Optional[Decimal] = None
    # informational; the fee service applies the actual fine
    late_fine_preview: Decimal = Decimal("0")
    actions: RecordActions
    stale: bool = False


class RecordListItem(CamelModel):
    record: FeeRecord
    totals: FeeTotals


class RecordListResponse(CamelModel):
    total: int
    page: int
    limit: int
    has_more: bool
    stale: bool = False
    records: List[RecordListItem]


class MyFeesResponse(CamelModel):
    summary: Dict[str, Any] = Field(default_factory=dict)
    records: List[RecordListItem]
    stale: bool = False


# --- Requests ---
class RecordPaymentRequest(CamelModel):
    amount: Decimal = Field(..., gt=0)
    mode: Literal["CASH", "UPI", "BANK_TRANSFER", "CHEQUE", "OTHER"] = "CASH"
    transaction_ref: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None


class InstallmentPaymentRequest(CamelModel):
    mode: Literal["CASH", "UPI", "BANK_TRANSFER", "CHEQUE", "OTHER"] = "CASH"
    transaction_ref: Optional[str] = None
    notes: Optional[str] = None


class RefundRequest(CamelModel):
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None
    mode: Optional[PaymentMode] = None


class WaiveRequest(CamelModel):
    notes: Optional[str] = None


class AssignFeeRequest(CamelModel):
    member_id: str
    fee_structure_id: str
    custom_amount: Optional[Decimal] = Field(None, gt=0)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    discount_reason: Optional[str] = None
    scholarship_tag: Optional[str] = None
    scholarship_amount: Optional[Decimal] = Field(None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "AssignFeeRequest":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class PauseRequest(CamelModel):
    pause: bool
    note: Optional[str] = None


class BulkRemindRequest(CamelModel):
    status_filter: FeeStatus = FeeStatus.OVERDUE
    member_ids: Optional[List[str]] = None

