from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field, model_validator

from feedesk.api.v1.fees.schemas import CamelModel, RecordListItem, normalize_mode
from feedesk.core.enums import FeeStatus, LedgerEntryKind, PaymentMode


def _sum_field(data: Dict[str, Any], field: str) -> Any:
    # grouped aggregates arrive as {"_count": n, "_sum": {field: x}}
    total = data.get("_sum")
    if isinstance(total, dict):
        return total.get(field)
    return None


class StatusGroup(CamelModel):
    status: FeeStatus
    count: int = 0
    total_amount: Decimal = Decimal("0")

    @model_validator(mode="before")
    @classmethod
    def _from_group(cls, data: Any) -> Any:
        if isinstance(data, dict) and "_count" in data:
            return {
                "status": data.get("status"),
                "count": data.get("_count") or 0,
                "totalAmount": _sum_field(data, "finalAmount") or 0,
            }
        return data


class PaymentModeGroup(CamelModel):
    mode: PaymentMode
    count: int = 0
    total: Decimal = Decimal("0")

    @model_validator(mode="before")
    @classmethod
    def _from_group(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "_count" in data:
            data = {"mode": data.get("mode"), "count": data.get("_count") or 0, "total": _sum_field(data, "amount") or 0}
        return {**data, "mode": normalize_mode(data.get("mode"))}

    @property
    def label(self) -> str:
        return self.mode.label


class MonthlyCollection(CamelModel):
    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    total: Decimal = Decimal("0")


class FeeSummary(CamelModel):
    financial_year: Optional[str] = None
    total_collected: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    total_overdue: Decimal = Decimal("0")
    overdue_count: int = 0
    today_collection: Decimal = Decimal("0")
    status_breakdown: List[StatusGroup] = Field(default_factory=list)
    payment_modes: List[PaymentModeGroup] = Field(default_factory=list)
    monthly_collection: List[MonthlyCollection] = Field(default_factory=list)
    stale: bool = False

    @model_validator(mode="before")
    @classmethod
    def _fill(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if v is not None}
        if "overdueCount" not in data and "overdue_count" not in data:
            for group in data.get("statusBreakdown") or []:
                if isinstance(group, dict) and group.get("status") == FeeStatus.OVERDUE.value:
                    data["overdueCount"] = group.get("_count", group.get("count", 0)) or 0
        return data


class LedgerEntry(CamelModel):
    date: datetime
    kind: LedgerEntryKind
    title: str = ""
    amount: Decimal
    running_balance: Decimal = Decimal("0")
    mode: Optional[PaymentMode] = None
    record_id: Optional[str] = None
    receipt_no: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_timeline(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "kind" in data:
            return data
        kind = str(data.get("type") or "").upper()
        return {
            "date": data.get("date"),
            "kind": {"RECORD": "CHARGE", "WAIVE": "WAIVER"}.get(kind, kind),
            "title": data.get("label") or data.get("title") or "",
            "amount": data.get("amount") or 0,
            "runningBalance": data.get("runningBalance") or 0,
            "mode": normalize_mode(data["mode"]) if data.get("mode") else None,
            "recordId": data.get("recordId"),
            "receiptNo": data.get("ref") or data.get("receiptNo"),
        }

    @property
    def sign(self) -> str:
        return {LedgerEntryKind.CHARGE: "+", LedgerEntryKind.REFUND: "-"}.get(self.kind, "")


class LedgerSummary(CamelModel):
    total_charged: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_refunded: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")

    @property
    def outstanding(self) -> Decimal:
        return max(self.balance, Decimal("0"))

    @property
    def credit(self) -> Decimal:
        """Overpayment carried on the ledger, shown separately from the balance."""
        return max(-self.balance, Decimal("0"))


class StudentLedger(CamelModel):
    member: Dict[str, Any] = Field(default_factory=dict)
    summary: LedgerSummary = Field(default_factory=LedgerSummary)
    timeline: List[LedgerEntry] = Field(default_factory=list)
    stale: bool = False


class CalendarDay(CamelModel):
    date: date
    due_count: int = 0
    due_total: Decimal = Decimal("0")
    paid_count: int = 0
    paid_total: Decimal = Decimal("0")

    @model_validator(mode="before")
    @classmethod
    def _from_stats(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if isinstance(data.get("date"), str):
            data["date"] = data["date"][:10]
        if "collected" in data:
            data.setdefault("paidTotal", data.pop("collected") or 0)
        if "due" in data:
            data.setdefault("dueTotal", data.pop("due") or 0)
        return data

    @property
    def is_empty(self) -> bool:
        return not self.due_total and not self.paid_total


class OverdueReport(CamelModel):
    total: Decimal = Decimal("0")
    count: int = 0
    records: List[RecordListItem] = Field(default_factory=list)
    stale: bool = False
