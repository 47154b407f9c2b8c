from decimal import Decimal
from typing import List, Optional

from pydantic import Field, model_validator

from feedesk.api.v1.fees.schemas import CamelModel, FeeStructure, InstallmentItem, LineItem
from feedesk.core.enums import FeeCycle, GstSupplyType, TaxType
from feedesk.core.money import EPSILON, ZERO


def plan_errors(
    amount: Optional[Decimal],
    line_items: Optional[List[LineItem]],
    installment_amounts: Optional[List[InstallmentItem]],
) -> Optional[str]:
    """Breakdown and installment rows must add up to the structure amount."""
    if amount is None:
        return None
    if line_items:
        total = sum((i.amount for i in line_items), ZERO)
        if abs(total - amount) > EPSILON:
            return f"Line items add up to {total}, expected {amount}"
    if installment_amounts:
        total = sum((i.amount for i in installment_amounts), ZERO)
        if abs(total - amount) > EPSILON:
            return f"Installments add up to {total}, expected {amount}"
    return None


class FeeStructureCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    currency: str = "INR"
    cycle: FeeCycle = FeeCycle.MONTHLY
    late_fine_per_day: Decimal = Field(Decimal("0"), ge=0)
    tax_type: TaxType = TaxType.NONE
    gst_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    gst_supply_type: GstSupplyType = GstSupplyType.INTRA_STATE
    sac_code: Optional[str] = None
    hsn_code: Optional[str] = None
    cess_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    line_items: List[LineItem] = Field(default_factory=list)
    allow_installments: bool = False
    installment_count: int = Field(0, ge=0, le=24)
    installment_amounts: List[InstallmentItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_plan(self) -> "FeeStructureCreate":
        error = plan_errors(self.amount, self.line_items, self.installment_amounts)
        if error:
            raise ValueError(error)
        if self.tax_type != TaxType.NONE and self.gst_rate <= 0:
            raise ValueError("GST rate is required when tax applies")
        return self


class FeeStructureUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(None, gt=0)
    cycle: Optional[FeeCycle] = None
    late_fine_per_day: Optional[Decimal] = Field(None, ge=0)
    tax_type: Optional[TaxType] = None
    gst_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    gst_supply_type: Optional[GstSupplyType] = None
    sac_code: Optional[str] = None
    hsn_code: Optional[str] = None
    cess_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    line_items: Optional[List[LineItem]] = None
    allow_installments: Optional[bool] = None
    installment_count: Optional[int] = Field(None, ge=0, le=24)
    installment_amounts: Optional[List[InstallmentItem]] = None
    is_active: Optional[bool] = None


class StructureDeleteResponse(CamelModel):
    id: str
    archived: bool
    message: str


class AffectedMember(CamelModel):
    member_id: str
    name: Optional[str] = None


class ReplacePreview(CamelModel):
    """What replacing the current structure would touch."""

    current: Optional[FeeStructure] = None
    affected_members: List[AffectedMember] = Field(default_factory=list)
    affected_count: int = 0


class ReplaceResult(CamelModel):
    current: FeeStructure
    previous: Optional[FeeStructure] = None
