"""
Fee breakdown engine.

Pure functions over a FeeRecord (and optionally its FeeStructure) that derive
every value the fee screens display: totals, tax lines, balance, status and
the installment plan. No I/O. Malformed but numeric input is clamped, and
missing optional data (tax, structure, installments) means "feature absent".

CGST/SGST/IGST/cess are shown from the amounts frozen on the record; they are
never re-derived from the rate.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from feedesk.core.enums import FeeStatus, TaxType
from feedesk.core.money import EPSILON, ZERO, ceil_cents, format_amount, to_decimal

from .schemas import (
    FeeRecord,
    FeeRefund,
    FeeStructure,
    FeeTotals,
    InstallmentOption,
    RecordActions,
    TaxLine,
)


def days_overdue(due_date: Optional[date], today: Optional[date] = None) -> int:
    if due_date is None:
        return 0
    today = today or date.today()
    return max((today - due_date).days, 0)


def paid_from_history(payments: Iterable, refunds: Iterable[FeeRefund]) -> Decimal:
    """Net amount collected: payments minus refunds, never below zero."""
    paid = sum((to_decimal(p.amount) for p in payments), ZERO)
    refunded = sum((to_decimal(r.amount) for r in refunds), ZERO)
    return max(paid - refunded, ZERO)


def _final_amount(record: FeeRecord) -> Decimal:
    base = to_decimal(record.base_amount)
    discount = to_decimal(record.discount_amount)
    fine = to_decimal(record.fine_amount)
    final = base - discount + fine
    if record.tax_type == TaxType.GST_EXCLUSIVE:
        # Inclusive tax is already inside base_amount and must not be added twice.
        final += to_decimal(record.tax_amount)
    return final


def _paid(record: FeeRecord) -> Decimal:
    if record.paid_amount is None:
        return paid_from_history(record.payments, record.refunds)
    return max(to_decimal(record.paid_amount), ZERO)


def _balance(record: FeeRecord) -> Decimal:
    return max(_final_amount(record) - _paid(record), ZERO)


def _tax_lines(record: FeeRecord, structure: Optional[FeeStructure]) -> List[TaxLine]:
    tax = to_decimal(record.tax_amount)
    if record.tax_type == TaxType.NONE or tax <= ZERO:
        return []
    prefix = "incl. " if record.tax_type == TaxType.GST_INCLUSIVE else ""
    rate = to_decimal(record.gst_rate)
    half = rate / 2

    lines: List[TaxLine] = []
    cgst = to_decimal(record.cgst_amount)
    sgst = to_decimal(record.sgst_amount)
    igst = to_decimal(record.igst_amount)
    cess = to_decimal(record.cess_amount)
    if cgst > ZERO:
        lines.append(TaxLine(label=f"{prefix}CGST @ {half:.1f}%", rate=half, amount=cgst))
    if sgst > ZERO:
        lines.append(TaxLine(label=f"{prefix}SGST @ {half:.1f}%", rate=half, amount=sgst))
    if igst > ZERO:
        lines.append(TaxLine(label=f"{prefix}IGST @ {rate:.1f}%", rate=rate, amount=igst))
    if cess > ZERO:
        cess_rate = to_decimal(structure.cess_rate) if structure else ZERO
        lines.append(TaxLine(label=f"{prefix}Cess", rate=cess_rate, amount=cess))
    if not lines:
        # No split was frozen on the record; show the single GST figure.
        lines.append(TaxLine(label=f"{prefix}GST @ {rate:.0f}%", rate=rate, amount=tax))
    return lines


def effective_status(record: FeeRecord, today: Optional[date] = None) -> FeeStatus:
    """Status as the screens should show it today. WAIVED is terminal."""
    if record.status == FeeStatus.WAIVED:
        return FeeStatus.WAIVED
    if _balance(record) < EPSILON:
        return FeeStatus.PAID
    if days_overdue(record.due_date, today) > 0:
        return FeeStatus.OVERDUE
    if ZERO < _paid(record) < _final_amount(record):
        return FeeStatus.PARTIALLY_PAID
    return FeeStatus.PENDING


def compute_totals(record: FeeRecord, today: Optional[date] = None) -> FeeTotals:
    """Derive final amount, tax split, balance and paid/partial/overdue flags."""
    base = to_decimal(record.base_amount)
    discount = to_decimal(record.discount_amount)
    fine = to_decimal(record.fine_amount)
    tax = to_decimal(record.tax_amount)
    final = _final_amount(record)
    paid = _paid(record)
    balance = max(final - paid, ZERO)

    is_waived = record.status == FeeStatus.WAIVED
    is_paid = balance < EPSILON
    settled = is_paid or is_waived

    return FeeTotals(
        base_amount=base,
        discount_amount=discount,
        after_discount=base - discount,
        fine_amount=fine,
        tax_type=record.tax_type,
        tax_amount=tax,
        tax_is_additive=record.tax_type == TaxType.GST_EXCLUSIVE,
        tax_lines=_tax_lines(record, record.fee_structure),
        final_amount=final,
        paid_amount=paid,
        balance=balance,
        is_paid=is_paid,
        is_partial=ZERO < paid < final,
        is_waived=is_waived,
        days_overdue=0 if settled else days_overdue(record.due_date, today),
        status=effective_status(record, today),
        display={
            "base": format_amount(base),
            "discount": format_amount(discount),
            "after_discount": format_amount(base - discount),
            "fine": format_amount(fine),
            "tax": format_amount(tax),
            "final": format_amount(final),
            "paid": format_amount(paid),
            "balance": format_amount(balance),
        },
    )


def _auto_split(total: Decimal, count: int) -> List[Decimal]:
    per = ceil_cents(total / count)
    # the last installment absorbs the rounding so the plan sums to total
    return [per] * (count - 1) + [total - per * (count - 1)]


def next_installment_amount(record: FeeRecord, structure: Optional[FeeStructure] = None) -> Decimal:
    """Amount the "pay next installment" action should charge.

    A fixed plan returns the first bracket not yet covered by the paid amount.
    An auto split divides the whole final amount (not what is left) into equal
    parts rounded up to the cent. Without a plan, or when the structure does not
    allow installments, the full balance is due.
    """
    structure = structure or record.fee_structure
    if structure is not None and not structure.allow_installments:
        structure = None
    paid = _paid(record)
    balance = _balance(record)

    if structure is not None and structure.installment_amounts:
        cumulative = ZERO
        for item in structure.installment_amounts:
            cumulative += to_decimal(item.amount)
            if paid < cumulative - EPSILON:
                return to_decimal(item.amount)
        return to_decimal(structure.installment_amounts[-1].amount)

    if structure is not None and structure.installment_count > 0:
        total = balance + paid
        return ceil_cents(total / structure.installment_count)

    return balance


def build_installment_options(
    record: FeeRecord, structure: Optional[FeeStructure] = None
) -> List[InstallmentOption]:
    """Ordered installment choices with paid / payable flags for a picker."""
    structure = structure or record.fee_structure
    if structure is None or not structure.allow_installments:
        return []
    paid = _paid(record)
    balance = _balance(record)

    if structure.installment_amounts:
        plan = [(item.label, to_decimal(item.amount)) for item in structure.installment_amounts]
    elif structure.installment_count > 0:
        count = structure.installment_count
        amounts = _auto_split(balance + paid, count)
        plan = [(f"Installment {k} of {count}", amt) for k, amt in enumerate(amounts, start=1)]
    else:
        return []

    options: List[InstallmentOption] = []
    cumulative = ZERO
    for label, amount in plan:
        cumulative += amount
        is_paid = paid >= cumulative - EPSILON
        options.append(
            InstallmentOption(
                label=label,
                amount=amount,
                cumulative=cumulative,
                is_paid=is_paid,
                is_payable=not is_paid and amount <= balance + EPSILON,
            )
        )
    return options


def record_actions(
    record: FeeRecord,
    totals: FeeTotals,
    online_enabled: bool = False,
    structure: Optional[FeeStructure] = None,
    is_admin: bool = False,
) -> RecordActions:
    """Which action buttons a record detail screen enables.

    Collect, waive, refund, installment and reminder actions belong to fee
    admins. Paying online is open to anyone viewing an unsettled record.
    """
    structure = structure or record.fee_structure
    open_ = not (totals.is_paid or totals.is_waived)
    manage = is_admin and open_
    has_plan = structure is not None and structure.allow_installments and structure.has_installment_plan
    return RecordActions(
        can_collect=manage,
        can_waive=manage,
        can_refund=is_admin and totals.paid_amount > ZERO,
        can_pay_online=open_ and online_enabled,
        can_pay_installment=manage and has_plan,
        can_remind=manage,
    )


def estimate_late_fine(structure: Optional[FeeStructure], overdue_days: int) -> Decimal:
    """Preview of the fine the fee service will apply; informational only."""
    if structure is None or overdue_days <= 0:
        return ZERO
    return max(to_decimal(structure.late_fine_per_day), ZERO) * overdue_days

