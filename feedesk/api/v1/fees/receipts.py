"""Plain-text payment and refund receipts for clipboard export."""

from datetime import datetime
from typing import List, Optional

from feedesk.core.enums import RefundStatus, TaxType
from feedesk.core.money import ZERO, format_rupees, to_decimal

from .schemas import FeeRecord, FeeRefund, OnlinePayment

RULE = "━" * 24

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_REFUND_STATUS_LABELS = {
    RefundStatus.PENDING: "Processing",
    RefundStatus.PROCESSED: "Completed",
    RefundStatus.FAILED: "Failed",
}


def format_datetime(dt: datetime) -> str:
    """e.g. 5 Apr 2025, 3:07 PM"""
    hour = dt.hour % 12 or 12
    am_pm = "PM" if dt.hour >= 12 else "AM"
    return f"{dt.day} {_MONTHS[dt.month - 1]} {dt.year}, {hour}:{dt.minute:02d} {am_pm}"


def _student_name(record: FeeRecord) -> Optional[str]:
    return record.member.name if record.member else None


def payment_receipt_text(
    record: FeeRecord,
    payment_id: str,
    institute_name: str,
    gst_number: Optional[str] = None,
) -> str:
    payment = next((p for p in record.payments if p.id == payment_id), None)
    if payment is None:
        raise LookupError(f"Payment {payment_id} not found on record {record.id}")

    lines: List[str] = [
        f"Payment Receipt — {institute_name}",
        RULE,
        f"Receipt: {payment.receipt_no or record.receipt_no or '-'}",
        f"Amount: {format_rupees(payment.amount)}",
        f"Fee: {record.title}",
        f"Institute: {institute_name}",
    ]
    if gst_number:
        lines.append(f"GSTIN: {gst_number}")
    student = _student_name(record)
    if student:
        lines.append(f"Student: {student}")

    tax = to_decimal(record.tax_amount)
    if record.tax_type != TaxType.NONE and tax > ZERO:
        lines.append(f"Tax (GST {to_decimal(record.gst_rate):.0f}%): {format_rupees(tax)}")
        for label, amount in (
            ("CGST", record.cgst_amount),
            ("SGST", record.sgst_amount),
            ("IGST", record.igst_amount),
            ("Cess", record.cess_amount),
        ):
            if to_decimal(amount) > ZERO:
                lines.append(f"  {label}: {format_rupees(amount)}")

    lines.append(f"Payment Mode: {payment.mode_label}")
    if payment.transaction_ref:
        lines.append(f"Reference: {payment.transaction_ref}")
    if isinstance(payment, OnlinePayment):
        if payment.razorpay_order_id:
            lines.append(f"Order ID: {payment.razorpay_order_id}")
        if payment.razorpay_payment_id:
            lines.append(f"Payment ID: {payment.razorpay_payment_id}")
    lines.extend([f"Date: {format_datetime(payment.paid_at)}", RULE])
    return "\n".join(lines)


def refund_receipt_text(record: FeeRecord, refund_id: str, institute_name: str) -> str:
    refund: Optional[FeeRefund] = next((r for r in record.refunds if r.id == refund_id), None)
    if refund is None:
        raise LookupError(f"Refund {refund_id} not found on record {record.id}")

    lines: List[str] = [
        f"Refund Receipt — {institute_name}",
        RULE,
        f"Amount: {format_rupees(refund.amount)} (DEBIT)",
        f"Fee: {record.title}",
        f"Institute: {institute_name}",
    ]
    student = _student_name(record)
    if student:
        lines.append(f"Student: {student}")
    lines.append(f"Refund Mode: {refund.mode.label}")
    lines.append(f"Status: {_REFUND_STATUS_LABELS.get(refund.status, 'Completed')}")
    if refund.processed_by_name:
        lines.append(f"Processed By: {refund.processed_by_name}")
    if refund.reason:
        lines.append(f"Reason: {refund.reason}")
    if refund.is_online:
        if refund.razorpay_refund_id:
            lines.append(f"Refund ID: {refund.razorpay_refund_id}")
        if refund.razorpay_payment_id:
            lines.append(f"Original Payment: {refund.razorpay_payment_id}")
    lines.extend([f"Date: {format_datetime(refund.refunded_at)}", RULE])
    return "\n".join(lines)
