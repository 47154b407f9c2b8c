from enum import Enum


class FeeCycle(str, Enum):
    ONCE = "ONCE"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    YEARLY = "YEARLY"
    CUSTOM = "CUSTOM"

    @property
    def label(self) -> str:
        return _CYCLE_LABELS[self]


_CYCLE_LABELS = {
    FeeCycle.ONCE: "One-time",
    FeeCycle.MONTHLY: "Monthly",
    FeeCycle.QUARTERLY: "Quarterly",
    FeeCycle.HALF_YEARLY: "Half-yearly",
    FeeCycle.YEARLY: "Yearly",
    FeeCycle.CUSTOM: "Custom",
}


class TaxType(str, Enum):
    NONE = "NONE"
    GST_INCLUSIVE = "GST_INCLUSIVE"
    GST_EXCLUSIVE = "GST_EXCLUSIVE"


class GstSupplyType(str, Enum):
    INTRA_STATE = "INTRA_STATE"
    INTER_STATE = "INTER_STATE"


class FeeStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"


class PaymentMode(str, Enum):
    CASH = "CASH"
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    ONLINE = "ONLINE"
    OTHER = "OTHER"

    @property
    def label(self) -> str:
        return _MODE_LABELS[self]


_MODE_LABELS = {
    PaymentMode.CASH: "Cash",
    PaymentMode.UPI: "UPI",
    PaymentMode.BANK_TRANSFER: "Bank Transfer",
    PaymentMode.CHEQUE: "Cheque",
    PaymentMode.ONLINE: "Online",
    PaymentMode.OTHER: "Other",
}


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class LedgerEntryKind(str, Enum):
    CHARGE = "CHARGE"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    WAIVER = "WAIVER"


class CoachingRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
    PARENT = "PARENT"
