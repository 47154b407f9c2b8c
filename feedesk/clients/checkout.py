"""Contract with the hosted payment checkout (Razorpay-style).

The checkout itself runs in the payer's app. Given an order id, the amount in
paise and the public key it either hands back the (order id, payment id,
signature) triple or fails. A user cancellation is not an error and is never
recorded; any other failure reason is recorded against the order for audit.
"""

from typing import Dict, Optional, Protocol

from pydantic import BaseModel, Field

from feedesk.core.config import settings
from feedesk.core.money import to_paise


class CheckoutOptions(BaseModel):
    key: str
    amount: int = Field(..., gt=0, description="Amount in paise")
    currency: str = "INR"
    name: str
    description: str
    order_id: str
    prefill: Dict[str, str] = Field(default_factory=dict)
    theme: Dict[str, str] = Field(default_factory=dict)


class CheckoutResult(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class CheckoutGateway(Protocol):
    async def open(self, options: CheckoutOptions) -> CheckoutResult:
        """Run the hosted checkout. Raises CheckoutCancelled or CheckoutFailed."""
        ...


def is_cancellation(reason: Optional[str]) -> bool:
    return bool(reason) and "cancel" in reason.strip().lower()


def build_checkout_options(
    *,
    key: str,
    order_id: str,
    amount,
    fee_title: str,
    user_email: Optional[str] = None,
    user_phone: Optional[str] = None,
    user_name: Optional[str] = None,
    amount_in_paise: bool = False,
) -> CheckoutOptions:
    prefill = {}
    if user_email:
        prefill["email"] = user_email
    if user_phone:
        prefill["contact"] = user_phone
    if user_name:
        prefill["name"] = user_name
    return CheckoutOptions(
        key=key,
        amount=int(amount) if amount_in_paise else to_paise(amount),
        name=settings.checkout_brand_name,
        description=fee_title,
        order_id=order_id,
        prefill=prefill,
        theme={"color": settings.checkout_theme_color},
    )
