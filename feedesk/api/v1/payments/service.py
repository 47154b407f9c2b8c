"""Online payments: gateway orders, verification, failures, refunds and the settings wizard.

Signature verification and the hosted checkout UI are external; this layer
only shapes the checkout options and forwards the (order, payment,
signature) triple to the fee service.
"""

import logging
from typing import List, Optional

from fastapi import status

from feedesk.api.v1.fees import breakdown
from feedesk.api.v1.fees.schemas import OnlinePayment, RecordView
from feedesk.api.v1.fees.service import ensure_open, refetch_view
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, coaching_prefix
from feedesk.clients.checkout import CheckoutGateway, build_checkout_options, is_cancellation
from feedesk.clients.fee_api import FeeApiClient
from feedesk.core.exceptions import CheckoutCancelled, CheckoutFailed, ServiceError
from feedesk.core.money import EPSILON, format_amount

from .schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    FailedOrder,
    LinkedAccountRequest,
    MultiPayOrderRequest,
    MultiPayOrderResponse,
    MultiPayResult,
    OnboardingStatus,
    OnboardingStep,
    OnlineRefundRequest,
    PaymentConfig,
    PaymentSettings,
    PaymentSettingsUpdate,
    VerifyPaymentRequest,
)

logger = logging.getLogger(__name__)


async def get_payment_config(api: FeeApiClient, user: CurrentUser) -> PaymentConfig:
    return PaymentConfig.model_validate(await api.get_payment_config(user.token) or {})


async def _require_gateway(api: FeeApiClient, user: CurrentUser) -> PaymentConfig:
    config = await get_payment_config(api, user)
    if not config.enabled or not config.key_id:
        raise ServiceError("Online payments are not enabled", status.HTTP_400_BAD_REQUEST)
    return config


# --- Single record ---
async def create_order(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payload: CreateOrderRequest,
) -> CreateOrderResponse:
    config = await _require_gateway(api, user)
    record = await api.get_record(user.token, coaching_id, record_id)
    ensure_open(record)
    balance = breakdown.compute_totals(record).balance
    if payload.amount is not None and payload.amount > balance + EPSILON:
        raise ServiceError(
            f"Amount exceeds balance of ₹{format_amount(balance)}",
            status.HTTP_400_BAD_REQUEST,
        )

    order = await api.create_order(user.token, coaching_id, record_id, payload.amount)
    checkout = build_checkout_options(
        key=order.get("key") or config.key_id,
        order_id=order["orderId"],
        amount=order["amount"],
        amount_in_paise=True,
        fee_title=record.title,
        user_email=user.email,
        user_phone=user.phone,
        user_name=user.name,
    )
    pay_amount = (order.get("record") or {}).get("payAmount")
    return CreateOrderResponse(
        checkout=checkout,
        internal_order_id=order.get("internalOrderId"),
        pay_amount=pay_amount,
    )


async def verify_payment(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payload: VerifyPaymentRequest,
) -> RecordView:
    await api.verify_payment(user.token, coaching_id, record_id, payload.model_dump())
    logger.info("Verified online payment for record %s", record_id)
    return await refetch_view(api, cache, user, coaching_id, record_id)


async def mark_order_failed(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    order_id: str,
    reason: Optional[str],
) -> bool:
    """Record a checkout failure. Returns False when it was a user cancellation."""
    if is_cancellation(reason):
        return False
    reason = (reason or "").strip() or "Payment failed"
    await api.mark_order_failed(user.token, coaching_id, order_id, reason)
    logger.info("Recorded failed order %s: %s", order_id, reason)
    return True


async def collect_online(
    api: FeeApiClient,
    cache: ReadThroughCache,
    gateway: CheckoutGateway,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    amount=None,
) -> Optional[RecordView]:
    """Create order, run the checkout and verify.

    Returns None when the payer cancelled, including failures whose reason
    reads as a cancellation. Other checkout failures are recorded against
    the order and re-raised.
    """
    order = await create_order(api, user, coaching_id, record_id, CreateOrderRequest(amount=amount))
    try:
        result = await gateway.open(order.checkout)
    except CheckoutCancelled:
        return None
    except CheckoutFailed as e:
        if is_cancellation(e.message):
            return None
        if order.internal_order_id:
            await mark_order_failed(api, user, coaching_id, order.internal_order_id, e.message)
        else:
            logger.warning("Checkout failed for record %s without an order id to record it: %s", record_id, e.message)
        raise
    return await verify_payment(
        api,
        cache,
        user,
        coaching_id,
        record_id,
        VerifyPaymentRequest(**result.model_dump()),
    )


async def get_failed_orders(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
) -> List[FailedOrder]:
    return [FailedOrder.model_validate(o) for o in await api.get_failed_orders(user.token, coaching_id, record_id)]


async def get_online_payments(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
) -> List[OnlinePayment]:
    payments = await api.get_online_payments(user.token, coaching_id, record_id)
    return [
        OnlinePayment.model_validate({k: v for k, v in p.items() if v is not None} | {"mode": "ONLINE"})
        for p in payments
    ]


async def initiate_online_refund(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payload: OnlineRefundRequest,
) -> RecordView:
    payments = await get_online_payments(api, user, coaching_id, record_id)
    payment = next((p for p in payments if p.id == payload.payment_id), None)
    if payment is None:
        raise ServiceError("Online payment not found", status.HTTP_404_NOT_FOUND)
    if payload.amount is not None and payload.amount > payment.amount + EPSILON:
        raise ServiceError(
            f"Refund exceeds payment of ₹{format_amount(payment.amount)}",
            status.HTTP_400_BAD_REQUEST,
        )
    await api.initiate_online_refund(
        user.token,
        coaching_id,
        record_id,
        {"paymentId": payload.payment_id, "amount": payload.amount, "reason": payload.reason},
    )
    logger.info("Initiated online refund on payment %s of record %s", payload.payment_id, record_id)
    return await refetch_view(api, cache, user, coaching_id, record_id)


# --- Multi-pay ---
async def create_multi_order(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    payload: MultiPayOrderRequest,
) -> MultiPayOrderResponse:
    config = await _require_gateway(api, user)
    record_ids = list(dict.fromkeys(payload.record_ids))
    order = await api.create_multi_order(
        user.token, coaching_id, {"recordIds": record_ids, "amount": payload.amount}
    )
    records = order.get("records") or []
    title = f"{len(record_ids)} fees" if len(record_ids) > 1 else (records[0].get("title") if records else "Fee")
    checkout = build_checkout_options(
        key=order.get("key") or config.key_id,
        order_id=order["orderId"],
        amount=order["amount"],
        amount_in_paise=True,
        fee_title=title,
        user_email=user.email,
        user_phone=user.phone,
        user_name=user.name,
    )
    return MultiPayOrderResponse(
        checkout=checkout,
        internal_order_ids=order.get("internalOrderIds") or [],
        records=records,
    )


async def verify_multi_payment(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    payload: VerifyPaymentRequest,
) -> MultiPayResult:
    result = await api.verify_multi_payment(user.token, coaching_id, payload.model_dump())
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    return MultiPayResult.model_validate(result or {})


# --- Payment settings / onboarding ---
async def get_payment_settings(api: FeeApiClient, user: CurrentUser, coaching_id: str) -> PaymentSettings:
    return PaymentSettings.model_validate(await api.get_payment_settings(user.token, coaching_id))


async def update_payment_settings(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    payload: PaymentSettingsUpdate,
) -> PaymentSettings:
    changes = payload.model_dump(by_alias=True, exclude_unset=True)
    if not changes:
        raise ServiceError("Nothing to update", status.HTTP_400_BAD_REQUEST)
    # empty strings clear the field upstream
    data = await api.update_payment_settings(user.token, coaching_id, changes)
    return PaymentSettings.model_validate(data)


def onboarding_status(payment_settings: PaymentSettings) -> OnboardingStatus:
    """Where the owner stands in business -> bank -> linked account."""
    business_missing = [] if payment_settings.pan_number else ["panNumber"]
    bank_missing = [
        name
        for name, value in (
            ("bankAccountName", payment_settings.bank_account_name),
            ("bankAccountNumber", payment_settings.bank_account_number),
            ("bankIfscCode", payment_settings.bank_ifsc_code),
        )
        if not value
    ]
    linked_missing = []
    if not payment_settings.razorpay_account_id:
        linked_missing.append("razorpayAccountId")
    elif not payment_settings.razorpay_activated:
        linked_missing.append("activation")

    steps = [
        OnboardingStep(key="business", title="Business details", complete=not business_missing, missing=business_missing),
        OnboardingStep(key="bank", title="Bank account", complete=not bank_missing, missing=bank_missing),
        OnboardingStep(
            key="linked_account", title="Linked account", complete=not linked_missing, missing=linked_missing
        ),
    ]
    next_step = next((s.key for s in steps if not s.complete), None)
    return OnboardingStatus(steps=steps, next_step=next_step, ready=next_step is None)


async def get_onboarding_status(api: FeeApiClient, user: CurrentUser, coaching_id: str) -> OnboardingStatus:
    return onboarding_status(await get_payment_settings(api, user, coaching_id))


async def verify_bank_account(api: FeeApiClient, user: CurrentUser, coaching_id: str) -> dict:
    return await api.verify_bank_account(user.token, coaching_id) or {}


async def create_linked_account(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    payload: LinkedAccountRequest,
) -> PaymentSettings:
    current = await get_payment_settings(api, user, coaching_id)
    wizard = onboarding_status(current)
    if not wizard.steps[1].complete:
        raise ServiceError(
            "Bank details (account number, IFSC, account holder name) are required before creating a linked account",
            status.HTTP_400_BAD_REQUEST,
        )
    if current.razorpay_account_id:
        raise ServiceError("Linked account already exists", status.HTTP_409_CONFLICT)
    data = await api.create_linked_account(user.token, coaching_id, payload.model_dump(by_alias=True))
    return PaymentSettings.model_validate(data)


async def refresh_linked_account(api: FeeApiClient, user: CurrentUser, coaching_id: str) -> PaymentSettings:
    return PaymentSettings.model_validate(await api.refresh_linked_account(user.token, coaching_id))


async def delete_linked_account(api: FeeApiClient, user: CurrentUser, coaching_id: str) -> PaymentSettings:
    return PaymentSettings.model_validate(await api.delete_linked_account(user.token, coaching_id) or {})
