"""Online payments router: gateway orders, multi-pay, refunds, payment settings wizard."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from feedesk.api.v1.fees.schemas import OnlinePayment, RecordView
from feedesk.auth.dependencies import get_current_user
from feedesk.auth.rbac import require_coaching_member, require_fee_admin
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, get_cache
from feedesk.clients.fee_api import FeeApiClient, get_fee_api
from feedesk.core.exceptions import ServiceError

from .schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    FailOrderRequest,
    FailedOrder,
    LinkedAccountRequest,
    MultiPayOrderRequest,
    MultiPayOrderResponse,
    MultiPayResult,
    OnboardingStatus,
    OnlineRefundRequest,
    PaymentConfig,
    PaymentSettings,
    PaymentSettingsUpdate,
    VerifyPaymentRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/coaching/{coaching_id}", tags=["payments"])
config_router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@config_router.get("/config", response_model=PaymentConfig)
async def payment_config(
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentConfig:
    try:
        return await service.get_payment_config(api, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Single record ---
@router.post("/fee/records/{record_id}/create-order", response_model=CreateOrderResponse)
async def create_order(
    coaching_id: str,
    record_id: str,
    payload: CreateOrderRequest,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> CreateOrderResponse:
    """Gateway order plus the options the hosted checkout is opened with."""
    try:
        return await service.create_order(api, current_user, coaching_id, record_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/fee/records/{record_id}/verify-payment", response_model=RecordView)
async def verify_payment(
    coaching_id: str,
    record_id: str,
    payload: VerifyPaymentRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> RecordView:
    try:
        return await service.verify_payment(api, cache, current_user, coaching_id, record_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/fee/orders/{order_id}/fail", status_code=status.HTTP_204_NO_CONTENT)
async def mark_order_failed(
    coaching_id: str,
    order_id: str,
    payload: FailOrderRequest,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> Response:
    """Cancellations are accepted and dropped; other reasons are recorded."""
    try:
        await service.mark_order_failed(api, current_user, coaching_id, order_id, payload.reason)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/fee/records/{record_id}/failed-orders", response_model=List[FailedOrder])
async def failed_orders(
    coaching_id: str,
    record_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> List[FailedOrder]:
    try:
        return await service.get_failed_orders(api, current_user, coaching_id, record_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/fee/records/{record_id}/online-payments", response_model=List[OnlinePayment])
async def online_payments(
    coaching_id: str,
    record_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> List[OnlinePayment]:
    try:
        return await service.get_online_payments(api, current_user, coaching_id, record_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/fee/records/{record_id}/online-refund", response_model=RecordView)
async def online_refund(
    coaching_id: str,
    record_id: str,
    payload: OnlineRefundRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> RecordView:
    try:
        return await service.initiate_online_refund(api, cache, current_user, coaching_id, record_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Multi-pay ---
@router.post("/fee/multi-pay/create-order", response_model=MultiPayOrderResponse)
async def create_multi_order(
    coaching_id: str,
    payload: MultiPayOrderRequest,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> MultiPayOrderResponse:
    try:
        return await service.create_multi_order(api, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/fee/multi-pay/verify", response_model=MultiPayResult)
async def verify_multi_payment(
    coaching_id: str,
    payload: VerifyPaymentRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> MultiPayResult:
    try:
        return await service.verify_multi_payment(api, cache, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Payment settings ---
@router.get("/payment-settings", response_model=PaymentSettings)
async def get_payment_settings(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> PaymentSettings:
    try:
        return await service.get_payment_settings(api, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/payment-settings", response_model=PaymentSettings)
async def update_payment_settings(
    coaching_id: str,
    payload: PaymentSettingsUpdate,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> PaymentSettings:
    try:
        return await service.update_payment_settings(api, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/payment-settings/onboarding", response_model=OnboardingStatus)
async def onboarding(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> OnboardingStatus:
    try:
        return await service.get_onboarding_status(api, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/payment-settings/verify-bank", response_model=Dict[str, Any])
async def verify_bank_account(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Dict[str, Any]:
    try:
        return await service.verify_bank_account(api, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/payment-settings/linked-account",
    response_model=PaymentSettings,
    status_code=status.HTTP_201_CREATED,
)
async def create_linked_account(
    coaching_id: str,
    payload: LinkedAccountRequest,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> PaymentSettings:
    try:
        return await service.create_linked_account(api, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/payment-settings/linked-account/refresh", response_model=PaymentSettings)
async def refresh_linked_account(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> PaymentSettings:
    try:
        return await service.refresh_linked_account(api, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/payment-settings/linked-account", response_model=PaymentSettings)
async def delete_linked_account(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> PaymentSettings:
    try:
        return await service.delete_linked_account(api, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
