"""Fees router: records, collection, refunds, waivers, reminders, receipts, assignments."""

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import PlainTextResponse

from feedesk.auth.rbac import require_coaching_member, require_fee_admin
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, get_cache
from feedesk.clients.fee_api import FeeApiClient, get_fee_api
from feedesk.core.enums import FeeStatus
from feedesk.core.exceptions import ServiceError

from .schemas import (
    AssignFeeRequest,
    BulkRemindRequest,
    InstallmentPaymentRequest,
    MyFeesResponse,
    PauseRequest,
    RecordListResponse,
    RecordPaymentRequest,
    RecordView,
    RefundRequest,
    WaiveRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/coaching/{coaching_id}/fee", tags=["fees"])


# --- Records ---
@router.get("/records", response_model=RecordListResponse)
async def list_records(
    coaching_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    status_filter: Optional[FeeStatus] = Query(None, alias="status"),
    member_id: Optional[str] = Query(None, alias="memberId"),
    search: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> RecordListResponse:
    try:
        return await service.list_records(
            api,
            cache,
            current_user,
            coaching_id,
            page=page,
            limit=limit,
            status_filter=status_filter,
            member_id=member_id,
            search=search,
            date_from=date_from,
            date_to=date_to,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/records/{record_id}", response_model=RecordView)
async def get_record(
    coaching_id: str,
    record_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> RecordView:
    """Record with totals, tax lines, installment plan and enabled actions."""
    try:
        return await service.get_record_view(api, cache, current_user, coaching_id, record_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/records/{record_id}/pay", response_model=RecordView)
async def record_payment(
    coaching_id: str,
    record_id: str,
    payload: RecordPaymentRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> RecordView:
    try:
        return await service.record_payment(api, cache, current_user, coaching_id, record_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/records/{record_id}/pay-installment", response_model=RecordView)
async def pay_next_installment(
    coaching_id: str,
    record_id: str,
    payload: InstallmentPaymentRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> RecordView:
    try:
        return await service.pay_next_installment(api, cache, current_user, coaching_id, record_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/records/{record_id}/refund", response_model=RecordView)
async def record_refund(
    coaching_id: str,
    record_id: str,
    payload: RefundRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> RecordView:
    try:
        return await service.record_refund(api, cache, current_user, coaching_id, record_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/records/{record_id}/waive", response_model=RecordView)
async def waive_fee(
    coaching_id: str,
    record_id: str,
    payload: WaiveRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> RecordView:
    try:
        return await service.waive_fee(api, cache, current_user, coaching_id, record_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/records/{record_id}/remind", status_code=status.HTTP_204_NO_CONTENT)
async def send_reminder(
    coaching_id: str,
    record_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Response:
    try:
        await service.send_reminder(api, cache, current_user, coaching_id, record_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/bulk-remind", response_model=Dict[str, Any])
async def bulk_remind(
    coaching_id: str,
    payload: BulkRemindRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Dict[str, Any]:
    try:
        return await service.bulk_remind(api, cache, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Receipts ---
@router.get(
    "/records/{record_id}/payments/{payment_id}/receipt",
    response_class=PlainTextResponse,
)
async def payment_receipt(
    coaching_id: str,
    record_id: str,
    payment_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> str:
    try:
        return await service.get_payment_receipt(api, current_user, coaching_id, record_id, payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/records/{record_id}/refunds/{refund_id}/receipt",
    response_class=PlainTextResponse,
)
async def refund_receipt(
    coaching_id: str,
    record_id: str,
    refund_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> str:
    try:
        return await service.get_refund_receipt(api, current_user, coaching_id, record_id, refund_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Student / parent ---
@router.get("/my", response_model=MyFeesResponse)
async def my_fees(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> MyFeesResponse:
    try:
        return await service.get_my_fees(api, cache, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Assignments ---
@router.get("/members/{member_id}", response_model=Dict[str, Any])
async def member_fee_profile(
    coaching_id: str,
    member_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Dict[str, Any]:
    try:
        return await service.get_member_fee_profile(api, current_user, coaching_id, member_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/assign", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def assign_fee(
    coaching_id: str,
    payload: AssignFeeRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Dict[str, Any]:
    try:
        return await service.assign_fee(api, cache, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/assignments/{assignment_id}/pause", response_model=Dict[str, Any])
async def toggle_fee_pause(
    coaching_id: str,
    assignment_id: str,
    payload: PauseRequest,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Dict[str, Any]:
    try:
        return await service.toggle_fee_pause(api, cache, current_user, coaching_id, assignment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_fee_assignment(
    coaching_id: str,
    assignment_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Response:
    try:
        await service.remove_fee_assignment(api, cache, current_user, coaching_id, assignment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
