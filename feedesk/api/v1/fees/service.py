"""Fees service: record listing, detail views and the collect / refund / waive actions.

Every mutation is one upstream call followed by a re-fetch of the record, so
the view returned is always the fee service's authoritative state.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import status

from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, coaching_prefix
from feedesk.clients.fee_api import FeeApiClient
from feedesk.core.config import settings
from feedesk.core.enums import FeeStatus
from feedesk.core.exceptions import ServiceError
from feedesk.core.money import EPSILON, ZERO, format_amount

from . import breakdown
from .receipts import payment_receipt_text, refund_receipt_text
from .schemas import (
    AssignFeeRequest,
    BulkRemindRequest,
    FeeRecord,
    InstallmentPaymentRequest,
    MyFeesResponse,
    PauseRequest,
    RecordListItem,
    RecordListResponse,
    RecordPage,
    RecordPaymentRequest,
    RecordView,
    RefundRequest,
    WaiveRequest,
)

logger = logging.getLogger(__name__)


def build_record_view(
    record: FeeRecord,
    online_enabled: bool = False,
    today: Optional[date] = None,
    stale: bool = False,
    is_admin: bool = False,
) -> RecordView:
    totals = breakdown.compute_totals(record, today)
    installments = breakdown.build_installment_options(record)
    next_amount = breakdown.next_installment_amount(record) if installments else None
    return RecordView(
        record=record,
        totals=totals,
        installments=installments,
        next_installment_amount=next_amount,
        late_fine_preview=breakdown.estimate_late_fine(record.fee_structure, totals.days_overdue),
        actions=breakdown.record_actions(record, totals, online_enabled=online_enabled, is_admin=is_admin),
        stale=stale,
    )


def _list_item(record: FeeRecord, today: Optional[date] = None) -> RecordListItem:
    return RecordListItem(record=record, totals=breakdown.compute_totals(record, today))


async def online_payments_enabled(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
) -> bool:
    """Gateway availability. An unreadable config means the online option is hidden."""
    try:
        config, _ = await cache.fetch(
            f"{coaching_prefix(coaching_id)}payment:config",
            lambda: api.get_payment_config(user.token),
            dict,
        )
    except ServiceError as e:
        logger.warning("Payment config unavailable, hiding online payment: %s", e.message)
        return False
    return bool(config.get("enabled")) and bool(config.get("keyId"))


async def _load_record(api: FeeApiClient, user: CurrentUser, coaching_id: str, record_id: str) -> FeeRecord:
    return await api.get_record(user.token, coaching_id, record_id)


async def refetch_view(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
) -> RecordView:
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    record = await _load_record(api, user, coaching_id, record_id)
    return build_record_view(
        record,
        await online_payments_enabled(api, cache, user, coaching_id),
        is_admin=user.is_fee_admin(coaching_id),
    )


def ensure_open(record: FeeRecord) -> None:
    totals = breakdown.compute_totals(record)
    if record.status in (FeeStatus.PAID, FeeStatus.WAIVED) or totals.is_paid or totals.is_waived:
        raise ServiceError("This record is already settled", status.HTTP_400_BAD_REQUEST)


# --- Reads ---
async def list_records(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    page: int = 1,
    limit: Optional[int] = None,
    status_filter: Optional[FeeStatus] = None,
    member_id: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> RecordListResponse:
    params: Dict[str, Any] = {"page": page, "limit": limit or settings.records_page_size}
    if status_filter is not None:
        params["status"] = status_filter.value
    if member_id:
        params["memberId"] = member_id
    if search and search.strip():
        params["search"] = search.strip()
    if date_from:
        params["from"] = date_from.isoformat()
    if date_to:
        params["to"] = date_to.isoformat()

    key = f"{coaching_prefix(coaching_id)}records:{urlencode(sorted(params.items()))}"
    result, stale = await cache.fetch(
        key,
        lambda: api.list_records_raw(user.token, coaching_id, params),
        RecordPage.model_validate,
    )
    return RecordListResponse(
        total=result.total,
        page=result.page,
        limit=result.limit,
        has_more=result.has_more,
        stale=stale,
        records=[_list_item(r) for r in result.records],
    )


async def get_record_view(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
) -> RecordView:
    is_admin = user.is_fee_admin(coaching_id)
    key = f"{coaching_prefix(coaching_id)}record:{record_id}"
    if not is_admin:
        # members only get back copies the fee service already showed them
        key = f"{key}:user:{user.id}"
    record, stale = await cache.fetch(
        key,
        lambda: api.get_record_raw(user.token, coaching_id, record_id),
        FeeRecord.model_validate,
    )
    # online checkout is never offered on a stale copy
    online = False if stale else await online_payments_enabled(api, cache, user, coaching_id)
    return build_record_view(record, online_enabled=online, stale=stale, is_admin=is_admin)


async def get_my_fees(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
) -> MyFeesResponse:
    data, stale = await cache.fetch(
        f"{coaching_prefix(coaching_id)}my:{user.id}",
        lambda: api.get_my_fees_raw(user.token, coaching_id),
        dict,
    )
    records = [FeeRecord.model_validate(r) for r in data.get("records") or []]
    items = [_list_item(r) for r in records]
    open_items = [i for i in items if not (i.totals.is_paid or i.totals.is_waived)]
    summary: Dict[str, Any] = {
        "totalDue": sum((i.totals.balance for i in open_items), ZERO),
        "totalPaid": sum((i.totals.paid_amount for i in items), ZERO),
        "overdueCount": sum(1 for i in open_items if i.totals.days_overdue > 0),
        "openCount": len(open_items),
    }
    summary.update(data.get("summary") or {})
    return MyFeesResponse(summary=summary, records=items, stale=stale)


async def get_member_fee_profile(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    member_id: str,
) -> Dict[str, Any]:
    return await api.get_member_fee_profile(user.token, coaching_id, member_id)


# --- Mutations ---
async def record_payment(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payload: RecordPaymentRequest,
) -> RecordView:
    record = await _load_record(api, user, coaching_id, record_id)
    ensure_open(record)
    balance = breakdown.compute_totals(record).balance
    if payload.amount > balance + EPSILON:
        raise ServiceError(
            f"Amount exceeds balance of ₹{format_amount(balance)}",
            status.HTTP_400_BAD_REQUEST,
        )
    await api.record_payment(
        user.token,
        coaching_id,
        record_id,
        {
            "amount": payload.amount,
            "mode": payload.mode,
            "transactionRef": (payload.transaction_ref or "").strip() or None,
            "notes": (payload.notes or "").strip() or None,
            "paidAt": payload.paid_at,
        },
    )
    logger.info("Recorded %s payment of %s on record %s", payload.mode, payload.amount, record_id)
    return await refetch_view(api, cache, user, coaching_id, record_id)


async def pay_next_installment(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payload: InstallmentPaymentRequest,
) -> RecordView:
    record = await _load_record(api, user, coaching_id, record_id)
    ensure_open(record)
    structure = record.fee_structure
    if structure is None or not structure.allow_installments or not structure.has_installment_plan:
        raise ServiceError("This fee has no installment plan", status.HTTP_400_BAD_REQUEST)
    balance = breakdown.compute_totals(record).balance
    amount = min(breakdown.next_installment_amount(record), balance)
    return await record_payment(
        api,
        cache,
        user,
        coaching_id,
        record_id,
        RecordPaymentRequest(
            amount=amount,
            mode=payload.mode,
            transaction_ref=payload.transaction_ref,
            notes=payload.notes,
        ),
    )


async def record_refund(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payload: RefundRequest,
) -> RecordView:
    record = await _load_record(api, user, coaching_id, record_id)
    paid = breakdown.compute_totals(record).paid_amount
    if paid <= ZERO:
        raise ServiceError("Nothing has been paid on this record", status.HTTP_400_BAD_REQUEST)
    if payload.amount > paid + EPSILON:
        raise ServiceError(
            f"Refund exceeds amount paid of ₹{format_amount(paid)}",
            status.HTTP_400_BAD_REQUEST,
        )
    await api.record_refund(
        user.token,
        coaching_id,
        record_id,
        {
            "amount": payload.amount,
            "reason": (payload.reason or "").strip() or None,
            "mode": payload.mode.value if payload.mode else None,
        },
    )
    logger.info("Recorded refund of %s on record %s", payload.amount, record_id)
    return await refetch_view(api, cache, user, coaching_id, record_id)


async def waive_fee(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payload: WaiveRequest,
) -> RecordView:
    record = await _load_record(api, user, coaching_id, record_id)
    if record.is_waived:
        raise ServiceError("This fee is already waived", status.HTTP_400_BAD_REQUEST)
    if record.status == FeeStatus.PAID or breakdown.compute_totals(record).is_paid:
        raise ServiceError("Already paid", status.HTTP_400_BAD_REQUEST)
    await api.waive_fee(user.token, coaching_id, record_id, {"notes": (payload.notes or "").strip() or None})
    logger.info("Waived record %s", record_id)
    # the waive endpoint answers with a partial record
    return await refetch_view(api, cache, user, coaching_id, record_id)


async def send_reminder(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
) -> None:
    record = await _load_record(api, user, coaching_id, record_id)
    ensure_open(record)
    await api.send_reminder(user.token, coaching_id, record_id)
    await cache.invalidate_prefix(coaching_prefix(coaching_id))


async def bulk_remind(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    payload: BulkRemindRequest,
) -> Dict[str, Any]:
    if payload.status_filter in (FeeStatus.PAID, FeeStatus.WAIVED):
        raise ServiceError("Reminders can only be sent for unpaid fees", status.HTTP_400_BAD_REQUEST)
    result = await api.bulk_remind(
        user.token,
        coaching_id,
        {"statusFilter": payload.status_filter.value, "memberIds": payload.member_ids},
    )
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    return result or {}


async def assign_fee(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    payload: AssignFeeRequest,
) -> Dict[str, Any]:
    result = await api.assign_fee(user.token, coaching_id, payload.model_dump(by_alias=True, exclude_none=True))
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    return result or {}


async def toggle_fee_pause(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    assignment_id: str,
    payload: PauseRequest,
) -> Dict[str, Any]:
    result = await api.toggle_fee_pause(
        user.token, coaching_id, assignment_id, {"pause": payload.pause, "note": payload.note}
    )
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    return result or {}


async def remove_fee_assignment(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    assignment_id: str,
) -> None:
    """Deactivates the assignment; existing records and their history stay."""
    await api.remove_fee_assignment(user.token, coaching_id, assignment_id)
    await cache.invalidate_prefix(coaching_prefix(coaching_id))


# --- Receipts ---
def _institute_name(record: FeeRecord) -> str:
    return record.coaching_name or settings.institute_display_name or "Institute"


async def get_payment_receipt(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    payment_id: str,
) -> str:
    record = await _load_record(api, user, coaching_id, record_id)
    try:
        return payment_receipt_text(record, payment_id, _institute_name(record), record.coaching_gst_number)
    except LookupError:
        raise ServiceError("Payment not found", status.HTTP_404_NOT_FOUND)


async def get_refund_receipt(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    record_id: str,
    refund_id: str,
) -> str:
    record = await _load_record(api, user, coaching_id, record_id)
    try:
        return refund_receipt_text(record, refund_id, _institute_name(record))
    except LookupError:
        raise ServiceError("Refund not found", status.HTTP_404_NOT_FOUND)
