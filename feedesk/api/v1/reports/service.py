"""Fee reports: dashboard summary, overdue list, student ledger, calendar and Excel export."""

import io
import logging
from datetime import date
from typing import List, Optional

from fastapi import status
from openpyxl import Workbook
from openpyxl.styles import Font

from feedesk.api.v1.fees import breakdown
from feedesk.api.v1.fees.schemas import FeeRecord, RecordListItem, RecordPage
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, coaching_prefix
from feedesk.clients.fee_api import FeeApiClient
from feedesk.core.enums import FeeStatus
from feedesk.core.exceptions import ServiceError
from feedesk.core.money import ZERO

from .schemas import CalendarDay, FeeSummary, OverdueReport, StudentLedger

logger = logging.getLogger(__name__)

EXPORT_PAGE_SIZE = 100
EXPORT_MAX_PAGES = 50

RECORD_HEADERS = [
    "Title",
    "Student",
    "Due date",
    "Status",
    "Base",
    "Discount",
    "Fine",
    "Tax",
    "Final",
    "Paid",
    "Balance",
    "Days overdue",
    "Receipt no",
]


# --- Financial years ---
def financial_year_of(day: date) -> str:
    """Indian financial year label, April to March, e.g. 2025-26."""
    start = day.year if day.month >= 4 else day.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def financial_years(today: Optional[date] = None, previous: int = 3) -> List[str]:
    """Current financial year first, then the ``previous`` ones."""
    current = financial_year_of(today or date.today())
    start = int(current[:4])
    return [f"{y}-{(y + 1) % 100:02d}" for y in range(start, start - previous - 1, -1)]


def _check_financial_year(value: str) -> str:
    try:
        start, end = value.split("-")
        if len(start) != 4 or len(end) != 2 or (int(start) + 1) % 100 != int(end):
            raise ValueError(value)
    except ValueError:
        raise ServiceError("Financial year must look like 2025-26", status.HTTP_422_UNPROCESSABLE_ENTITY)
    return value


# --- Reads ---
async def get_summary(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    financial_year: Optional[str] = None,
) -> FeeSummary:
    fy = _check_financial_year(financial_year) if financial_year else financial_year_of(date.today())
    summary, stale = await cache.fetch(
        f"{coaching_prefix(coaching_id)}summary:{fy}",
        lambda: api.get_summary_raw(user.token, coaching_id, fy),
        FeeSummary.model_validate,
    )
    return summary.model_copy(update={"financial_year": fy, "stale": stale})


async def get_overdue_report(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
) -> OverdueReport:
    records, stale = await cache.fetch(
        f"{coaching_prefix(coaching_id)}overdue",
        lambda: api.get_overdue_report_raw(user.token, coaching_id),
        lambda data: [FeeRecord.model_validate(r) for r in data or []],
    )
    items = [RecordListItem(record=r, totals=breakdown.compute_totals(r)) for r in records]
    items = [i for i in items if not (i.totals.is_paid or i.totals.is_waived)]
    items.sort(key=lambda i: i.totals.days_overdue, reverse=True)
    return OverdueReport(
        total=sum((i.totals.balance for i in items), ZERO),
        count=len(items),
        records=items,
        stale=stale,
    )


async def get_student_ledger(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    member_id: str,
) -> StudentLedger:
    ledger, stale = await cache.fetch(
        f"{coaching_prefix(coaching_id)}ledger:{member_id}",
        lambda: api.get_student_ledger_raw(user.token, coaching_id, member_id),
        StudentLedger.model_validate,
    )
    return ledger.model_copy(update={"stale": stale})


async def get_calendar(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    start: date,
    end: date,
) -> List[CalendarDay]:
    if end < start:
        raise ServiceError("'to' cannot be before 'from'", status.HTTP_400_BAD_REQUEST)
    if (end - start).days > 366:
        raise ServiceError("Calendar range is limited to one year", status.HTTP_400_BAD_REQUEST)
    days = [CalendarDay.model_validate(d) for d in await api.get_calendar_raw(user.token, coaching_id, start, end) or []]
    return sorted((d for d in days if not d.is_empty), key=lambda d: d.date)


# --- Export ---
async def _all_records(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
    status_filter: Optional[FeeStatus],
) -> List[FeeRecord]:
    records: List[FeeRecord] = []
    for page in range(1, EXPORT_MAX_PAGES + 1):
        params = {"page": page, "limit": EXPORT_PAGE_SIZE}
        if status_filter is not None:
            params["status"] = status_filter.value
        result: RecordPage = await api.list_records(user.token, coaching_id, params)
        records.extend(result.records)
        if not result.has_more:
            break
    else:
        logger.warning("Export for coaching %s truncated at %d records", coaching_id, len(records))
    return records


def build_records_workbook(records: List[FeeRecord], summary: Optional[FeeSummary] = None) -> bytes:
    """Records sheet (one row per record, engine totals) plus an optional summary sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Records"
    ws.append(RECORD_HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for record in records:
        totals = breakdown.compute_totals(record)
        ws.append(
            [
                record.title,
                record.member.name if record.member else "",
                record.due_date,
                totals.status.value,
                float(totals.base_amount),
                float(totals.discount_amount),
                float(totals.fine_amount),
                float(totals.tax_amount),
                float(totals.final_amount),
                float(totals.paid_amount),
                float(totals.balance),
                totals.days_overdue,
                record.receipt_no or "",
            ]
        )

    if summary is not None:
        ws_summary = wb.create_sheet("Summary")
        ws_summary.append(["Financial year", summary.financial_year or ""])
        ws_summary.append(["Total collected", float(summary.total_collected)])
        ws_summary.append(["Total pending", float(summary.total_pending)])
        ws_summary.append(["Total overdue", float(summary.total_overdue)])
        ws_summary.append(["Overdue records", summary.overdue_count])
        ws_summary.append([])
        ws_summary.append(["Status", "Count", "Amount"])
        for group in summary.status_breakdown:
            ws_summary.append([group.status.value, group.count, float(group.total_amount)])
        ws_summary.append([])
        ws_summary.append(["Payment mode", "Count", "Amount"])
        for group in summary.payment_modes:
            ws_summary.append([group.label, group.count, float(group.total)])
        ws_summary.append([])
        ws_summary.append(["Month", "Collected"])
        for month in summary.monthly_collection:
            ws_summary.append([month.month, float(month.total)])

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


async def export_records_xlsx(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    status_filter: Optional[FeeStatus] = None,
    financial_year: Optional[str] = None,
) -> bytes:
    records = await _all_records(api, user, coaching_id, status_filter)
    summary = await get_summary(api, cache, user, coaching_id, financial_year)
    return build_records_workbook(records, summary)
