from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from feedesk.auth.rbac import require_fee_admin
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, get_cache
from feedesk.clients.fee_api import FeeApiClient, get_fee_api
from feedesk.core.enums import FeeStatus
from feedesk.core.exceptions import ServiceError

from .schemas import CalendarDay, FeeSummary, OverdueReport, StudentLedger
from . import service

router = APIRouter(prefix="/api/v1/coaching/{coaching_id}/fee/reports", tags=["fee-reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/summary", response_model=FeeSummary)
async def summary(
    coaching_id: str,
    fy: Optional[str] = Query(None, description="Financial year, e.g. 2025-26; defaults to the current one"),
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> FeeSummary:
    try:
        return await service.get_summary(api, cache, current_user, coaching_id, fy)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/financial-years", response_model=List[str])
async def financial_years(
    coaching_id: str,
    current_user: CurrentUser = Depends(require_fee_admin),
) -> List[str]:
    return service.financial_years()


@router.get("/overdue", response_model=OverdueReport)
async def overdue(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> OverdueReport:
    try:
        return await service.get_overdue_report(api, cache, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/members/{member_id}/ledger", response_model=StudentLedger)
async def student_ledger(
    coaching_id: str,
    member_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> StudentLedger:
    try:
        return await service.get_student_ledger(api, cache, current_user, coaching_id, member_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/calendar", response_model=List[CalendarDay])
async def calendar(
    coaching_id: str,
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> List[CalendarDay]:
    try:
        return await service.get_calendar(api, current_user, coaching_id, date_from, date_to)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/export.xlsx")
async def export_records(
    coaching_id: str,
    status_filter: Optional[FeeStatus] = Query(None, alias="status"),
    fy: Optional[str] = Query(None),
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> Response:
    """Fee records with computed totals, plus a summary sheet."""
    try:
        content = await service.export_records_xlsx(
            api, cache, current_user, coaching_id, status_filter=status_filter, financial_year=fy
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=fee_records_{coaching_id}.xlsx"},
    )
