from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from feedesk.api.v1.fees.schemas import FeeStructure
from feedesk.auth.rbac import require_coaching_member, require_fee_admin
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, get_cache
from feedesk.clients.fee_api import FeeApiClient, get_fee_api
from feedesk.core.exceptions import ServiceError

from .schemas import (
    FeeStructureCreate,
    FeeStructureUpdate,
    ReplacePreview,
    ReplaceResult,
    StructureDeleteResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/coaching/{coaching_id}/fee/structures", tags=["fee-structures"])


@router.get("", response_model=List[FeeStructure])
async def list_structures(
    coaching_id: str,
    active_only: bool = Query(False, alias="activeOnly"),
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> List[FeeStructure]:
    try:
        return await service.list_structures(api, cache, current_user, coaching_id, active_only=active_only)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("", response_model=FeeStructure, status_code=status.HTTP_201_CREATED)
async def create_structure(
    coaching_id: str,
    payload: FeeStructureCreate,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> FeeStructure:
    try:
        return await service.create_structure(api, cache, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/replace-preview", response_model=ReplacePreview)
async def replace_preview(
    coaching_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> ReplacePreview:
    """Current structure and the members a replacement would move."""
    try:
        return await service.replace_preview(api, current_user, coaching_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/replace-current", response_model=ReplaceResult, status_code=status.HTTP_201_CREATED)
async def replace_current(
    coaching_id: str,
    payload: FeeStructureCreate,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> ReplaceResult:
    try:
        return await service.replace_current(api, cache, current_user, coaching_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{structure_id}", response_model=FeeStructure)
async def update_structure(
    coaching_id: str,
    structure_id: str,
    payload: FeeStructureUpdate,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> FeeStructure:
    try:
        return await service.update_structure(api, cache, current_user, coaching_id, structure_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{structure_id}", response_model=StructureDeleteResponse)
async def delete_structure(
    coaching_id: str,
    structure_id: str,
    api: FeeApiClient = Depends(get_fee_api),
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> StructureDeleteResponse:
    try:
        return await service.delete_structure(api, cache, current_user, coaching_id, structure_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
