"""Fee structure service: list, create, update, archive-or-delete, replace current."""

import logging
from typing import List, Optional

from fastapi import status

from feedesk.api.v1.fees.schemas import FeeMemberInfo, FeeStructure
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, coaching_prefix
from feedesk.clients.fee_api import FeeApiClient
from feedesk.core.exceptions import ServiceError

from .schemas import (
    AffectedMember,
    FeeStructureCreate,
    FeeStructureUpdate,
    ReplacePreview,
    ReplaceResult,
    StructureDeleteResponse,
    plan_errors,
)

logger = logging.getLogger(__name__)


def _parse_structures(data) -> List[FeeStructure]:
    return [FeeStructure.model_validate(s) for s in data or []]


async def list_structures(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    active_only: bool = False,
) -> List[FeeStructure]:
    structures, _ = await cache.fetch(
        f"{coaching_prefix(coaching_id)}structures",
        lambda: api.list_structures_raw(user.token, coaching_id),
        _parse_structures,
    )
    if active_only:
        structures = [s for s in structures if s.is_active]
    return structures


async def _get_structure(api: FeeApiClient, user: CurrentUser, coaching_id: str, structure_id: str) -> FeeStructure:
    for structure in await api.list_structures(user.token, coaching_id):
        if structure.id == structure_id:
            return structure
    raise ServiceError("Fee structure not found", status.HTTP_404_NOT_FOUND)


def _current(structures: List[FeeStructure]) -> Optional[FeeStructure]:
    return next((s for s in structures if s.is_current and s.is_active), None)


async def create_structure(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    payload: FeeStructureCreate,
) -> FeeStructure:
    created = await api.create_structure(user.token, coaching_id, payload.model_dump(by_alias=True))
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    logger.info("Created fee structure %s in coaching %s", created.id, coaching_id)
    return created


async def update_structure(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    structure_id: str,
    payload: FeeStructureUpdate,
) -> FeeStructure:
    changes = payload.model_dump(by_alias=True, exclude_unset=True)
    if not changes:
        raise ServiceError("Nothing to update", status.HTTP_400_BAD_REQUEST)

    # partial edits are checked against the stored amount and rows
    existing = await _get_structure(api, user, coaching_id, structure_id)
    amount = payload.amount if payload.amount is not None else existing.amount
    line_items = payload.line_items if payload.line_items is not None else existing.line_items
    installments = (
        payload.installment_amounts if payload.installment_amounts is not None else existing.installment_amounts
    )
    error = plan_errors(amount, line_items, installments)
    if error:
        raise ServiceError(error, status.HTTP_422_UNPROCESSABLE_ENTITY)

    updated = await api.update_structure(user.token, coaching_id, structure_id, changes)
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    return updated


async def delete_structure(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    structure_id: str,
) -> StructureDeleteResponse:
    """Structures still assigned to members are archived, never deleted."""
    structure = await _get_structure(api, user, coaching_id, structure_id)
    if structure.assignment_count > 0:
        await api.update_structure(user.token, coaching_id, structure_id, {"isActive": False})
        result = StructureDeleteResponse(
            id=structure_id,
            archived=True,
            message=f"Archived: still assigned to {structure.assignment_count} member(s)",
        )
    else:
        await api.delete_structure(user.token, coaching_id, structure_id)
        result = StructureDeleteResponse(id=structure_id, archived=False, message="Deleted")
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    logger.info("Removed fee structure %s (archived=%s)", structure_id, result.archived)
    return result


async def replace_preview(
    api: FeeApiClient,
    user: CurrentUser,
    coaching_id: str,
) -> ReplacePreview:
    current = _current(await api.list_structures(user.token, coaching_id))
    if current is None:
        return ReplacePreview()
    members = [
        FeeMemberInfo.model_validate(m.get("member") or m)
        for m in await api.list_structure_members(user.token, coaching_id, current.id)
    ]
    return ReplacePreview(
        current=current,
        affected_members=[AffectedMember(member_id=m.member_id, name=m.name) for m in members],
        affected_count=len(members),
    )


async def replace_current(
    api: FeeApiClient,
    cache: ReadThroughCache,
    user: CurrentUser,
    coaching_id: str,
    payload: FeeStructureCreate,
) -> ReplaceResult:
    """Create a structure as the institute's current one.

    The fee service demotes the prior current structure when the new one is
    created; the previous one is returned as it stood before the switch.
    """
    previous = _current(await api.list_structures(user.token, coaching_id))
    body = payload.model_dump(by_alias=True)
    body["isCurrent"] = True
    created = await api.create_structure(user.token, coaching_id, body)
    await cache.invalidate_prefix(coaching_prefix(coaching_id))
    if previous is not None:
        previous = previous.model_copy(update={"is_current": False})
        logger.info("Structure %s replaced %s as current", created.id, previous.id)
    return ReplaceResult(current=created, previous=previous)
