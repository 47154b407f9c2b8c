"""Offline cache switch and maintenance for one coaching. Disabling keeps stored entries until cleared."""

from fastapi import APIRouter, Depends

from feedesk.auth.rbac import require_coaching_member, require_fee_admin
from feedesk.auth.schemas import CurrentUser
from feedesk.clients.cache import ReadThroughCache, get_cache

from .schemas import CacheStatus, CacheToggle

router = APIRouter(prefix="/api/v1/coaching/{coaching_id}/cache", tags=["cache"])


async def _status(cache: ReadThroughCache, coaching_id: str) -> CacheStatus:
    return CacheStatus(
        enabled=await cache.is_enabled(coaching_id),
        entry_count=await cache.entry_count(coaching_id),
        size_bytes=await cache.size_bytes(coaching_id),
    )


@router.get("", response_model=CacheStatus)
async def cache_status(
    coaching_id: str,
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_coaching_member),
) -> CacheStatus:
    return await _status(cache, coaching_id)


@router.put("", response_model=CacheStatus)
async def toggle_cache(
    coaching_id: str,
    payload: CacheToggle,
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> CacheStatus:
    await cache.set_enabled(coaching_id, payload.enabled)
    return await _status(cache, coaching_id)


@router.delete("", response_model=CacheStatus)
async def clear_cache(
    coaching_id: str,
    cache: ReadThroughCache = Depends(get_cache),
    current_user: CurrentUser = Depends(require_fee_admin),
) -> CacheStatus:
    await cache.clear(coaching_id)
    return await _status(cache, coaching_id)
