"""Opt-in read-through cache backed by the cache database.

Reads go to the fee service first. When it cannot be reached, the last stored
copy is served and flagged stale. Upstream 4xx/5xx answers are never masked.

Entries and the on/off switch are scoped per coaching: every key starts with
``coaching:{id}:`` and only that coaching's switch decides whether it is
stored or served. Keys outside a coaching scope are never stored. The switch
is off by default.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.core.config import settings
from feedesk.core.exceptions import UpstreamUnavailable
from feedesk.core.models import CacheEntry, CacheSetting
from feedesk.db.session import get_db

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENABLED_KEY = "offline_cache_enabled"
_PREFIX = "coaching:"


def coaching_prefix(coaching_id: str) -> str:
    return f"{_PREFIX}{coaching_id}:"


def coaching_of(key: str) -> Optional[str]:
    if not key.startswith(_PREFIX):
        return None
    coaching_id, sep, _ = key[len(_PREFIX):].partition(":")
    return coaching_id if sep and coaching_id else None


class ReadThroughCache:
    def __init__(self, db: AsyncSession, max_age_seconds: Optional[int] = None) -> None:
        self.db = db
        self.max_age = timedelta(seconds=max_age_seconds or settings.cache_max_age_seconds)

    # --- toggle ---
    async def is_enabled(self, coaching_id: str) -> bool:
        row = await self.db.get(CacheSetting, f"{ENABLED_KEY}:{coaching_id}")
        return row is not None and row.value == "true"

    async def set_enabled(self, coaching_id: str, value: bool) -> None:
        """Switching off keeps stored entries; clear() removes them."""
        key = f"{ENABLED_KEY}:{coaching_id}"
        row = await self.db.get(CacheSetting, key)
        if row is None:
            self.db.add(CacheSetting(key=key, value=str(value).lower()))
        else:
            row.value = str(value).lower()
        await self.db.commit()

    async def _active(self, key: str) -> bool:
        coaching_id = coaching_of(key)
        return coaching_id is not None and await self.is_enabled(coaching_id)

    # --- entries ---
    async def get(self, key: str, max_age: Optional[timedelta] = None) -> Optional[Any]:
        if not await self._active(key):
            return None
        entry = await self.db.get(CacheEntry, key)
        if entry is None:
            return None
        if datetime.utcnow() - entry.updated_at > (max_age or self.max_age):
            return None
        return entry.value

    async def put(self, key: str, value: Any) -> None:
        if not await self._active(key):
            return
        size = len(json.dumps(value, default=str))
        entry = await self.db.get(CacheEntry, key)
        if entry is None:
            self.db.add(CacheEntry(key=key, value=value, size_bytes=size, updated_at=datetime.utcnow()))
        else:
            entry.value = value
            entry.size_bytes = size
            entry.updated_at = datetime.utcnow()
        await self.db.commit()

    async def invalidate(self, key: str) -> None:
        await self.db.execute(delete(CacheEntry).where(CacheEntry.key == key))
        await self.db.commit()

    async def invalidate_prefix(self, prefix: str) -> None:
        await self.db.execute(delete(CacheEntry).where(CacheEntry.key.startswith(prefix, autoescape=True)))
        await self.db.commit()

    async def clear(self, coaching_id: Optional[str] = None) -> None:
        """Drop one coaching's entries, or every entry when no coaching is given."""
        if coaching_id is not None:
            await self.invalidate_prefix(coaching_prefix(coaching_id))
            return
        await self.db.execute(delete(CacheEntry))
        await self.db.commit()

    def _scoped(self, query, coaching_id: Optional[str]):
        if coaching_id is None:
            return query
        return query.where(CacheEntry.key.startswith(coaching_prefix(coaching_id), autoescape=True))

    async def entry_count(self, coaching_id: Optional[str] = None) -> int:
        query = self._scoped(select(func.count()).select_from(CacheEntry), coaching_id)
        return (await self.db.execute(query)).scalar() or 0

    async def size_bytes(self, coaching_id: Optional[str] = None) -> int:
        query = self._scoped(select(func.coalesce(func.sum(CacheEntry.size_bytes), 0)), coaching_id)
        return (await self.db.execute(query)).scalar() or 0

    # --- read-through ---
    async def fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        parser: Callable[[Any], T],
    ) -> Tuple[T, bool]:
        """Return (value, stale). Network first, stored copy when unreachable."""
        try:
            raw = await fetcher()
        except UpstreamUnavailable as unavailable:
            cached = await self.get(key)
            if cached is None:
                raise
            try:
                value = parser(cached)
            except (ValidationError, TypeError, ValueError):
                logger.warning("Ignoring corrupt cache entry %s", key)
                raise unavailable
            logger.info("Serving stale cache entry %s", key)
            return value, True
        value = parser(raw)
        await self.put(key, raw)
        return value, False


async def get_cache(db: AsyncSession = Depends(get_db)) -> ReadThroughCache:
    return ReadThroughCache(db)
