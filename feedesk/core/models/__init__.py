from feedesk.core.models.cache_entry import CacheEntry, CacheSetting

__all__ = [
    "CacheEntry",
    "CacheSetting",
]
