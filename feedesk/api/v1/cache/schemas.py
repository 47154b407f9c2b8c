from pydantic import BaseModel


class CacheStatus(BaseModel):
    enabled: bool
    entry_count: int
    size_bytes: int


class CacheToggle(BaseModel):
    enabled: bool
