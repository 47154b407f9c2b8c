"""Opaque key-value cache rows used as a read fallback when the fee service is down."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String

from feedesk.db.session import Base


class CacheEntry(Base):
    __tablename__ = "cache_entries"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class CacheSetting(Base):
    """Small settings table; holds the offline-cache toggle."""

    __tablename__ = "cache_settings"

    key = Column(String(100), primary_key=True)
    value = Column(String(255), nullable=False)
