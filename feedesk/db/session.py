from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from feedesk.core.config import settings

# The cache database only backs stale reads; a local SQLite file is the default.
engine = create_async_engine(
    settings.cache_database_url,
    echo=False,
    future=True,
    pool_pre_ping=True,
    pool_recycle=300,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


async def init_models() -> None:
    """Create cache tables if missing."""
    from feedesk.core import models  # noqa: F401  (register tables on Base)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
