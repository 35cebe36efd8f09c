"""
Campus Retention Sweeper — Sweep run history database.

One engine per process, built from ``settings.database_url``. Tests build
their own engine with ``make_engine`` and pass it to ``init_db``.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from sweeper.config import settings

# postgres only; sqlite uses its own single-file pool
POOL_OPTIONS = {
    "pool_size": 2,
    "max_overflow": 3,
    "pool_pre_ping": True,
    "pool_recycle": 300,
}


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, pooling only for server databases."""
    options = {} if url.startswith("sqlite") else POOL_OPTIONS
    return create_async_engine(url, echo=echo, **options)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine(settings.database_url)
async_session = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """FastAPI dependency — yields an async session."""
    async with async_session() as session:
        yield session


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the sweep_runs table if it does not exist yet."""
    from sweeper import models  # noqa: F401  (register tables on Base.metadata)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(bind: AsyncEngine | None = None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def close_db() -> None:
    await engine.dispose()
