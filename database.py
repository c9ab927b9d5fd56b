# File: database.py

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config import settings

def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Build the async engine. PostgreSQL gets a sized pool, SQLite does not."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_pre_ping=True,
    )

def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

engine = create_engine_for_url(settings.database_url_str, echo=settings.DB_ECHO)

async_session = create_session_factory(engine)

# get_db with dependency-level transaction management (read paths)
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    session: Optional[AsyncSession] = None
    try:
        session = async_session()
        yield session
        # If endpoint was successful (no exception propagated out), commit.
        if session.in_transaction():
            await session.commit()
    except Exception:
        if session is not None and session.in_transaction():
            await session.rollback()
        raise
    finally:
        if session is not None:
            await session.close()
