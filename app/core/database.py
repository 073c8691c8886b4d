from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from redis import asyncio as aioredis
from typing import Any, AsyncGenerator, Dict, Optional, Type, TypeVar
from app.core.config import settings

ModelT = TypeVar("ModelT")


def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool sizing applies to server databases only; SQLite uses a static pool"""
    options: Dict[str, Any] = {"echo": settings.DEBUG, "future": True}
    if not database_url.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return options


async_engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

# Loan services keep working with their objects after commit
AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

Base = declarative_base()


async def lock_row(session: AsyncSession, model: Type[ModelT], pk: int) -> Optional[ModelT]:
    """
    Load a row with SELECT ... FOR UPDATE and refresh the identity map copy.

    Held until the session commits or rolls back. SQLite ignores the lock;
    the partial unique indexes still catch a lost race there.
    """
    result = await session.execute(
        select(model)
        .where(model.id == pk)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# Redis holds OTPs and the revoked-token list
redis_pool = None


async def get_redis() -> aioredis.Redis:
    global redis_pool
    if redis_pool is None:
        redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS
        )
    return redis_pool


async def close_redis():
    global redis_pool
    if redis_pool:
        await redis_pool.aclose()
        redis_pool = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; services commit their own units of work"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
