"""
Async SQLAlchemy session factory.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config.settings import Settings, config
from database.models import Base


def build_engine(settings: Settings = config) -> AsyncEngine:
    kwargs: Dict[str, Any] = {"echo": False, "pool_recycle": 3600}
    if settings.database_url.startswith("postgresql"):
        kwargs.update(
            pool_size=10,
            max_overflow=20,
            pool_timeout=settings.database_timeout_seconds,
            connect_args={"command_timeout": settings.database_timeout_seconds},
        )
    return create_async_engine(settings.database_url, **kwargs)


engine = build_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create missing tables (idempotent)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency function — use in FastAPI `Depends(get_db_session)`."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
