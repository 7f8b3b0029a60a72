"""
TxnGuard — Database Layer
Async SQLAlchemy (asyncpg in production, aiosqlite in tests).
All ORM models import Base from here.
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

from txnguard.config import settings

Base = declarative_base()


# ---------------------------------------------------------------------------
# Engine & Session
# ---------------------------------------------------------------------------
def _engine_kwargs(url: str) -> Dict[str, Any]:
    # SQLite drivers reject pool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_recycle": settings.DATABASE_POOL_RECYCLE,
        "pool_pre_ping": True,
        "echo": False,
    }


def build_engine(url: str = settings.DATABASE_URL) -> AsyncEngine:
    return create_async_engine(url, **_engine_kwargs(url))


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


# ---------------------------------------------------------------------------
# Dependency — injected into FastAPI route handlers
# ---------------------------------------------------------------------------
async def get_db() -> AsyncSession:
    """Yield a session; guarantee close on exit."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ---------------------------------------------------------------------------
# Startup helper
# ---------------------------------------------------------------------------
async def init_db(bind: AsyncEngine = engine):
    """Create all tables that are registered on Base.  Idempotent."""
    # models must be imported so their tables are registered on Base
    from txnguard.models import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
