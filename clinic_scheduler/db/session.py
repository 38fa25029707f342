# clinic_scheduler/db/session.py
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from clinic_scheduler.core.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str, **kwargs) -> AsyncEngine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        # pooled Postgres connections go stale behind load balancers
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 1800)
    return create_async_engine(url, **kwargs)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # rows are read back after commit, so keep them loaded
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = make_engine(settings.async_db_uri)
AsyncSessionLocal = make_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
