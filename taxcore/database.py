"""
database.py — SQLAlchemy 2.0 async engine, session factory and request session.

Owns every piece of connection infrastructure; store.py is the only module that
issues statements.

Routes get a session through the get_db dependency, one transaction per request:
    async def route(db: AsyncSession = Depends(get_db)): ...
A lifecycle operation therefore either commits all of its writes or none.

Work that must only happen once those writes are durable (dropping cached
listings) is queued with call_after_commit() and run by get_db after COMMIT.
"""
from collections.abc import AsyncGenerator, Awaitable, Callable

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from taxcore.config import settings


class Base(DeclarativeBase):
    """
    Declarative base for taxcore/models/.
    Lives here rather than in models/ so alembic/env.py can import it without cycles.
    """
    pass


# ---------------------------------------------------------------------------
# Engine — created once per process
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=False,               # Statement parameters carry taxpayer amounts
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,       # Drop connections the server closed while idle
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,   # Domain records are built from ORM rows after commit
)


AFTER_COMMIT_KEY = "after_commit"


def call_after_commit(session: AsyncSession, callback: Callable[[], Awaitable[None]]) -> None:
    """Queue `callback` to run once the request transaction has committed."""
    session.info.setdefault(AFTER_COMMIT_KEY, []).append(callback)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: one AsyncSession per request.
    Commits when the route returns normally; rolls back on any exception so a
    failed transition leaves the previously persisted record intact.
    Callbacks queued with call_after_commit() run only after a successful commit.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            session.info.pop(AFTER_COMMIT_KEY, None)
            await session.rollback()
            raise
        for callback in session.info.pop(AFTER_COMMIT_KEY, []):
            await callback()
