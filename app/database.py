"""
Async database engine and session management.

The engine and session factory are created once per application in the
FastAPI lifespan and kept on `app.state`; requests borrow a session through
the `get_db` dependency.
"""

from typing import AsyncGenerator, Tuple

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import Settings


def create_session_factory(settings: Settings) -> Tuple[AsyncEngine, async_sessionmaker]:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
    )
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine, session_factory


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; anything not committed by the route is rolled back."""
    session_factory: async_sessionmaker = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
