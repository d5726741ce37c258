"""Database engine and session factory.

The payment gateway layer only reads configuration rows; writes belong to
the administrative workflow that owns them.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from tenantpay.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_engine(database_url: Optional[str] = None, **kwargs) -> AsyncEngine:
    """Create an async engine for the configured database."""
    return create_async_engine(database_url or settings.DATABASE_URL, **kwargs)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


engine = create_engine()
async_session_maker = create_session_maker(engine)
