"""
Async SQLAlchemy engine and session factory.

``asyncpg`` drives PostgreSQL.  Booking and payment state changes are
conditional ``UPDATE`` statements (see ``repositories``), so sessions never
hold row locks across the outbound gateway or routing calls.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cargohaul.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
)

# Objects stay readable after commit; response models are built from them.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for users, vehicles, bookings, payments and ratings."""
