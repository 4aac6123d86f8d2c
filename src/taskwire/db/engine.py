"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-unit-of-work database access. The web process and the
worker each build their own factory at startup from DATABASE_URL; tests
point it at a throwaway SQLite file instead.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

SessionFactory = async_sessionmaker[AsyncSession]


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    # SQLite (tests) rejects pool sizing options
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=15,
    )


def create_session_factory(database_url: str, echo: bool = False) -> SessionFactory:
    return session_factory_for(create_engine(database_url, echo=echo))


def session_factory_for(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

