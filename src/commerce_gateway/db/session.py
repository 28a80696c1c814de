"""
commerce_gateway.db.session

Async SQLAlchemy engine + session factory helpers.

Responsibilities:
- Create the async engine from settings.
- Connect to the store once at startup (verified with a round trip).
- Create the async sessionmaker with safe defaults.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from commerce_gateway.errors import StoreConnectionError
from commerce_gateway.observability.logging import get_logger
from commerce_gateway.settings import Settings

log = get_logger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    # pool_pre_ping helps detect stale connections in long-lived processes.
    return create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
    )


async def connect_store(settings: Settings) -> AsyncEngine:
    """
    Create the engine and prove the store answers before anyone depends on it.
    The engine is disposed again if the round trip fails.
    """

    engine = create_engine(settings)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        await engine.dispose()
        raise StoreConnectionError(f"Could not connect to the backing store: {e}") from e
    log.info("store_connected", dialect=engine.dialect.name)
    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False avoids surprising lazy loads after commits.
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


# --- Module Notes -----------------------------------------------------------
# Route groups obtain sessions via `api.deps.db_session`; schemas and repositories
# live with the route groups that own them.
