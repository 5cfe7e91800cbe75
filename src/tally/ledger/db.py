"""Engine and session factory construction."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from tally.ledger.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from tally.config.schema import DatabaseConfig

logger = logging.getLogger(__name__)


def _engine_options(url: str, config: DatabaseConfig) -> dict[str, Any]:
    """Pool settings: SQLite gets a fixed pool, servers the configured one."""
    if not url.startswith("sqlite"):
        return {
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_timeout": config.pool_timeout,
            "pool_recycle": config.pool_recycle,
            "pool_pre_ping": True,
        }
    if ":memory:" in url:
        # every session must share the one connection holding the schema
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {"poolclass": NullPool}


def _prepare_sqlite_file(url: str) -> None:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def _pragma_foreign_keys(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


async def create_db(
    config: DatabaseConfig,
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create the async engine and sessionmaker.

    SQLite databases get their schema from ``create_all``; PostgreSQL is
    managed by alembic migrations.
    """
    url = config.url.replace("~", str(Path.home()))
    sqlite = url.startswith("sqlite")
    if sqlite:
        _prepare_sqlite_file(url)

    engine = create_async_engine(url, **_engine_options(url, config))
    if sqlite:
        event.listens_for(engine.sync_engine, "connect")(_pragma_foreign_keys)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    logger.debug("Database ready at %s", engine.url.render_as_string())
    return async_sessionmaker(engine, expire_on_commit=False), engine
