from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .core.config import get_settings
from .core.logging import get_logger
from .search.vector_store import SQLITE_DISTANCE_FUNCTION, sqlite_l2_distance


logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        dbapi_connection.create_function(SQLITE_DISTANCE_FUNCTION, 2, sqlite_l2_distance)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = get_settings().database_url
        kwargs: dict = {"future": True}
        if not url.startswith("sqlite"):
            kwargs["pool_pre_ping"] = True
        _engine = create_async_engine(url, **kwargs)
        if _engine.dialect.name == "sqlite":
            _install_sqlite_hooks(_engine)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def get_db_session() -> AsyncIterator[AsyncSession]:
    factory = get_session_factory()
    async with factory() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def ensure_vector_column(conn: AsyncConnection, dimension: int) -> bool:
    """Best-effort creation of ``questions.embedding``. Returns False when the store lacks vector support.

    PostgreSQL needs the pgvector extension; failures (missing extension, no privilege)
    leave the schema untouched and question writes run without embeddings.
    """
    dialect = conn.dialect.name
    if dialect == "sqlite":
        result = await conn.execute(text("PRAGMA table_info(questions)"))
        columns = {row[1] for row in result}
        if "embedding" not in columns:
            await conn.execute(text("ALTER TABLE questions ADD COLUMN embedding TEXT"))
        return True
    if dialect == "postgresql":
        try:
            async with conn.begin_nested():
                await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                await conn.execute(
                    text(
                        "ALTER TABLE questions ADD COLUMN IF NOT EXISTS "
                        f"embedding vector({int(dimension)})"
                    )
                )
        except DBAPIError as exc:
            logger.warning("db.vector_capability_unavailable", error=str(exc.orig or exc))
            return False
        return True
    logger.warning("db.vector_capability_unsupported_dialect", dialect=dialect)
    return False
