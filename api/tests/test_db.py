from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from studyprep.db import ensure_vector_column, get_engine
from studyprep.models import Base


@pytest.mark.asyncio
async def test_ensure_vector_column_is_idempotent():
    async with get_engine().begin() as conn:
        assert await ensure_vector_column(conn, 8) is True
        assert await ensure_vector_column(conn, 8) is True
        columns = [row[1] for row in await conn.execute(text("PRAGMA table_info(questions)"))]
    assert columns.count("embedding") == 1


@pytest.mark.asyncio
async def test_ensure_vector_column_adds_missing_column():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            before = {row[1] for row in await conn.execute(text("PRAGMA table_info(questions)"))}
            assert "embedding" not in before
            assert await ensure_vector_column(conn, 8) is True
            after = {row[1] for row in await conn.execute(text("PRAGMA table_info(questions)"))}
        assert "embedding" in after
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_sqlite_connections_register_distance_function():
    async with get_engine().connect() as conn:
        result = await conn.execute(text("SELECT vector_l2_distance('[0, 0]', '[3, 4]')"))
        assert result.scalar_one() == pytest.approx(5.0)
