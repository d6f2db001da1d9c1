"""Vector store adapter for question embeddings.

Owns the ``questions.embedding`` column: writes vectors next to existing rows and
answers nearest-neighbour queries inside the database. Distance is Euclidean (L2)
everywhere: pgvector's ``<->`` on PostgreSQL, ``vector_l2_distance`` on SQLite.

When the column (or the pgvector type) is missing, writes degrade to a
``Skipped`` result instead of raising, so the surrounding row write survives.
"""

from __future__ import annotations

import contextlib
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence, Union

import orjson
from sqlalchemy import Text, bindparam, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.types import TypeDecorator

from ..core.logging import get_logger
from ..core.metrics import VECTOR_WRITES
from ..errors import InvalidInputError
from .embeddings import coerce_dimension


logger = get_logger(__name__)

DEFAULT_NEIGHBOR_LIMIT = 3
SQLITE_DISTANCE_FUNCTION = "vector_l2_distance"

# undefined_column, undefined_object (e.g. type "vector" does not exist)
_UNDEFINED_SQLSTATES = frozenset({"42703", "42704"})
_UNDEFINED_ERROR_NAMES = frozenset({"UndefinedColumnError", "UndefinedObjectError"})


class SkipReason(str, Enum):
    CAPABILITY_UNAVAILABLE = "capability_unavailable"
    QUESTION_NOT_FOUND = "question_not_found"


@dataclass(frozen=True)
class Stored:
    question_id: str
    dimension: int


@dataclass(frozen=True)
class Cleared:
    question_id: str


@dataclass(frozen=True)
class Skipped:
    reason: SkipReason
    detail: Optional[str] = None


VectorWriteResult = Union[Stored, Cleared, Skipped]


@dataclass(frozen=True)
class VectorCapability:
    available: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class Neighbor:
    question_id: str
    distance: float


def format_vector(values: Sequence[float]) -> str:
    """Render floats as ``[x,y,...]``: pgvector's text input form, and valid JSON."""
    return "[" + ",".join(repr(float(v)) for v in values) + "]"


def parse_vector(raw: Any) -> Optional[list[float]]:
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        return [float(v) for v in raw]
    return [float(v) for v in orjson.loads(raw)]


def sqlite_l2_distance(a: Optional[str], b: Optional[str]) -> Optional[float]:
    """SQL function registered on SQLite connections; NULL for missing or mismatched vectors."""
    if a is None or b is None:
        return None
    try:
        va = orjson.loads(a)
        vb = orjson.loads(b)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(va, list) or not isinstance(vb, list) or len(va) != len(vb):
        return None
    return math.sqrt(sum((float(x) - float(y)) ** 2 for x, y in zip(va, vb)))


class VectorParam(TypeDecorator):
    """Bind type for vectors: the value travels as a bound text parameter, never as SQL text."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Optional[Sequence[float]], dialect: Any) -> Optional[str]:
        if value is None:
            return None
        return format_vector(value)


def _is_missing_vector_capability(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        sqlstate = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if sqlstate in _UNDEFINED_SQLSTATES:
            return True
        if type(candidate).__name__ in _UNDEFINED_ERROR_NAMES:
            return True
    # sqlite3 only reports this through the message
    return "no such column" in str(orig or exc).lower()


class _PostgresBackend:
    supports_savepoint = True

    probe_sql = text(
        "SELECT format_type(a.atttypid, a.atttypmod) FROM pg_attribute a "
        "WHERE a.attrelid = to_regclass('questions') "
        "AND a.attname = 'embedding' AND NOT a.attisdropped"
    )
    write_sql = text(
        "UPDATE questions SET embedding = CAST(CAST(:embedding AS TEXT) AS vector) "
        "WHERE id = :question_id"
    )
    read_sql = text("SELECT CAST(embedding AS TEXT) FROM questions WHERE id = :question_id")
    # Ordering by the bare distance expression lets an HNSW/IVFFlat index serve the scan.
    neighbors_sql = text(
        "SELECT id, embedding <-> CAST(CAST(:query AS TEXT) AS vector) AS distance "
        "FROM questions WHERE embedding IS NOT NULL "
        "ORDER BY embedding <-> CAST(CAST(:query AS TEXT) AS vector) "
        "LIMIT :limit"
    )

    async def probe(self, session: AsyncSession, dimension: int) -> VectorCapability:
        column_type = (await session.execute(self.probe_sql)).scalar_one_or_none()
        if column_type is None:
            return VectorCapability(False, "embedding column missing")
        if not column_type.startswith("vector"):
            return VectorCapability(False, f"embedding column has type {column_type}")
        if column_type != f"vector({dimension})" and column_type != "vector":
            return VectorCapability(False, f"embedding column is {column_type}, expected vector({dimension})")
        return VectorCapability(True)


class _SQLiteBackend:
    supports_savepoint = False

    write_sql = text("UPDATE questions SET embedding = :embedding WHERE id = :question_id")
    read_sql = text("SELECT embedding FROM questions WHERE id = :question_id")
    neighbors_sql = text(
        "SELECT id, distance FROM ("
        f"  SELECT id, created_at, {SQLITE_DISTANCE_FUNCTION}(embedding, :query) AS distance"
        "  FROM questions WHERE embedding IS NOT NULL"
        ") WHERE distance IS NOT NULL "
        "ORDER BY distance ASC, created_at DESC "
        "LIMIT :limit"
    )

    async def probe(self, session: AsyncSession, dimension: int) -> VectorCapability:
        result = await session.execute(text("PRAGMA table_info(questions)"))
        if "embedding" not in {row[1] for row in result}:
            return VectorCapability(False, "embedding column missing")
        return VectorCapability(True)


class _UnsupportedBackend:
    def __init__(self, dialect: str) -> None:
        self.dialect = dialect

    async def probe(self, session: AsyncSession, dimension: int) -> VectorCapability:
        return VectorCapability(False, f"dialect {self.dialect} has no vector support")


def _backend_for(dialect: str) -> Any:
    if dialect == "postgresql":
        return _PostgresBackend()
    if dialect == "sqlite":
        return _SQLiteBackend()
    return _UnsupportedBackend(dialect)


class VectorStore:
    """Reads and writes question embeddings through one session.

    The caller owns the transaction; nothing here commits.
    """

    def __init__(self, session: AsyncSession, dimension: int) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self._session = session
        self._dimension = dimension
        self._backend = _backend_for(session.get_bind().dialect.name)

    @property
    def dimension(self) -> int:
        return self._dimension

    async def probe(self) -> VectorCapability:
        return await self._backend.probe(self._session, self._dimension)

    def _prepare(self, vector: Sequence[float]) -> list[float]:
        values: list[float] = []
        for v in vector:
            if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
                raise InvalidInputError("Vector components must be finite numbers")
            values.append(float(v))
        return coerce_dimension(values, self._dimension)

    def _savepoint(self) -> Any:
        if self._backend.supports_savepoint:
            return self._session.begin_nested()
        return contextlib.nullcontext()

    async def upsert_vector(
        self, question_id: str, vector: Optional[Sequence[float]]
    ) -> VectorWriteResult:
        """Store (or clear, when ``vector`` is None) the embedding of one question.

        Raises ``DimensionMismatchError`` for short vectors; longer ones are truncated.
        A missing vector capability yields ``Skipped(CAPABILITY_UNAVAILABLE)``.
        """
        values = self._prepare(vector) if vector is not None else None

        capability = await self.probe()
        if not capability.available:
            return self._skip(question_id, SkipReason.CAPABILITY_UNAVAILABLE, capability.reason)

        stmt = self._backend.write_sql.bindparams(bindparam("embedding", type_=VectorParam()))
        try:
            async with self._savepoint():
                result = await self._session.execute(
                    stmt, {"embedding": values, "question_id": question_id}
                )
        except DBAPIError as exc:
            if not _is_missing_vector_capability(exc):
                raise
            return self._skip(question_id, SkipReason.CAPABILITY_UNAVAILABLE, str(exc.orig or exc))

        if result.rowcount == 0:
            return self._skip(question_id, SkipReason.QUESTION_NOT_FOUND)

        if values is None:
            VECTOR_WRITES.labels(result="cleared").inc()
            return Cleared(question_id=question_id)
        VECTOR_WRITES.labels(result="stored").inc()
        return Stored(question_id=question_id, dimension=len(values))

    def _skip(self, question_id: str, reason: SkipReason, detail: Optional[str] = None) -> Skipped:
        VECTOR_WRITES.labels(result=reason.value).inc()
        logger.warning(
            "vector_store.write_skipped",
            question_id=question_id,
            reason=reason.value,
            detail=detail,
        )
        return Skipped(reason=reason, detail=detail)

    async def nearest_neighbors(
        self, query_vector: Sequence[float], limit: int = DEFAULT_NEIGHBOR_LIMIT
    ) -> list[Neighbor]:
        """Up to ``limit`` questions by ascending L2 distance; rows without a vector never appear."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidInputError("limit must be a positive integer")
        values = self._prepare(query_vector)

        capability = await self.probe()
        if not capability.available:
            logger.warning("vector_store.search_unavailable", reason=capability.reason)
            return []

        stmt = self._backend.neighbors_sql.bindparams(bindparam("query", type_=VectorParam()))
        result = await self._session.execute(stmt, {"query": values, "limit": limit})
        return [Neighbor(question_id=row[0], distance=float(row[1])) for row in result]

    async def get_vector(self, question_id: str) -> Optional[list[float]]:
        capability = await self.probe()
        if not capability.available:
            return None
        raw = (
            await self._session.execute(self._backend.read_sql, {"question_id": question_id})
        ).scalar_one_or_none()
        return parse_vector(raw)

    async def has_vector(self, question_id: str) -> bool:
        capability = await self.probe()
        if not capability.available:
            return False
        result = await self._session.execute(
            text("SELECT 1 FROM questions WHERE id = :question_id AND embedding IS NOT NULL"),
            {"question_id": question_id},
        )
        return result.first() is not None
