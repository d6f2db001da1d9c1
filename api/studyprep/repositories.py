"""Question data access, including the embedding-aware write and read paths."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .core.logging import get_logger
from .domain.questions import Question, SearchHit, question_from_row
from .models import QuestionRecord, UserRecord
from .search.vector_store import (
    DEFAULT_NEIGHBOR_LIMIT,
    Stored,
    VectorStore,
    VectorWriteResult,
)


logger = get_logger(__name__)

_EDITABLE_FIELDS = ("title", "type", "description", "images")


def clean_images(images: Optional[Sequence[str]]) -> list[str]:
    """Keep non-blank string URLs only."""
    if not images:
        return []
    return [url.strip() for url in images if isinstance(url, str) and url.strip()]


@dataclass
class QuestionFields:
    title: str
    description: str
    type: str = "general"
    images: list[str] = field(default_factory=list)
    user_id: Optional[str] = None


class QuestionRepository:
    """Question CRUD over one session. Vector reads and writes go through ``VectorStore``."""

    def __init__(self, session: AsyncSession, vector_store: VectorStore) -> None:
        self._session = session
        self._vectors = vector_store

    @property
    def vector_store(self) -> VectorStore:
        return self._vectors

    def _select(self):
        return select(QuestionRecord).options(selectinload(QuestionRecord.user))

    async def _load(self, question_id: str) -> Optional[QuestionRecord]:
        result = await self._session.execute(self._select().where(QuestionRecord.id == question_id))
        return result.scalar_one_or_none()

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return await self._session.get(UserRecord, user_id)

    async def create(
        self, fields: QuestionFields, embedding: Optional[Sequence[float]] = None
    ) -> Question:
        """Insert and commit the row, then attach the embedding if one was supplied.

        The embedding write may degrade (``Skipped``); the question is returned either way,
        with ``embedding`` set only when the vector was stored. A vector shorter than the
        store dimension raises ``DimensionMismatchError`` after the row is committed.
        """
        row = QuestionRecord(
            title=fields.title.strip(),
            type=(fields.type or "general").strip() or "general",
            description=fields.description.strip(),
            images=clean_images(fields.images),
            user_id=fields.user_id,
        )
        self._session.add(row)
        await self._session.commit()
        logger.info("questions.created", question_id=row.id, user_id=row.user_id)

        stored_vector: Optional[list[float]] = None
        if embedding is not None:
            result = await self.store_embedding(row.id, embedding)
            if isinstance(result, Stored):
                stored_vector = await self._vectors.get_vector(row.id)

        loaded = await self._load(row.id)
        return question_from_row(loaded, embedding=stored_vector)

    async def store_embedding(self, question_id: str, vector: Sequence[float]) -> VectorWriteResult:
        try:
            result = await self._vectors.upsert_vector(question_id, vector)
        except Exception:
            await self._session.rollback()
            raise
        await self._session.commit()
        if not isinstance(result, Stored):
            logger.info("questions.embedding_not_stored", question_id=question_id, result=repr(result))
        return result

    async def find_by_id(self, question_id: str, *, with_embedding: bool = False) -> Optional[Question]:
        row = await self._load(question_id)
        if row is None:
            return None
        vector = await self._vectors.get_vector(question_id) if with_embedding else None
        return question_from_row(row, embedding=vector)

    async def find_all(self) -> list[Question]:
        result = await self._session.execute(
            self._select().order_by(QuestionRecord.created_at.desc())
        )
        return [question_from_row(r) for r in result.scalars().all()]

    async def find_by_user(self, user_id: str) -> list[Question]:
        result = await self._session.execute(
            self._select()
            .where(QuestionRecord.user_id == user_id)
            .order_by(QuestionRecord.created_at.desc())
        )
        return [question_from_row(r) for r in result.scalars().all()]

    async def update(self, question_id: str, changes: dict) -> Optional[Question]:
        """Apply title/type/description/images changes. The stored embedding is left as is."""
        row = await self._load(question_id)
        if row is None:
            return None
        for name in _EDITABLE_FIELDS:
            value = changes.get(name)
            if value is None:
                continue
            if name == "images":
                row.images = clean_images(value)
            else:
                setattr(row, name, value.strip())
        row.updated_at = datetime.now(timezone.utc)
        await self._session.commit()
        loaded = await self._load(question_id)
        return question_from_row(loaded)

    async def delete(self, question_id: str) -> bool:
        """Delete the row; the embedding lives on the same row and goes with it."""
        result = await self._session.execute(
            delete(QuestionRecord).where(QuestionRecord.id == question_id)
        )
        await self._session.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("questions.deleted", question_id=question_id)
        return deleted

    async def search_by_embedding(
        self, vector: Sequence[float], limit: int = DEFAULT_NEIGHBOR_LIMIT
    ) -> list[SearchHit]:
        neighbors = await self._vectors.nearest_neighbors(vector, limit)
        if not neighbors:
            return []
        ids = [n.question_id for n in neighbors]
        result = await self._session.execute(self._select().where(QuestionRecord.id.in_(ids)))
        rows = {r.id: r for r in result.scalars().all()}
        # rows deleted between the two queries are dropped
        return [
            SearchHit(question=question_from_row(rows[n.question_id]), distance=n.distance)
            for n in neighbors
            if n.question_id in rows
        ]
