"""Question flows: create with best-effort embedding, edit, delete, index."""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .core.logging import get_logger
from .core.metrics import QUESTION_EMBEDDINGS
from .domain.embeddings import IEmbeddingService
from .domain.questions import Question
from .errors import EmbeddingError, InvalidInputError
from .repositories import QuestionFields, QuestionRepository
from .search.embeddings import coerce_dimension
from .search.vector_store import Stored


logger = get_logger(__name__)


def embedding_text(title: str, description: str) -> str:
    return f"{title.strip()} {description.strip()}".strip()


class QuestionService:
    def __init__(
        self,
        repository: QuestionRepository,
        embedder: IEmbeddingService,
        *,
        dimension: int,
    ) -> None:
        self._repository = repository
        self._embedder = embedder
        self._dimension = dimension

    async def list_questions(self) -> list[Question]:
        return await self._repository.find_all()

    async def list_user_questions(self, user_id: str) -> list[Question]:
        return await self._repository.find_by_user(user_id)

    async def get_question(self, question_id: str) -> Optional[Question]:
        return await self._repository.find_by_id(question_id, with_embedding=True)

    async def create_question(
        self,
        *,
        title: str,
        description: str,
        type: str = "general",
        images: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
    ) -> Question:
        """Create a question. Succeeds whenever title and description are valid.

        The row is committed before the embedding is requested, so a failed or
        abandoned embedding call leaves a question without a vector.
        """
        if not title or not title.strip():
            raise InvalidInputError("Title is required")
        if not description or not description.strip():
            raise InvalidInputError("Description is required")

        question = await self._repository.create(
            QuestionFields(
                title=title,
                description=description,
                type=type,
                images=list(images or []),
                user_id=user_id,
            )
        )

        vector = await self._try_embed(question)
        if vector is None:
            QUESTION_EMBEDDINGS.labels(outcome="embedding_failed").inc()
            return question

        try:
            result = await self._repository.store_embedding(question.id, vector)
        except SQLAlchemyError as e:
            QUESTION_EMBEDDINGS.labels(outcome="skipped").inc()
            logger.error(
                "questions.embedding_store_failed",
                question_id=question.id,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return question
        if isinstance(result, Stored):
            QUESTION_EMBEDDINGS.labels(outcome="stored").inc()
            question.embedding = vector
        else:
            QUESTION_EMBEDDINGS.labels(outcome="skipped").inc()
        return question

    async def _try_embed(self, question: Question) -> Optional[list[float]]:
        try:
            embedding = await self._embedder.embed(embedding_text(question.title, question.description))
            return coerce_dimension(embedding.vector, self._dimension)
        except EmbeddingError as e:
            logger.warning(
                "questions.embedding_failed",
                question_id=question.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def update_question(self, question_id: str, changes: dict) -> Optional[Question]:
        for name in ("title", "description", "type"):
            value = changes.get(name)
            if value is not None and not value.strip():
                raise InvalidInputError(f"{name.capitalize()} must not be blank")
        if await self._repository.update(question_id, changes) is None:
            return None
        return await self._repository.find_by_id(question_id, with_embedding=True)

    async def delete_question(self, question_id: str) -> bool:
        return await self._repository.delete(question_id)

    async def index_question(self, question_id: str) -> Optional[Question]:
        """Embed a question that has no vector yet. Existing vectors are never replaced.

        Embedding errors propagate. Returns None when the question does not exist.
        """
        question = await self._repository.find_by_id(question_id, with_embedding=True)
        if question is None:
            return None
        if question.has_embedding:
            return question
        embedding = await self._embedder.embed(embedding_text(question.title, question.description))
        vector = coerce_dimension(embedding.vector, self._dimension)
        result = await self._repository.store_embedding(question.id, vector)
        if isinstance(result, Stored):
            logger.info("questions.indexed", question_id=question.id)
        return await self._repository.find_by_id(question_id, with_embedding=True)
