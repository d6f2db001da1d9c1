"""Semantic question search: query text -> embedding -> nearest questions."""

from __future__ import annotations

from typing import Optional

from .core.logging import get_logger
from .core.metrics import SEARCH_REQUESTS, SEARCH_RESULTS
from .domain.embeddings import IEmbeddingService
from .domain.questions import SearchHit
from .errors import EmbeddingError, InvalidInputError
from .repositories import QuestionRepository
from .search.embeddings import coerce_dimension
from .search.vector_store import DEFAULT_NEIGHBOR_LIMIT
from .security import sanitize_for_logging


logger = get_logger(__name__)


class SemanticSearchService:
    """Stateless: every call embeds the query and re-queries the store."""

    def __init__(
        self,
        repository: QuestionRepository,
        embedder: IEmbeddingService,
        *,
        dimension: int,
        default_limit: int = DEFAULT_NEIGHBOR_LIMIT,
        max_limit: Optional[int] = None,
    ) -> None:
        self._repository = repository
        self._embedder = embedder
        self._dimension = dimension
        self._default_limit = default_limit
        self._max_limit = max_limit

    async def search(self, query_text: str, limit: Optional[int] = None) -> list[SearchHit]:
        """Questions ranked by ascending distance to the query. Embedding failures propagate."""
        if not query_text or not query_text.strip():
            SEARCH_REQUESTS.labels(status="invalid_input").inc()
            raise InvalidInputError("Search query is required")
        limit = self._default_limit if limit is None else limit
        if limit < 1:
            SEARCH_REQUESTS.labels(status="invalid_input").inc()
            raise InvalidInputError("limit must be at least 1")
        if self._max_limit is not None:
            limit = min(limit, self._max_limit)

        try:
            embedding = await self._embedder.embed(query_text.strip())
            vector = coerce_dimension(embedding.vector, self._dimension)
        except EmbeddingError as e:
            SEARCH_REQUESTS.labels(status="embedding_error").inc()
            logger.error(
                "search.embedding_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=sanitize_for_logging(query_text, 100),
            )
            raise

        hits = await self._repository.search_by_embedding(vector, limit)
        SEARCH_REQUESTS.labels(status="success").inc()
        SEARCH_RESULTS.observe(len(hits))
        logger.info("search.completed", limit=limit, result_count=len(hits))
        return hits
