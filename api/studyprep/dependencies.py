"""FastAPI dependency providers. Components are built per request from explicit parts."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import get_settings
from .db import get_db_session
from .domain.embeddings import IEmbeddingService
from .models import UserRecord
from .repositories import QuestionRepository
from .search.vector_store import VectorStore
from .services_questions import QuestionService
from .services_search import SemanticSearchService


def get_embedding_service(request: Request) -> IEmbeddingService:
    return request.app.state.embedding_service


def get_vector_store(db: AsyncSession = Depends(get_db_session)) -> VectorStore:
    return VectorStore(db, get_settings().embedding_dimension)


def get_question_repository(
    db: AsyncSession = Depends(get_db_session),
    vector_store: VectorStore = Depends(get_vector_store),
) -> QuestionRepository:
    return QuestionRepository(db, vector_store)


def get_question_service(
    repository: QuestionRepository = Depends(get_question_repository),
    embedder: IEmbeddingService = Depends(get_embedding_service),
) -> QuestionService:
    return QuestionService(repository, embedder, dimension=get_settings().embedding_dimension)


def get_search_service(
    repository: QuestionRepository = Depends(get_question_repository),
    embedder: IEmbeddingService = Depends(get_embedding_service),
) -> SemanticSearchService:
    settings = get_settings()
    return SemanticSearchService(
        repository,
        embedder,
        dimension=settings.embedding_dimension,
        default_limit=settings.search_default_limit,
        max_limit=settings.search_max_limit,
    )


def get_user_id(request: Request) -> Optional[str]:
    value = request.headers.get(get_settings().user_header_name)
    return value.strip() if value and value.strip() else None


async def require_user(
    user_id: Optional[str] = Depends(get_user_id),
    repository: QuestionRepository = Depends(get_question_repository),
) -> UserRecord:
    """Resolve the caller. Authentication itself happens upstream of this service."""
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    user = await repository.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user
