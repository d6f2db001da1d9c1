from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .domain.questions import Question, SearchHit


class AuthorRead(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    display_name: str


class QuestionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    type: str = Field("general", min_length=1, max_length=64)
    description: str = Field(..., min_length=1, max_length=100_000)
    images: list[str] = Field(default_factory=list, max_length=20)


class QuestionUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = Field(None, min_length=1, max_length=100_000)
    images: Optional[list[str]] = Field(None, max_length=20)


class QuestionRead(BaseModel):
    id: str
    title: str
    type: str
    description: str
    images: list[str]
    user_id: Optional[str]
    author: AuthorRead
    author_name: str
    has_embedding: Optional[bool] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, q: Question, *, embedding_loaded: bool = True) -> "QuestionRead":
        """``has_embedding`` is None when the vector was not read (list views)."""
        return cls(
            id=q.id,
            title=q.title,
            type=q.type,
            description=q.description,
            images=q.images,
            user_id=q.user_id,
            author=AuthorRead(
                id=q.author.id,
                name=q.author.name,
                email=q.author.email,
                display_name=q.author.display_name,
            ),
            author_name=q.author.display_name,
            has_embedding=q.has_embedding if embedding_loaded else None,
            created_at=q.created_at,
            updated_at=q.updated_at,
        )


class QuestionList(BaseModel):
    questions: list[QuestionRead]


class SearchRequest(BaseModel):
    query: str = Field(..., max_length=2000)
    limit: Optional[int] = Field(None, ge=1, le=50)


class SearchResultRead(QuestionRead):
    distance: float

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SearchResultRead":
        # only rows with a stored vector are ranked
        fields = QuestionRead.from_domain(hit.question).model_dump()
        fields["has_embedding"] = True
        return cls(**fields, distance=round(hit.distance, 6))


class SearchResponse(BaseModel):
    questions: list[SearchResultRead]
    query: str
    count: int


class EmbeddingRequest(BaseModel):
    text: str = Field(..., max_length=20_000)


class EmbeddingResponse(BaseModel):
    embedding: list[float]
    dimensions: int
    model: str


class DeleteResponse(BaseModel):
    success: bool = True


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str
    timestamp: datetime
    db_ok: Optional[bool] = None
    redis_ok: Optional[bool] = None
    embeddings_ok: Optional[bool] = None
    vector_ok: Optional[bool] = None
