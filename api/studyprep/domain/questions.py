"""Question domain objects and the single row -> Question hydration step."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..models import QuestionRecord, UserRecord

DELETED_AUTHOR_NAME = "Deleted User"

# Deterministic fallback for rows with NULL timestamps.
_LEGACY_TIMESTAMP = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Author:
    id: Optional[str]
    name: Optional[str]
    email: Optional[str]
    display_name: str

    @property
    def is_deleted(self) -> bool:
        return self.id is None


DELETED_AUTHOR = Author(id=None, name=None, email=None, display_name=DELETED_AUTHOR_NAME)


def display_name_for(name: Optional[str], email: Optional[str]) -> str:
    """Name, else the local part of the email address."""
    if name and name.strip():
        return name.strip()
    if email:
        return email.split("@")[0]
    return DELETED_AUTHOR_NAME


def author_from_user(user: "UserRecord | None") -> Author:
    if user is None:
        return DELETED_AUTHOR
    return Author(
        id=user.id,
        name=user.name,
        email=user.email,
        display_name=display_name_for(user.name, user.email),
    )


@dataclass
class Question:
    id: str
    title: str
    type: str
    description: str
    images: list[str]
    user_id: Optional[str]
    author: Author
    created_at: datetime
    updated_at: datetime
    embedding: Optional[list[float]] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def belongs_to(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.user_id == user_id


@dataclass
class SearchHit:
    """A question ranked by its L2 distance to a query vector."""

    question: Question
    distance: float


def question_from_row(row: "QuestionRecord", embedding: Optional[list[float]] = None) -> Question:
    """Build a Question from an ORM row. The owner must already be loaded on the row.

    A missing owner (user deleted, or ``user_id`` dangling) hydrates as ``DELETED_AUTHOR``.
    """
    return Question(
        id=row.id,
        title=row.title,
        type=row.type,
        description=row.description,
        images=list(row.images or []),
        user_id=row.user_id,
        author=author_from_user(row.user),
        created_at=row.created_at or _LEGACY_TIMESTAMP,
        updated_at=row.updated_at or row.created_at or _LEGACY_TIMESTAMP,
        embedding=list(embedding) if embedding is not None else None,
    )
