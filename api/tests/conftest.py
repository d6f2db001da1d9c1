from __future__ import annotations

import hashlib
import os

import pytest
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EMBEDDING_PROVIDER"] = "mock"
os.environ["EMBEDDING_DIMENSION"] = "8"
os.environ.pop("REDIS_URL", None)
os.environ.pop("API_KEY", None)

from studyprep.api import create_app
from studyprep.db import ensure_vector_column, get_engine, get_session_factory
from studyprep.domain.embeddings import Embedding, IEmbeddingService
from studyprep.errors import InvalidInputError
from studyprep.models import Base, QuestionRecord, UserRecord
from studyprep.repositories import QuestionFields, QuestionRepository
from studyprep.search.vector_store import VectorStore

DIM = 8


def unit(index: int, scale: float = 1.0) -> list[float]:
    """One-hot test vector of length DIM."""
    v = [0.0] * DIM
    v[index] = scale
    return v


class FakeEmbedder(IEmbeddingService):
    """Maps exact texts to vectors; unknown texts get a hash-derived vector."""

    def __init__(self, vectors=None, *, error: Exception | None = None, dimension: int = DIM):
        self.vectors = dict(vectors or {})
        self.error = error
        self.dimension = dimension
        self.calls: list[str] = []

    async def embed(self, text: str) -> Embedding:
        if not text or not text.strip():
            raise InvalidInputError("Text is required for embedding generation")
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        vector = self.vectors.get(text)
        if vector is None:
            h = hashlib.sha256(text.encode()).digest()
            vector = [float((h[i] - 128) / 128.0) for i in range(self.dimension)]
        return Embedding(vector=list(vector), dimension=len(vector), model="fake")

    def get_dimension(self) -> int:
        return self.dimension


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Drop logging config bound to a per-test capture stream that pytest closes."""
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
async def _clean_db():
    """Ensure tables and the embedding column exist; clear rows before each test."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await ensure_vector_column(conn, DIM)
        await conn.execute(delete(QuestionRecord))
        await conn.execute(delete(UserRecord))
    yield


@pytest.fixture
async def db_session():
    factory = get_session_factory()
    async with factory() as session:
        yield session


@pytest.fixture
def vector_store(db_session):
    return VectorStore(db_session, DIM)


@pytest.fixture
def repository(db_session, vector_store):
    return QuestionRepository(db_session, vector_store)


@pytest.fixture
async def bare_session():
    """Session on a separate database whose questions table has no embedding column."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def bare_repository(bare_session):
    return QuestionRepository(bare_session, VectorStore(bare_session, DIM))


async def _add_user(session, email: str, name: str | None) -> UserRecord:
    user = UserRecord(email=email, name=name)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def user(db_session):
    return await _add_user(db_session, "ada@example.com", "Ada Lovelace")


@pytest.fixture
async def other_user(db_session):
    return await _add_user(db_session, "grace@example.com", None)


@pytest.fixture
def make_question(repository, user):
    async def _make(title="Question", description="Body", embedding=None, **kwargs):
        fields = QuestionFields(
            title=title,
            description=description,
            user_id=kwargs.pop("user_id", user.id),
            **kwargs,
        )
        return await repository.create(fields, embedding=embedding)

    return _make


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_headers(user):
    return {"X-User-ID": user.id}


@pytest.fixture
def app_with_api_key():
    """App with API_KEY and ENVIRONMENT=prod for auth tests."""
    from studyprep.core.config import get_settings

    orig_env = os.environ.copy()
    os.environ["API_KEY"] = "test-secret-key"
    os.environ["ENVIRONMENT"] = "prod"
    get_settings.cache_clear()
    try:
        yield create_app()
    finally:
        os.environ.clear()
        os.environ.update(orig_env)
        get_settings.cache_clear()


@pytest.fixture
async def client_with_api_key(app_with_api_key):
    transport = ASGITransport(app=app_with_api_key)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
