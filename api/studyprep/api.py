from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import get_settings
from .core.logging import configure_logging, get_logger
from .core.metrics import REQUEST_COUNT, REQUEST_LATENCY, get_metrics, metrics_content_type
from .core.redis import check_rate_limit, close_redis, ping_redis
from .db import ensure_vector_column, get_db_session, get_engine
from .dependencies import (
    get_embedding_service,
    get_question_service,
    get_search_service,
    get_user_id,
    get_vector_store,
    require_user,
)
from .domain.embeddings import IEmbeddingService
from .errors import (
    DimensionMismatchError,
    EmbeddingMalformedResponseError,
    EmbeddingNotConfiguredError,
    EmbeddingProviderError,
    InvalidInputError,
)
from .models import Base, UserRecord
from .schemas import (
    DeleteResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    HealthStatus,
    QuestionCreate,
    QuestionList,
    QuestionRead,
    QuestionUpdate,
    SearchRequest,
    SearchResponse,
    SearchResultRead,
)
from .search.embeddings import EmbeddingService, coerce_dimension
from .search.vector_store import VectorStore
from .services_questions import QuestionService
from .services_search import SemanticSearchService


logger = get_logger(__name__)


async def _init_db() -> None:
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        vector_ok = await ensure_vector_column(conn, get_settings().embedding_dimension)
    logger.info("db.initialized", vector_ok=vector_ok)


def create_app() -> FastAPI:
    configure_logging()

    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        default_response_class=ORJSONResponse,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.embedding_service = EmbeddingService(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await _init_db()
        logger.info("app.startup", embeddings_configured=app.state.embedding_service.is_configured())
        yield
        await close_redis()
        logger.info("app.shutdown")

    app.router.lifespan_context = lifespan

    if settings.enable_prometheus:

        @app.middleware("http")
        async def metrics_middleware(request: Request, call_next):
            start = time.perf_counter()
            response = await call_next(request)
            elapsed = time.perf_counter() - start
            route = request.scope.get("route")
            path = getattr(route, "path", request.scope.get("path", ""))
            method = request.method
            REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
            REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
            return response

    if settings.redis_url and settings.api_v1_prefix:

        @app.middleware("http")
        async def rate_limit_middleware(request: Request, call_next):
            if not request.url.path.startswith(f"{settings.api_v1_prefix}/"):
                return await call_next(request)
            subject = get_user_id(request) or (request.client.host if request.client else "anonymous")
            if not await check_rate_limit(subject, limit=settings.rate_limit_per_minute, window_seconds=60):
                return ORJSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={"detail": "Rate limit exceeded. Try again later."},
                )
            return await call_next(request)

    if settings.api_key:
        _no_auth_paths = {"/metrics", f"{settings.api_v1_prefix}/health"}

        @app.middleware("http")
        async def api_key_middleware(request: Request, call_next):
            if request.url.path in _no_auth_paths:
                return await call_next(request)
            if request.url.path.startswith(f"{settings.api_v1_prefix}/"):
                key = request.headers.get("X-API-Key")
                if key != settings.api_key:
                    return ORJSONResponse(
                        status_code=status.HTTP_401_UNAUTHORIZED,
                        content={"detail": "Invalid or missing API key"},
                    )
            return await call_next(request)

    if settings.enable_prometheus:

        @app.get("/metrics", include_in_schema=False)
        async def metrics() -> Response:
            return Response(content=get_metrics(), media_type=metrics_content_type())

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(_: Request, exc: InvalidInputError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc), "error_type": "invalid_input"},
        )

    @app.exception_handler(EmbeddingNotConfiguredError)
    async def embedding_not_configured_handler(
        _: Request, exc: EmbeddingNotConfiguredError
    ) -> ORJSONResponse:
        logger.error("app.embedding_not_configured", error=str(exc))
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc), "error_type": "embedding_not_configured"},
        )

    async def embedding_upstream_handler(_: Request, exc: Exception) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": "Failed to generate embedding",
                "error_type": "embedding_upstream_error",
            },
        )

    for exc_class in (EmbeddingProviderError, EmbeddingMalformedResponseError, DimensionMismatchError):
        app.add_exception_handler(exc_class, embedding_upstream_handler)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_: Request, exc: Exception) -> ORJSONResponse:
        if isinstance(exc, HTTPException):
            return ORJSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        logger.error("app.unhandled_error", error=str(exc), exc_info=True)
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "error_type": "internal_error"},
        )

    api_router = APIRouter(prefix=settings.api_v1_prefix)

    @api_router.get("/health", response_model=HealthStatus)
    async def health(
        db: AsyncSession = Depends(get_db_session),
        vector_store: VectorStore = Depends(get_vector_store),
        embedder: IEmbeddingService = Depends(get_embedding_service),
    ) -> HealthStatus:
        db_ok: bool | None = None
        vector_ok: bool | None = None
        try:
            await db.execute(text("SELECT 1"))
            db_ok = True
            vector_ok = (await vector_store.probe()).available
        except Exception as exc:  # noqa: BLE001
            logger.warning("health.db_check_failed", error=str(exc))
            db_ok = False
        return HealthStatus(
            environment=settings.environment,
            timestamp=datetime.now(timezone.utc),
            db_ok=db_ok,
            redis_ok=await ping_redis(),
            embeddings_ok=embedder.is_configured(),
            vector_ok=vector_ok,
        )

    @api_router.get("/questions", response_model=QuestionList)
    async def list_questions(
        service: QuestionService = Depends(get_question_service),
    ) -> QuestionList:
        questions = await service.list_questions()
        return QuestionList(questions=[QuestionRead.from_domain(q, embedding_loaded=False) for q in questions])

    @api_router.get("/questions/my", response_model=QuestionList)
    async def list_my_questions(
        user: UserRecord = Depends(require_user),
        service: QuestionService = Depends(get_question_service),
    ) -> QuestionList:
        questions = await service.list_user_questions(user.id)
        return QuestionList(questions=[QuestionRead.from_domain(q, embedding_loaded=False) for q in questions])

    @api_router.post("/questions", response_model=QuestionRead, status_code=status.HTTP_201_CREATED)
    async def create_question(
        payload: QuestionCreate,
        user: UserRecord = Depends(require_user),
        service: QuestionService = Depends(get_question_service),
    ) -> QuestionRead:
        question = await service.create_question(
            title=payload.title,
            type=payload.type,
            description=payload.description,
            images=payload.images,
            user_id=user.id,
        )
        return QuestionRead.from_domain(question)

    @api_router.post("/questions/search", response_model=SearchResponse)
    async def search_questions(
        payload: SearchRequest,
        service: SemanticSearchService = Depends(get_search_service),
    ) -> SearchResponse:
        hits = await service.search(payload.query, payload.limit)
        return SearchResponse(
            questions=[SearchResultRead.from_hit(h) for h in hits],
            query=payload.query.strip(),
            count=len(hits),
        )

    @api_router.get("/questions/{question_id}", response_model=QuestionRead)
    async def get_question(
        question_id: str,
        service: QuestionService = Depends(get_question_service),
    ) -> QuestionRead:
        question = await service.get_question(question_id)
        if question is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
        return QuestionRead.from_domain(question)

    async def _owned_question(question_id: str, user: UserRecord, service: QuestionService):
        question = await service.get_question(question_id)
        if question is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
        if not question.belongs_to(user.id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return question

    @api_router.patch("/questions/{question_id}", response_model=QuestionRead)
    async def update_question(
        question_id: str,
        payload: QuestionUpdate,
        user: UserRecord = Depends(require_user),
        service: QuestionService = Depends(get_question_service),
    ) -> QuestionRead:
        await _owned_question(question_id, user, service)
        updated = await service.update_question(question_id, payload.model_dump(exclude_none=True))
        if updated is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
        return QuestionRead.from_domain(updated)

    @api_router.delete("/questions/{question_id}", response_model=DeleteResponse)
    async def delete_question(
        question_id: str,
        user: UserRecord = Depends(require_user),
        service: QuestionService = Depends(get_question_service),
    ) -> DeleteResponse:
        await _owned_question(question_id, user, service)
        await service.delete_question(question_id)
        return DeleteResponse(success=True)

    @api_router.post("/questions/{question_id}/index", response_model=QuestionRead)
    async def index_question(
        question_id: str,
        user: UserRecord = Depends(require_user),
        service: QuestionService = Depends(get_question_service),
    ) -> QuestionRead:
        await _owned_question(question_id, user, service)
        question = await service.index_question(question_id)
        if question is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
        return QuestionRead.from_domain(question)

    @api_router.post("/ai/embeddings", response_model=EmbeddingResponse)
    async def create_embedding(
        payload: EmbeddingRequest,
        embedder: IEmbeddingService = Depends(get_embedding_service),
    ) -> EmbeddingResponse:
        embedding = await embedder.embed(payload.text)
        vector = coerce_dimension(embedding.vector, embedder.get_dimension())
        return EmbeddingResponse(embedding=vector, dimensions=len(vector), model=embedding.model)

    app.include_router(api_router)

    return app


app = create_app()
