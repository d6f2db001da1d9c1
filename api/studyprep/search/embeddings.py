"""Embedding provider: text -> numeric vector via a remote model."""

from __future__ import annotations

import hashlib
import math
import time
from typing import Any, Optional

import httpx

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..core.metrics import EMBEDDING_LATENCY, EMBEDDING_REQUESTS
from ..domain.embeddings import Embedding, IEmbeddingService
from ..errors import (
    DimensionMismatchError,
    EmbeddingMalformedResponseError,
    EmbeddingNotConfiguredError,
    EmbeddingProviderError,
    EmbeddingTimeoutError,
    InvalidInputError,
)
from ..security import sanitize_for_logging


logger = get_logger(__name__)


def parse_embedding_payload(data: Any) -> list[float]:
    """Extract the numeric array under ``embedding`` or ``embedding.values``."""
    if not isinstance(data, dict):
        raise EmbeddingMalformedResponseError("Embedding response is not a JSON object")
    raw = data.get("embedding")
    if isinstance(raw, dict):
        raw = raw.get("values")
    if not isinstance(raw, list) or not raw:
        raise EmbeddingMalformedResponseError("Embedding response has no numeric array")
    vector: list[float] = []
    for value in raw:
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingMalformedResponseError("Embedding response contains non-numeric values")
        f = float(value)
        if not math.isfinite(f):
            raise EmbeddingMalformedResponseError("Embedding response contains non-finite values")
        vector.append(f)
    return vector


def coerce_dimension(vector: list[float], dimension: int) -> list[float]:
    """Fit a provider vector to the stored dimension: drop extra components, never pad."""
    if len(vector) < dimension:
        raise DimensionMismatchError(expected=dimension, actual=len(vector))
    if len(vector) > dimension:
        logger.warning("embeddings.truncated", expected=dimension, actual=len(vector))
        return list(vector[:dimension])
    return list(vector)


class EmbeddingService(IEmbeddingService):
    """Calls the configured embedding provider. One HTTP request per ``embed`` call, no retries."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def provider(self) -> str:
        return self._settings.embedding_provider

    def get_dimension(self) -> int:
        return self._settings.embedding_dimension

    def is_configured(self) -> bool:
        provider = self._settings.embedding_provider
        if provider == "mock":
            return True
        if provider == "gemini":
            return bool(self._settings.embedding_api_key)
        if provider == "ollama":
            return bool(self._settings.embedding_endpoint_base())
        return False

    async def embed(self, text: str) -> Embedding:
        if not text or not text.strip():
            raise InvalidInputError("Text is required for embedding generation")
        if not self.is_configured():
            raise EmbeddingNotConfiguredError(
                "Embeddings not configured. Set EMBEDDING_PROVIDER and GEMINI_API_KEY "
                "(or EMBEDDING_BASE_URL for ollama)."
            )
        text = text.strip()
        provider = self._settings.embedding_provider
        if provider == "mock":
            vector = self._mock_embed(text, self.get_dimension())
        else:
            vector = await self._request(provider, text)
        return Embedding(vector=vector, dimension=len(vector), model=self._settings.embedding_model)

    async def _request(self, provider: str, text: str) -> list[float]:
        base = self._settings.embedding_endpoint_base()
        model = self._settings.embedding_model
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if provider == "gemini":
            url = f"{base}/v1beta/models/{model}:embedContent"
            payload: dict[str, Any] = {
                "model": f"models/{model}",
                "content": {"parts": [{"text": text}]},
            }
            headers["x-goog-api-key"] = self._settings.embedding_api_key or ""
        else:
            url = f"{base}/api/embeddings"
            payload = {"model": model, "prompt": text}

        timeout_value = self._settings.embedding_timeout_seconds
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=timeout_value) as client:
                r = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            EMBEDDING_REQUESTS.labels(provider=provider, outcome="timeout").inc()
            logger.error(
                "embeddings.timeout",
                provider=provider,
                timeout=timeout_value,
                text_preview=sanitize_for_logging(text, 100),
            )
            raise EmbeddingTimeoutError(
                f"Embedding request timed out after {timeout_value}s", provider=provider
            ) from e
        except httpx.RequestError as e:
            EMBEDDING_REQUESTS.labels(provider=provider, outcome="upstream_error").inc()
            logger.error(
                "embeddings.request_error",
                provider=provider,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmbeddingProviderError("Embedding request failed", provider=provider) from e
        finally:
            EMBEDDING_LATENCY.labels(provider=provider).observe(time.perf_counter() - started)

        if not 200 <= r.status_code < 300:
            EMBEDDING_REQUESTS.labels(provider=provider, outcome="upstream_error").inc()
            error_body = sanitize_for_logging(r.text, 500)
            logger.error(
                "embeddings.error_response",
                provider=provider,
                status_code=r.status_code,
                response_preview=error_body,
            )
            raise EmbeddingProviderError(
                f"Embedding provider returned {r.status_code}",
                status_code=r.status_code,
                provider=provider,
            )

        try:
            data = r.json()
        except ValueError as e:
            EMBEDDING_REQUESTS.labels(provider=provider, outcome="malformed").inc()
            logger.error("embeddings.invalid_json", provider=provider, error=str(e))
            raise EmbeddingMalformedResponseError("Embedding response is not valid JSON") from e
        try:
            vector = parse_embedding_payload(data)
        except EmbeddingMalformedResponseError as e:
            EMBEDDING_REQUESTS.labels(provider=provider, outcome="malformed").inc()
            keys = list(data.keys()) if isinstance(data, dict) else []
            logger.error("embeddings.malformed_response", provider=provider, error=str(e), data_keys=keys)
            raise

        EMBEDDING_REQUESTS.labels(provider=provider, outcome="success").inc()
        logger.info(
            "embeddings.success",
            provider=provider,
            dimension=len(vector),
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return vector

    def _mock_embed(self, text: str, dim: int) -> list[float]:
        """Deterministic mock embedding based on text hash."""
        h = hashlib.sha256(text.encode()).digest()
        return [float((h[i % len(h)] - 128) / 128.0) for i in range(dim)]
