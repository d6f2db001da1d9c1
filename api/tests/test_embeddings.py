from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from studyprep.core.config import Settings
from studyprep.errors import (
    DimensionMismatchError,
    EmbeddingMalformedResponseError,
    EmbeddingNotConfiguredError,
    EmbeddingProviderError,
    EmbeddingTimeoutError,
    InvalidInputError,
)
from studyprep.search.embeddings import EmbeddingService, coerce_dimension, parse_embedding_payload


def _settings(**overrides):
    values = {
        "embedding_provider": "gemini",
        "embedding_api_key": "test-key",
        "embedding_dimension": 4,
        "embedding_timeout_seconds": 2.0,
    }
    values.update(overrides)
    return Settings(**values)


def _mock_response(status_code=200, json_body=None, text=""):
    r = MagicMock()
    r.status_code = status_code
    r.text = text
    r.json.return_value = json_body if json_body is not None else {}
    return r


def _patched_post(mock_client, **kwargs):
    post = AsyncMock(**kwargs)
    mock_client.return_value.__aenter__.return_value.post = post
    return post


def test_parse_payload_accepts_flat_and_nested_forms():
    assert parse_embedding_payload({"embedding": [1, 2.5]}) == [1.0, 2.5]
    assert parse_embedding_payload({"embedding": {"values": [0.1, -0.2]}}) == [0.1, -0.2]


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {},
        {"embedding": []},
        {"embedding": {"values": "nope"}},
        {"embedding": [1, "2"]},
        {"embedding": [True, 1.0]},
        {"embedding": [1.0, float("inf")]},
    ],
)
def test_parse_payload_rejects_malformed(payload):
    with pytest.raises(EmbeddingMalformedResponseError):
        parse_embedding_payload(payload)


def test_coerce_dimension_truncates_longer_vectors():
    assert coerce_dimension([1.0, 2.0, 3.0, 4.0, 5.0], 3) == [1.0, 2.0, 3.0]
    assert coerce_dimension([1.0, 2.0], 2) == [1.0, 2.0]


def test_coerce_dimension_rejects_shorter_vectors():
    with pytest.raises(DimensionMismatchError) as exc_info:
        coerce_dimension([1.0, 2.0], 4)
    assert exc_info.value.expected == 4
    assert exc_info.value.actual == 2


def test_is_configured():
    assert EmbeddingService(_settings()).is_configured() is True
    assert EmbeddingService(_settings(embedding_api_key=None)).is_configured() is False
    assert EmbeddingService(_settings(embedding_provider="")).is_configured() is False
    assert EmbeddingService(_settings(embedding_provider="mock", embedding_api_key=None)).is_configured() is True
    assert EmbeddingService(_settings(embedding_provider="ollama", embedding_api_key=None)).is_configured() is True


def test_get_dimension_reports_configured_dimension():
    assert EmbeddingService(_settings(embedding_dimension=768)).get_dimension() == 768


@pytest.mark.asyncio
async def test_embed_not_configured_makes_no_request():
    service = EmbeddingService(_settings(embedding_api_key=None))
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        with pytest.raises(EmbeddingNotConfiguredError):
            await service.embed("what is a derivative")
        mock_client.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_embed_blank_text_is_invalid_input(text):
    service = EmbeddingService(_settings())
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        with pytest.raises(InvalidInputError):
            await service.embed(text)
        mock_client.assert_not_called()


@pytest.mark.asyncio
async def test_embed_gemini_success():
    service = EmbeddingService(_settings())
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        post = _patched_post(
            mock_client,
            return_value=_mock_response(json_body={"embedding": {"values": [0.1, 0.2, 0.3, 0.4]}}),
        )
        result = await service.embed("  photosynthesis  ")

    assert result.vector == [0.1, 0.2, 0.3, 0.4]
    assert result.dimension == 4
    assert result.model == "text-embedding-004"
    post.assert_awaited_once()
    url = post.call_args.args[0]
    assert url == (
        "https://generativelanguage.googleapis.com/v1beta/models/text-embedding-004:embedContent"
    )
    kwargs = post.call_args.kwargs
    assert kwargs["headers"]["x-goog-api-key"] == "test-key"
    assert "test-key" not in url
    assert kwargs["json"]["content"]["parts"][0]["text"] == "photosynthesis"
    mock_client.assert_called_once_with(timeout=2.0)


@pytest.mark.asyncio
async def test_embed_ollama_uses_embeddings_endpoint():
    service = EmbeddingService(
        _settings(
            embedding_provider="ollama",
            embedding_api_key=None,
            embedding_base_url="http://ollama:11434/",
            embedding_model="nomic-embed-text",
        )
    )
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        post = _patched_post(mock_client, return_value=_mock_response(json_body={"embedding": [1, 2, 3, 4]}))
        result = await service.embed("hello")

    assert result.vector == [1.0, 2.0, 3.0, 4.0]
    assert post.call_args.args[0] == "http://ollama:11434/api/embeddings"
    assert post.call_args.kwargs["json"] == {"model": "nomic-embed-text", "prompt": "hello"}


@pytest.mark.asyncio
async def test_embed_returns_provider_length_unmodified():
    """Truncation to the stored dimension happens at the caller."""
    service = EmbeddingService(_settings())
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        _patched_post(mock_client, return_value=_mock_response(json_body={"embedding": [0.5] * 6}))
        result = await service.embed("longer vector")
    assert result.dimension == 6


@pytest.mark.asyncio
async def test_embed_non_2xx_raises_provider_error_once():
    service = EmbeddingService(_settings())
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        post = _patched_post(
            mock_client,
            return_value=_mock_response(status_code=500, text="internal error key=AIzaSecret"),
        )
        with pytest.raises(EmbeddingProviderError) as exc_info:
            await service.embed("hello")
    assert exc_info.value.status_code == 500
    assert exc_info.value.provider == "gemini"
    assert post.await_count == 1


@pytest.mark.asyncio
async def test_embed_timeout_raises_timeout_error():
    service = EmbeddingService(_settings())
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        post = _patched_post(mock_client, side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(EmbeddingTimeoutError) as exc_info:
            await service.embed("hello")
    assert isinstance(exc_info.value, EmbeddingProviderError)
    assert post.await_count == 1


@pytest.mark.asyncio
async def test_embed_connection_error_raises_provider_error():
    service = EmbeddingService(_settings())
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        _patched_post(mock_client, side_effect=httpx.ConnectError("connection refused"))
        with pytest.raises(EmbeddingProviderError) as exc_info:
            await service.embed("hello")
    assert not isinstance(exc_info.value, EmbeddingTimeoutError)


@pytest.mark.asyncio
async def test_embed_invalid_json_is_malformed():
    service = EmbeddingService(_settings())
    response = _mock_response()
    response.json.side_effect = ValueError("Expecting value")
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        _patched_post(mock_client, return_value=response)
        with pytest.raises(EmbeddingMalformedResponseError):
            await service.embed("hello")


@pytest.mark.asyncio
async def test_embed_missing_array_is_malformed():
    service = EmbeddingService(_settings())
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        _patched_post(mock_client, return_value=_mock_response(json_body={"error": "nope"}))
        with pytest.raises(EmbeddingMalformedResponseError):
            await service.embed("hello")


@pytest.mark.asyncio
async def test_mock_provider_is_deterministic():
    service = EmbeddingService(_settings(embedding_provider="mock", embedding_dimension=16))
    with patch("studyprep.search.embeddings.httpx.AsyncClient") as mock_client:
        a = await service.embed("same text")
        b = await service.embed("same text")
        c = await service.embed("other text")
        mock_client.assert_not_called()
    assert a.vector == b.vector
    assert a.vector != c.vector
    assert a.dimension == 16
