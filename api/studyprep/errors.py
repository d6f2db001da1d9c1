"""Exception hierarchy shared by the embedding, storage and search layers."""

from __future__ import annotations


class StudyPrepError(Exception):
    """Base exception for the service."""

    pass


class InvalidInputError(StudyPrepError, ValueError):
    """Raised for blank query/embedding text or out-of-range arguments."""

    pass


class EmbeddingError(StudyPrepError):
    """Base exception for embedding-related errors."""

    pass


class EmbeddingNotConfiguredError(EmbeddingError):
    """Raised when no embedding provider or credentials are configured."""

    pass


class EmbeddingProviderError(EmbeddingError):
    """Raised when the embedding provider returns a non-success response or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, provider: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class EmbeddingTimeoutError(EmbeddingProviderError):
    """Raised when the embedding request times out."""

    pass


class EmbeddingMalformedResponseError(EmbeddingError):
    """Raised when the provider response does not contain a usable numeric vector."""

    pass


class DimensionMismatchError(EmbeddingError):
    """Raised when a vector is shorter than the configured dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected {expected} embedding components, got {actual}")
        self.expected = expected
        self.actual = actual
