"""Semantic question search: embedding provider and vector store adapter."""

from .embeddings import EmbeddingService, coerce_dimension
from .vector_store import (
    Cleared,
    Neighbor,
    SkipReason,
    Skipped,
    Stored,
    VectorCapability,
    VectorStore,
    VectorWriteResult,
)

__all__ = [
    "Cleared",
    "EmbeddingService",
    "Neighbor",
    "SkipReason",
    "Skipped",
    "Stored",
    "VectorCapability",
    "VectorStore",
    "VectorWriteResult",
    "coerce_dimension",
]
