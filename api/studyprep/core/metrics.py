from __future__ import annotations

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

# HTTP request metrics
REQUEST_COUNT = Counter(
    "studyprep_requests_total", "Total requests", ["method", "path", "status"]
)
REQUEST_LATENCY = Histogram(
    "studyprep_request_duration_seconds",
    "Request latency",
    ["method", "path"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Embedding provider metrics
EMBEDDING_REQUESTS = Counter(
    "studyprep_embedding_requests_total",
    "Embedding provider calls",
    ["provider", "outcome"],  # outcome: success/upstream_error/malformed/timeout
)

EMBEDDING_LATENCY = Histogram(
    "studyprep_embedding_duration_seconds",
    "Embedding request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 15.0),
)

# Vector store metrics
VECTOR_WRITES = Counter(
    "studyprep_vector_writes_total",
    "Vector upserts by result",
    ["result"],  # result: stored/capability_unavailable/question_not_found/cleared
)

# Question creation outcome with respect to the embedding
QUESTION_EMBEDDINGS = Counter(
    "studyprep_question_embeddings_total",
    "Embedding outcome at question creation",
    ["outcome"],  # outcome: stored/skipped/embedding_failed
)

# Semantic search metrics
SEARCH_REQUESTS = Counter(
    "studyprep_search_requests_total",
    "Semantic search requests",
    ["status"],  # status: success/invalid_input/embedding_error
)

SEARCH_RESULTS = Histogram(
    "studyprep_search_results",
    "Number of questions returned per semantic search",
    buckets=(0, 1, 2, 3, 5, 10, 20, 50),
)


def get_metrics() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
