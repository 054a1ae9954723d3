"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INDEXED_FILES = Counter(
    "vrag_indexed_files_total",
    "Files handled by the indexer",
    labelnames=("status",),
    registry=REGISTRY,
)

INDEX_DURATION = Histogram(
    "vrag_index_duration_seconds",
    "Duration of full vault index passes",
    registry=REGISTRY,
)

RETRIEVAL_LATENCY = Histogram(
    "vrag_retrieval_latency_seconds",
    "Latency of retrieval requests",
    labelnames=("mode",),
    registry=REGISTRY,
)

RETRIEVAL_FAILURES = Counter(
    "vrag_retrieval_failures_total",
    "Retrieval sources that failed",
    labelnames=("source",),
    registry=REGISTRY,
)

RERANKER_SELECTED = Gauge(
    "vrag_reranker_selected",
    "Reranker variant chosen at startup (1 = active)",
    labelnames=("variant",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "INDEXED_FILES",
    "INDEX_DURATION",
    "RETRIEVAL_LATENCY",
    "RETRIEVAL_FAILURES",
    "RERANKER_SELECTED",
    "metrics_response",
]
