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

CHAT_REQUESTS = Counter(
    "trag_chat_requests_total",
    "Chat requests by answer origin",
    labelnames=("origin",),
    registry=REGISTRY,
)

CHAT_REJECTIONS = Counter(
    "trag_chat_rejections_total",
    "Chat requests rejected before answering",
    labelnames=("reason",),
    registry=REGISTRY,
)

TOKENS_DEDUCTED = Counter(
    "trag_tokens_deducted_total",
    "Tokens deducted from tenant balances",
    labelnames=("kind",),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "trag_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("kind", "status"),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "trag_index_chunks",
    "Number of vector records stored across tenants",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "CHAT_REQUESTS",
    "CHAT_REJECTIONS",
    "TOKENS_DEDUCTED",
    "INGEST_DURATION",
    "INDEX_SIZE",
    "metrics_response",
]
