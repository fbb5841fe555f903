"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "pmnt_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

STORE_FETCHES = Counter(
    "pmnt_store_fetches_total",
    "Collection store page fetches",
    labelnames=("source", "outcome"),
    registry=REGISTRY,
)

STORE_FETCH_LATENCY = Histogram(
    "pmnt_store_fetch_latency_seconds",
    "Latency of collection store page fetches",
    labelnames=("source",),
    registry=REGISTRY,
)

STORE_MUTATIONS = Counter(
    "pmnt_store_mutations_total",
    "Collection store mutations",
    labelnames=("source", "operation", "outcome"),
    registry=REGISTRY,
)

UPLOADS = Counter(
    "pmnt_uploads_total",
    "Answer sheet uploads",
    labelnames=("outcome",),
    registry=REGISTRY,
)

POLL_REQUESTS = Counter(
    "pmnt_poll_requests_total",
    "Evaluation job status requests",
    labelnames=("status",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "STORE_FETCHES",
    "STORE_FETCH_LATENCY",
    "STORE_MUTATIONS",
    "UPLOADS",
    "POLL_REQUESTS",
    "metrics_response",
]
