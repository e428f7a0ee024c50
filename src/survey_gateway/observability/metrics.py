"""Prometheus metrics for operations, loaders and the notification bus.

Key Responsibilities:
    - Define the process-wide Prometheus collectors
    - Provide small helpers so call sites do not handle label plumbing

Collaborators:
    - Upstream: Orchestrator, loaders and bus implementations
    - Downstream: ``/metrics`` endpoint rendering the default registry

Thread Safety:
    - Thread-safe: Prometheus client operations are atomic
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ==============================================================================
# METRIC DEFINITIONS
# ==============================================================================

REQUESTS_TOTAL = Counter(
    "survey_gateway_http_requests_total",
    "HTTP requests served by the gateway",
    ["method", "path", "status"],
)

REQUEST_DURATION_SECONDS = Histogram(
    "survey_gateway_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

OPERATIONS_TOTAL = Counter(
    "survey_gateway_operations_total",
    "Operations executed by the orchestrator",
    ["operation", "outcome"],
)

OPERATION_DURATION_SECONDS = Histogram(
    "survey_gateway_operation_duration_seconds",
    "Operation execution latency",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

LOADER_BATCHES_TOTAL = Counter(
    "survey_gateway_loader_batches_total",
    "Batched backing store fetches dispatched by request loaders",
    ["loader"],
)

LOADER_BATCH_SIZE = Histogram(
    "survey_gateway_loader_batch_size",
    "Number of keys per dispatched loader batch",
    ["loader"],
    buckets=[1, 2, 5, 10, 20, 50, 100, 250],
)

LOADER_FALLBACKS_TOTAL = Counter(
    "survey_gateway_loader_fallbacks_total",
    "Batches retried key by key after a backing store fault",
    ["loader"],
)

BUS_EVENTS_TOTAL = Counter(
    "survey_gateway_bus_events_total",
    "Notification bus deliveries",
    ["topic", "outcome"],
)

# ==============================================================================
# HELPERS
# ==============================================================================


def record_request(method: str, path: str, status: int, duration: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status)).inc()
    REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(duration)


def record_operation(operation: str, outcome: str, duration: float) -> None:
    OPERATIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()
    OPERATION_DURATION_SECONDS.labels(operation=operation).observe(duration)


def record_loader_batch(loader: str, size: int) -> None:
    LOADER_BATCHES_TOTAL.labels(loader=loader).inc()
    LOADER_BATCH_SIZE.labels(loader=loader).observe(size)


def record_loader_fallback(loader: str) -> None:
    LOADER_FALLBACKS_TOTAL.labels(loader=loader).inc()


def record_bus_event(topic: str, outcome: str, count: int = 1) -> None:
    if count:
        BUS_EVENTS_TOTAL.labels(topic=topic, outcome=outcome).inc(count)


__all__ = [
    "BUS_EVENTS_TOTAL",
    "LOADER_BATCHES_TOTAL",
    "LOADER_BATCH_SIZE",
    "LOADER_FALLBACKS_TOTAL",
    "OPERATIONS_TOTAL",
    "OPERATION_DURATION_SECONDS",
    "REQUESTS_TOTAL",
    "REQUEST_DURATION_SECONDS",
    "record_bus_event",
    "record_loader_batch",
    "record_loader_fallback",
    "record_operation",
    "record_request",
]
