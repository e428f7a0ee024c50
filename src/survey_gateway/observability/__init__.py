"""Prometheus instrumentation for the survey gateway."""

from .metrics import (
    record_bus_event,
    record_loader_batch,
    record_loader_fallback,
    record_operation,
    record_request,
)

__all__ = [
    "record_bus_event",
    "record_loader_batch",
    "record_loader_fallback",
    "record_operation",
    "record_request",
]
