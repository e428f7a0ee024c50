"""Logging and tracing setup with Structlog, OpenTelemetry and correlation IDs.

Key Responsibilities:
    - Render standard library and Structlog output as single line JSON with
      sensitive fields redacted
    - Install the OpenTelemetry tracer provider used by the orchestrator spans
    - Bind per-request correlation identifiers

Collaborators:
    - Upstream: ``gateway.app`` configures logging and tracing at startup; the
      correlation middleware binds identifiers per request
    - Downstream: ``logging``, ``structlog`` and the OpenTelemetry SDK

Side Effects:
    - Replaces root logging handlers and the global tracer provider

Thread Safety:
    - Configuration is meant to run once per process
    - Correlation helpers use ``contextvars`` and are safe under asyncio
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable
from contextvars import ContextVar, Token
from typing import Any, Callable

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from ..config.settings import LoggingSettings, TelemetrySettings

# ==============================================================================
# CONTEXT VARIABLES
# ==============================================================================

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "taskName"}

REDACTED = "***"

# ==============================================================================
# FORMATTERS
# ==============================================================================


def _redact(value: object, fields: frozenset[str]) -> object:
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in fields else _redact(item, fields)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item, fields) for item in value]
    return value


class JsonFormatter(logging.Formatter):
    """Formats standard library log records as JSON lines."""

    def __init__(self, *, scrub_fields: Iterable[str] | None = None) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")
        self._scrub_fields = frozenset(field.lower() for field in scrub_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "timestamp": self.formatTime(record, self.datefmt),
        }
        correlation_id = _correlation_id.get()
        if correlation_id:
            payload["correlation_id"] = correlation_id
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES:
                continue
            if key.lower() in self._scrub_fields:
                payload[key] = REDACTED
            else:
                payload[key] = _redact(value, self._scrub_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


# ==============================================================================
# STRUCTLOG PROCESSORS
# ==============================================================================


def scrub_processor(
    scrub_fields: Iterable[str] | None,
) -> Callable[[Any, str, dict[str, Any]], dict[str, Any]]:
    """Return a Structlog processor redacting ``scrub_fields`` and adding the correlation ID."""
    fields = frozenset(field.lower() for field in scrub_fields or ())

    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        correlation_id = _correlation_id.get()
        if correlation_id:
            event_dict.setdefault("correlation_id", correlation_id)
        return {
            key: REDACTED if key.lower() in fields else _redact(value, fields)
            for key, value in event_dict.items()
        }

    return processor


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure stdlib logging and Structlog for JSON output.

    Handlers installed by pytest are kept so log capture keeps working.
    """
    cfg = settings or LoggingSettings()
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(scrub_fields=cfg.scrub_fields))
    root = logging.getLogger()
    kept = [
        existing
        for existing in root.handlers
        if type(existing).__module__.startswith("_pytest.")
    ]
    logging.basicConfig(level=level, handlers=[*kept, handler], force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            scrub_processor(cfg.scrub_fields),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True, default=str),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def configure_tracing(service_name: str, telemetry: TelemetrySettings) -> TracerProvider | None:
    """Install an OpenTelemetry tracer provider when telemetry is enabled.

    ``exporter`` selects ``otlp`` (HTTP) or ``console``; ``none`` installs the
    provider without exporting spans.
    """
    if not telemetry.enabled:
        return None
    provider = TracerProvider(
        resource=Resource(attributes={"service.name": service_name}),
        sampler=TraceIdRatioBased(telemetry.sample_ratio),
    )
    exporter: SpanExporter | None
    target = telemetry.exporter.lower()
    if target == "otlp":
        exporter = (
            OTLPSpanExporter(endpoint=telemetry.endpoint) if telemetry.endpoint else OTLPSpanExporter()
        )
    elif target == "console":
        exporter = ConsoleSpanExporter()
    else:
        exporter = None
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return provider


# ==============================================================================
# CORRELATION ID HELPERS
# ==============================================================================


def bind_correlation_id(value: str) -> Token[str | None]:
    """Bind ``value`` as the correlation ID of the current context."""
    token = _correlation_id.set(value)
    structlog.contextvars.bind_contextvars(correlation_id=value)
    return token


def reset_correlation_id(token: Token[str | None] | None) -> None:
    """Restore the correlation ID captured by :func:`bind_correlation_id`."""
    if token is not None:
        _correlation_id.reset(token)
    structlog.contextvars.unbind_contextvars("correlation_id")


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a Structlog logger bound to ``name``."""
    return structlog.get_logger(name)


__all__ = [
    "JsonFormatter",
    "bind_correlation_id",
    "configure_logging",
    "configure_tracing",
    "get_correlation_id",
    "get_logger",
    "reset_correlation_id",
    "scrub_processor",
]
