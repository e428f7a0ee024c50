"""Resolver orchestration: the single boundary between callers and services.

An inbound request carries one or more operation calls. The orchestrator
rate limits the caller, builds the request context, then runs every call:
arguments are validated once into the operation's model, the gate checks
run, the handler executes and the requested field selection is resolved
through the request loaders.

Key Responsibilities:
    - Run consecutive queries concurrently so their loads share batches
    - Run mutations one at a time in request order
    - Convert every escaping exception into an error entry with a path,
      leaving sibling operations and fields untouched
    - Publish bus events after successful mutations

Collaborators:
    - Upstream: ``POST /v1/operations`` in :mod:`survey_gateway.gateway.app`
    - Downstream: :class:`ContextBuilder`, operation handlers, field resolvers

Side Effects:
    - Prometheus operation metrics, OpenTelemetry spans, bus publications

Thread Safety:
    - Shared across requests; all request state lives in the context

Performance Characteristics:
    - Nested fields of every list item are resolved concurrently, so one
      nested field over N parents costs one loader batch
"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================

import asyncio
from collections.abc import Mapping, Sequence
from time import perf_counter
from typing import Any

import structlog
from fastapi.encoders import jsonable_encoder
from opentelemetry import trace
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..auth.rate_limit import RateLimiter
from ..observability.metrics import record_operation
from ..services.base import validation_failure
from ..utils.errors import ErrorPayload, GatewayError, Internal, ValidationFailed
from ..utils.result import Err, Ok
from .context import ContextBuilder, RequestContext, bearer_token
from .registry import (
    FieldSpec,
    ObjectType,
    OperationRegistry,
    OperationSpec,
    Selection,
    TypeRegistry,
)

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

RATE_LIMIT_ENDPOINT = "operations"
MAX_OPERATIONS_PER_REQUEST = 25


# ==============================================================================
# REQUEST MODELS
# ==============================================================================


class OperationCall(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
    fields: list[str | dict[str, Any]] | None = None
    alias: str | None = Field(default=None, min_length=1)

    @property
    def key(self) -> str:
        return self.alias or self.name


class OperationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operations: list[OperationCall] = Field(min_length=1, max_length=MAX_OPERATIONS_PER_REQUEST)

    @classmethod
    def parse(cls, payload: Any) -> OperationRequest:
        """Accept ``{"operations": [...]}`` or a single operation object."""
        if isinstance(payload, Mapping) and "operations" not in payload:
            payload = {"operations": [payload]}
        return cls.model_validate(payload)


def unwrap(value: Any) -> Any:
    if isinstance(value, (Ok, Err)):
        return value.unwrap()
    return value


# ==============================================================================
# ORCHESTRATOR
# ==============================================================================


class Orchestrator:
    """Executes operation calls against registered handlers."""

    def __init__(
        self,
        contexts: ContextBuilder,
        *,
        operations: OperationRegistry,
        types: TypeRegistry,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.contexts = contexts
        self.operations = operations
        self.types = types
        self.rate_limiter = rate_limiter

    async def handle(
        self,
        payload: Any,
        authorization: str | None,
        *,
        client_ip: str | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Rate limit, build the request context and execute the payload.

        Raises:
            RateLimited: When the caller exhausted their request budget; no
                context is built and no operation runs.
        """
        if self.rate_limiter is not None:
            self.rate_limiter.admit(
                RATE_LIMIT_ENDPOINT, token=bearer_token(authorization), client_ip=client_ip
            )
        try:
            request = OperationRequest.parse(payload)
        except ValidationError as exc:
            return {"data": None, "errors": [validation_failure(exc).payload().as_json()]}
        context = await self.contexts.build(
            authorization, client_ip=client_ip, correlation_id=correlation_id
        )
        return await self.execute(context, request.operations)

    async def execute(
        self, context: RequestContext, calls: Sequence[OperationCall]
    ) -> dict[str, Any]:
        data: dict[str, Any] = {}
        errors: list[ErrorPayload] = []
        pending: list[OperationCall] = []
        seen: set[str] = set()

        async def flush() -> None:
            results = await asyncio.gather(*(self._run(context, call, errors) for call in pending))
            for call, value in zip(pending, results):
                data[call.key] = value
            pending.clear()

        for call in calls:
            if call.key in seen:
                errors.append(
                    ValidationFailed(f"Duplicate response key '{call.key}'", field="alias").payload(
                        (call.key,)
                    )
                )
                continue
            seen.add(call.key)
            spec = self.operations.get(call.name)
            if spec is not None and spec.kind == "mutation":
                await flush()
                data[call.key] = await self._run(context, call, errors)
            else:
                pending.append(call)
        await flush()
        return {"data": data, "errors": [error.as_json() for error in errors]}

    # ------------------------------------------------------------------
    # Operation execution
    # ------------------------------------------------------------------

    async def _run(
        self, context: RequestContext, call: OperationCall, errors: list[ErrorPayload]
    ) -> Any:
        started = perf_counter()
        outcome = "success"
        path = (call.key,)
        spec = self.operations.get(call.name)
        label = call.name if spec is not None else "unknown"
        with tracer.start_as_current_span(f"operation.{label}") as span:
            span.set_attribute("survey_gateway.operation", label)
            try:
                if spec is None:
                    raise ValidationFailed(f"Unknown operation '{call.name}'", field="name")
                return await self._invoke(context, spec, call, errors)
            except GatewayError as exc:
                outcome = exc.code.lower()
                errors.append(exc.payload(path))
                return None
            except ValidationError as exc:
                outcome = "validation_error"
                errors.append(validation_failure(exc).payload(path))
                return None
            except Exception as exc:
                outcome = "internal_error"
                span.record_exception(exc)
                logger.exception(
                    "orchestrator.operation_failed",
                    operation=call.name,
                    correlation_id=context.correlation_id,
                )
                errors.append(Internal(str(exc)).payload(path))
                return None
            finally:
                span.set_attribute("survey_gateway.outcome", outcome)
                record_operation(label, outcome, perf_counter() - started)

    async def _invoke(
        self,
        context: RequestContext,
        spec: OperationSpec,
        call: OperationCall,
        errors: list[ErrorPayload],
    ) -> Any:
        try:
            arguments = spec.arguments.model_validate(call.arguments)
        except ValidationError as exc:
            raise validation_failure(exc) from exc
        self.types.check_selection(spec.returns, call.fields)
        if spec.requires_auth:
            context.gate.require_authenticated()
        if spec.permission:
            context.gate.require_permission(spec.permission)
        value = unwrap(await spec.handler(context, arguments))
        if spec.kind == "mutation" and spec.publishes:
            await self._publish(context, spec, value)
        return await self._render(context, value, spec.returns, call.fields, (call.key,), errors)

    async def _publish(self, context: RequestContext, spec: OperationSpec, value: Any) -> None:
        try:
            if spec.event is not None:
                payload, tenant_id = await spec.event(context, value)
            else:
                payload = {"id": getattr(value, "id", None)}
                tenant_id = getattr(value, "tenant_id", None) or context.tenant_id
            payload.setdefault("operation", spec.name)
            await context.bus.publish(spec.publishes, payload, tenant_id=tenant_id)
        except Exception:
            logger.warning(
                "orchestrator.publish_failed", operation=spec.name, topic=spec.publishes, exc_info=True
            )

    # ------------------------------------------------------------------
    # Field resolution
    # ------------------------------------------------------------------

    async def _render(
        self,
        context: RequestContext,
        value: Any,
        type_name: str | None,
        selection: Selection,
        path: tuple[str | int, ...],
        errors: list[ErrorPayload],
    ) -> Any:
        if value is None:
            return None
        if type_name is None:
            return jsonable_encoder(value)
        if isinstance(value, (list, tuple)):
            return list(
                await asyncio.gather(
                    *(
                        self._render(context, item, type_name, selection, (*path, index), errors)
                        for index, item in enumerate(value)
                    )
                )
            )
        object_type = self.types[type_name]
        rendered: dict[str, Any] = {}
        nested: list[tuple[str, FieldSpec, Selection]] = []
        for name, sub in self.types.resolve_selection(type_name, selection):
            spec = object_type.fields.get(name)
            if spec is None:
                rendered[name] = jsonable_encoder(getattr(value, name, None))
            else:
                rendered[name] = None
                nested.append((name, spec, sub))
        if nested:
            results = await asyncio.gather(
                *(
                    self._resolve_field(context, object_type, value, name, spec, sub, (*path, name), errors)
                    for name, spec, sub in nested
                )
            )
            for (name, _, _), result in zip(nested, results):
                rendered[name] = result
        return rendered

    async def _resolve_field(
        self,
        context: RequestContext,
        object_type: ObjectType,
        parent: Any,
        name: str,
        spec: FieldSpec,
        selection: Selection,
        path: tuple[str | int, ...],
        errors: list[ErrorPayload],
    ) -> Any:
        try:
            if spec.permission:
                context.gate.require_permission(spec.permission)
            if spec.tenant_boundary is not None:
                context.gate.require_tenant_scope(spec.tenant_boundary(parent))
            value = unwrap(await spec.resolver(context, parent))
        except GatewayError as exc:
            errors.append(exc.payload(path))
            return None
        except Exception as exc:
            logger.exception(
                "orchestrator.field_failed",
                field=f"{object_type.name}.{name}",
                correlation_id=context.correlation_id,
            )
            errors.append(Internal(str(exc)).payload(path))
            return None
        return await self._render(context, value, spec.type_name, selection, path, errors)


# ==============================================================================
# EXPORTS
# ==============================================================================

__all__ = [
    "FieldSpec",
    "ObjectType",
    "OperationCall",
    "OperationRegistry",
    "OperationRequest",
    "OperationSpec",
    "Orchestrator",
    "TypeRegistry",
    "unwrap",
]
