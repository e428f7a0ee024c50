"""Shared service plumbing: store fault translation and cache maintenance.

Key Responsibilities:
    - Convert every public service call into a :class:`Result`
    - Translate backing store faults into the gateway error taxonomy
    - Keep the request loaders coherent with every write (prime on
      insert/update, clear on delete)

Collaborators:
    - Upstream: :class:`~survey_gateway.services.registry.ServiceRegistry`
    - Downstream: :class:`BackingStore` and :class:`RequestLoaders`

Side Effects:
    - Store writes; store faults other than constraint violations are logged

Thread Safety:
    - Not thread-safe; services are created per request
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, ClassVar, Generic, TypeVar

import structlog
from pydantic import ValidationError

from ..config.settings import AppSettings
from ..loaders.entity import EntityLoader, validate_row
from ..loaders.registry import RequestLoaders
from ..models.entities import Deletion, Entity, utcnow
from ..storage.base import BackingStore, Condition, ReferenceViolation, StoreError, UniqueViolation
from ..utils.errors import Conflict, GatewayError, Internal, NotFound, ValidationFailed
from ..utils.pagination import Pagination
from ..utils.result import Err, Ok, Result

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=Entity)
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def service_operation(fn: F) -> F:
    """Wrap a service coroutine so it returns ``Ok``/``Err`` instead of raising.

    Gateway errors pass through unchanged. Uniqueness violations become
    ``Conflict``, referential violations become ``ValidationFailed`` and any
    other store fault, including a stored row that no longer validates,
    becomes ``Internal`` after being logged.
    """

    @functools.wraps(fn)
    async def wrapper(self: BaseService, *args: Any, **kwargs: Any) -> Result:
        try:
            value = await fn(self, *args, **kwargs)
        except GatewayError as exc:
            return Err(exc)
        except UniqueViolation as exc:
            return Err(Conflict(self.conflict_message(exc), field=exc.fields[-1]))
        except ReferenceViolation as exc:
            return Err(ValidationFailed(self.reference_message(exc), field=exc.field))
        except StoreError as exc:
            logger.error(
                "service.store_error",
                service=type(self).__name__,
                operation=fn.__name__,
                error=str(exc),
                exc_info=True,
            )
            return Err(Internal(str(exc)))
        except ValidationError as exc:
            # Caller input is validated before it reaches a service; a model
            # error here means a stored row no longer fits its entity.
            logger.error(
                "service.invalid_row",
                service=type(self).__name__,
                operation=fn.__name__,
                errors=exc.error_count(),
            )
            return Err(Internal(str(exc)))
        if isinstance(value, (Ok, Err)):
            return value
        return Ok(value)

    return wrapper  # type: ignore[return-value]


def validation_failure(exc: ValidationError) -> ValidationFailed:
    """Collapse a Pydantic error into the first failing field."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__") or None
    return ValidationFailed(first.get("msg", "Invalid value"), field=field)


class BaseService(Generic[M]):
    """Base for per-entity services bound to one request's loaders."""

    table: ClassVar[str]
    model: ClassVar[type[Entity]]
    label: ClassVar[str]
    conflict_messages: ClassVar[Mapping[tuple[str, ...], str]] = {}

    def __init__(
        self, store: BackingStore, loaders: RequestLoaders, settings: AppSettings | None = None
    ) -> None:
        self.store = store
        self.loaders = loaders
        self.settings = settings or AppSettings()

    # ------------------------------------------------------------------
    # Error messages
    # ------------------------------------------------------------------

    def conflict_message(self, exc: UniqueViolation) -> str:
        return self.conflict_messages.get(
            exc.fields, f"{self.label} with this {' and '.join(exc.fields)} already exists"
        )

    def reference_message(self, exc: ReferenceViolation) -> str:
        if exc.referenced_by:
            return f"{self.label} is still referenced by other records"
        return f"Referenced {exc.field} does not exist"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def loader(self) -> EntityLoader[M]:
        return self.loaders.entity(self.table)

    async def require(self, entity_id: str) -> M:
        """Load an entity through the request cache or raise ``NotFound``."""
        entity = await self.loader.load(entity_id)
        if entity is None:
            raise NotFound(f"{self.label} not found")
        return entity

    @service_operation
    async def get(self, entity_id: str) -> M:
        return await self.require(entity_id)

    def pagination(self, limit: int | None = None, offset: int | None = None) -> Pagination:
        return Pagination.build(limit, offset, settings=self.settings.pagination)

    async def _list(
        self,
        conditions: Sequence[Condition],
        pagination: Pagination,
        *,
        order_by: str | None = "created_at",
        descending: bool = True,
    ) -> list[M]:
        rows = await self.store.query(
            self.table,
            conditions,
            order_by=order_by,
            descending=descending,
            limit=pagination.limit,
            offset=pagination.offset,
        )
        entities = self._from_rows(rows)
        for entity in entities:
            self.loader.prime(entity.id, entity, replace=False)
        return entities

    def _from_rows(self, rows: Sequence[Mapping[str, Any]]) -> list[M]:
        """Validate queried rows, dropping (and logging) rows that no longer fit the model."""
        entities = (validate_row(self.table, self.model, row) for row in rows)
        return [entity for entity in entities if entity is not None]  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _insert(self, entity: M) -> M:
        row = await self.store.insert(self.table, entity.model_dump())
        stored = self.model.model_validate(row)
        self.loader.prime(stored.id, stored)
        return stored  # type: ignore[return-value]

    async def _update(self, entity_id: str, changes: Mapping[str, Any]) -> M:
        values = dict(changes)
        if "updated_at" in self.model.model_fields:
            values.setdefault("updated_at", utcnow())
        row = await self.store.update(self.table, entity_id, values)
        if row is None:
            self.loader.clear(entity_id)
            raise NotFound(f"{self.label} not found")
        try:
            updated = self.model.model_validate(row)
        except ValidationError as exc:
            self.loader.clear(entity_id)
            raise validation_failure(exc) from exc
        self.loader.prime(entity_id, updated)
        return updated  # type: ignore[return-value]

    async def _delete(self, entity_id: str, *, tenant_id: str | None = None) -> Deletion:
        deleted = await self.store.delete(self.table, entity_id)
        self.loader.clear(entity_id)
        if not deleted:
            raise NotFound(f"{self.label} not found")
        return Deletion(id=entity_id, tenant_id=tenant_id)


__all__ = ["BaseService", "service_operation", "validation_failure"]
