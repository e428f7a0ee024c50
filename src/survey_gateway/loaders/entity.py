"""Entity and one-to-many relation loaders."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Generic, TypeVar

import structlog
from pydantic import ValidationError

from ..models.entities import Entity
from ..storage.base import BackingStore, Row, in_
from .base import BatchLoader

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=Entity)


def validate_row(loader: str, model: type[M], row: Row) -> M | None:
    """Validate a store row, logging and dropping rows that do not fit the model."""
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        logger.warning(
            "loader.invalid_row",
            loader=loader,
            row_id=row.get("id"),
            errors=exc.error_count(),
        )
        return None


class EntityLoader(BatchLoader[M], Generic[M]):
    """Loads entities of one table by primary key."""

    def __init__(
        self,
        name: str,
        store: BackingStore,
        table: str,
        model: type[M],
        *,
        max_batch_size: int,
    ) -> None:
        super().__init__(name, max_batch_size=max_batch_size)
        self.table = table
        self.model = model
        self._store = store

    async def _fetch(self, keys: Sequence[str]) -> Mapping[str, M]:
        rows = await self._store.fetch_many(self.table, list(keys))
        found: dict[str, M] = {}
        for row in rows:
            entity = validate_row(self.name, self.model, row)
            if entity is not None:
                found[entity.id] = entity
        return found


class RelationLoader(BatchLoader[tuple[M, ...]], Generic[M]):
    """Loads the children of many parents with one ``IN`` query.

    Every fetched child is also primed into ``entity_loader`` (without
    replacing an existing entry) so follow-up lookups by id hit the cache.
    """

    def __init__(
        self,
        name: str,
        store: BackingStore,
        table: str,
        model: type[M],
        parent_field: str,
        *,
        max_batch_size: int,
        order_by: str | None = None,
        descending: bool = False,
        entity_loader: EntityLoader[M] | None = None,
    ) -> None:
        super().__init__(name, max_batch_size=max_batch_size)
        self.table = table
        self.model = model
        self.parent_field = parent_field
        self._store = store
        self._order_by = order_by
        self._descending = descending
        self._entity_loader = entity_loader

    async def _fetch(self, keys: Sequence[str]) -> Mapping[str, tuple[M, ...]]:
        rows = await self._store.query(
            self.table,
            [in_(self.parent_field, keys)],
            order_by=self._order_by,
            descending=self._descending,
        )
        grouped: dict[str, list[M]] = defaultdict(list)
        for row in rows:
            entity = validate_row(self.name, self.model, row)
            if entity is None:
                continue
            grouped[row[self.parent_field]].append(entity)
            if self._entity_loader is not None:
                self._entity_loader.prime(entity.id, entity, replace=False)
        return {key: tuple(grouped.get(key, ())) for key in keys}


__all__ = ["EntityLoader", "RelationLoader", "validate_row"]
