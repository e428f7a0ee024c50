"""In-process backing store enforcing unique and foreign key constraints."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.entities import new_id
from .base import (
    BackingStore,
    Condition,
    ReferenceViolation,
    Row,
    StoreError,
    Tables,
    UniqueViolation,
)


@dataclass(frozen=True)
class TableSchema:
    unique: tuple[tuple[str, ...], ...] = ()
    references: Mapping[str, str] = field(default_factory=dict)


DEFAULT_SCHEMA: Mapping[str, TableSchema] = {
    Tables.TENANTS: TableSchema(unique=(("name",),)),
    Tables.IDENTITIES: TableSchema(
        unique=(("email",),), references={"tenant_id": Tables.TENANTS}
    ),
    Tables.SURVEYS: TableSchema(
        references={"tenant_id": Tables.TENANTS, "created_by": Tables.IDENTITIES}
    ),
    Tables.QUESTIONS: TableSchema(references={"survey_id": Tables.SURVEYS}),
    Tables.SESSIONS: TableSchema(
        references={"survey_id": Tables.SURVEYS, "identity_id": Tables.IDENTITIES}
    ),
    Tables.RESPONSES: TableSchema(
        unique=(("session_id", "question_id"),),
        references={
            "session_id": Tables.SESSIONS,
            "question_id": Tables.QUESTIONS,
            "survey_id": Tables.SURVEYS,
        },
    ),
    Tables.CREDENTIALS: TableSchema(
        unique=(("key_hash",),),
        references={"owner_id": Tables.IDENTITIES, "tenant_id": Tables.TENANTS},
    ),
    Tables.ANALYSIS_RESULTS: TableSchema(
        references={
            "tenant_id": Tables.TENANTS,
            "survey_id": Tables.SURVEYS,
            "response_id": Tables.RESPONSES,
        }
    ),
}


def _matches(condition: Condition, row: Row) -> bool:
    if condition.op == "search":
        needle = str(condition.value).lower()
        return any(needle in str(row.get(name) or "").lower() for name in condition.field)
    value = row.get(condition.field)  # type: ignore[arg-type]
    if condition.op == "eq":
        return value == condition.value
    if condition.op == "ne":
        return value != condition.value
    if condition.op == "in":
        return value in condition.value
    if condition.op == "contains":
        return value is not None and all(item in value for item in condition.value)
    if condition.op == "lt":
        return value is not None and value < condition.value
    if condition.op == "ge":
        return value is not None and value >= condition.value
    raise StoreError(f"unsupported operator {condition.op!r}")


class InMemoryStore(BackingStore):
    """Dictionary backed store; every call holds one lock so each is atomic."""

    def __init__(self, schema: Mapping[str, TableSchema] | None = None) -> None:
        self._schema = dict(schema or DEFAULT_SCHEMA)
        self._tables: dict[str, dict[str, Row]] = {name: {} for name in self._schema}
        self._lock = asyncio.Lock()

    def _table(self, table: str) -> dict[str, Row]:
        try:
            return self._tables[table]
        except KeyError:
            raise StoreError(f"unknown table {table!r}") from None

    def _check_constraints(self, table: str, row: Row) -> None:
        schema = self._schema[table]
        for column, target in schema.references.items():
            value = row.get(column)
            if value is not None and value not in self._table(target):
                raise ReferenceViolation(table, column)
        for columns in schema.unique:
            key = tuple(row.get(column) for column in columns)
            if any(part is None for part in key):
                continue
            for other in self._table(table).values():
                if other["id"] != row["id"] and tuple(other.get(c) for c in columns) == key:
                    raise UniqueViolation(table, columns)

    def _check_not_referenced(self, table: str, id: str) -> None:
        for other_table, schema in self._schema.items():
            for column, target in schema.references.items():
                if target != table:
                    continue
                if any(row.get(column) == id for row in self._tables[other_table].values()):
                    raise ReferenceViolation(table, column, referenced_by=other_table)

    async def fetch_many(self, table: str, ids: Sequence[str]) -> list[Row]:
        wanted = set(ids)
        async with self._lock:
            return [
                copy.deepcopy(row)
                for row_id, row in self._table(table).items()
                if row_id in wanted
            ]

    async def query(
        self,
        table: str,
        conditions: Sequence[Condition] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Row]:
        async with self._lock:
            rows = [
                row
                for row in self._table(table).values()
                if all(_matches(condition, row) for condition in conditions)
            ]
            if order_by is not None:
                present = [row for row in rows if row.get(order_by) is not None]
                absent = [row for row in rows if row.get(order_by) is None]
                present.sort(key=lambda row: row[order_by], reverse=descending)
                rows = present + absent
            end = None if limit is None else offset + limit
            return [copy.deepcopy(row) for row in rows[offset:end]]

    async def count(self, table: str, conditions: Sequence[Condition] = ()) -> int:
        async with self._lock:
            return sum(
                1
                for row in self._table(table).values()
                if all(_matches(condition, row) for condition in conditions)
            )

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        stored = copy.deepcopy(dict(row))
        stored.setdefault("id", new_id())
        async with self._lock:
            rows = self._table(table)
            if stored["id"] in rows:
                raise UniqueViolation(table, ("id",))
            self._check_constraints(table, stored)
            rows[stored["id"]] = stored
            return copy.deepcopy(stored)

    async def update(self, table: str, id: str, changes: Mapping[str, Any]) -> Row | None:
        async with self._lock:
            rows = self._table(table)
            current = rows.get(id)
            if current is None:
                return None
            candidate = {**current, **copy.deepcopy(dict(changes)), "id": id}
            self._check_constraints(table, candidate)
            rows[id] = candidate
            return copy.deepcopy(candidate)

    async def increment(
        self,
        table: str,
        id: str,
        field: str,
        amount: int = 1,
        *,
        changes: Mapping[str, Any] | None = None,
    ) -> Row | None:
        async with self._lock:
            rows = self._table(table)
            current = rows.get(id)
            if current is None:
                return None
            candidate = {**current, **copy.deepcopy(dict(changes or {}))}
            candidate[field] = (current.get(field) or 0) + amount
            rows[id] = candidate
            return copy.deepcopy(candidate)

    async def delete(self, table: str, id: str) -> bool:
        async with self._lock:
            rows = self._table(table)
            if id not in rows:
                return False
            self._check_not_referenced(table, id)
            del rows[id]
            return True


__all__ = ["DEFAULT_SCHEMA", "InMemoryStore", "TableSchema"]
