"""Backing store interface consumed by loaders and services.

This module defines the narrow CRUD/query contract the gateway relies on.
Concrete stores (the bundled in-memory store, or a relational adapter) map
these primitives onto their engine and translate engine faults into the
:class:`StoreError` hierarchy.

The module provides:
- Table name constants shared by loaders and services
- :class:`Condition` filters with small constructor helpers
- :class:`BackingStore`, the abstract store contract
- Store fault types

Thread Safety:
    Thread-safe: Abstract interfaces with no shared state.
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================

Row = dict[str, Any]
Operator = Literal["eq", "ne", "in", "contains", "search", "lt", "ge"]


class Tables:
    """Names of the tables owned by the gateway."""

    TENANTS = "tenants"
    IDENTITIES = "identities"
    SURVEYS = "surveys"
    QUESTIONS = "questions"
    SESSIONS = "sessions"
    RESPONSES = "responses"
    CREDENTIALS = "credentials"
    ANALYSIS_RESULTS = "analysis_results"


@dataclass(frozen=True, slots=True)
class Condition:
    """A single filter applied by :meth:`BackingStore.query` and ``count``.

    Attributes:
        field: Column name, or a tuple of column names for ``search``.
        op: Comparison operator.
        value: Operand; a collection for ``in`` and ``contains``.
    """

    field: str | tuple[str, ...]
    op: Operator
    value: Any


def eq(field: str, value: Any) -> Condition:
    return Condition(field, "eq", value)


def ne(field: str, value: Any) -> Condition:
    return Condition(field, "ne", value)


def in_(field: str, values: Iterable[Any]) -> Condition:
    return Condition(field, "in", tuple(values))


def contains(field: str, values: Iterable[Any]) -> Condition:
    """Match rows whose sequence column holds every value in ``values``."""
    return Condition(field, "contains", tuple(values))


def search(fields: Sequence[str], text: str) -> Condition:
    """Case-insensitive substring match against any of ``fields``."""
    return Condition(tuple(fields), "search", text)


def lt(field: str, value: Any) -> Condition:
    return Condition(field, "lt", value)


def ge(field: str, value: Any) -> Condition:
    return Condition(field, "ge", value)


# ==============================================================================
# ERRORS
# ==============================================================================


class StoreError(RuntimeError):
    """Base exception for backing store faults."""


class UniqueViolation(StoreError):
    """A write would duplicate a unique key."""

    def __init__(self, table: str, fields: Sequence[str]) -> None:
        super().__init__(f"unique constraint on {table}({', '.join(fields)}) violated")
        self.table = table
        self.fields = tuple(fields)


class ReferenceViolation(StoreError):
    """A write or delete would break a foreign key."""

    def __init__(self, table: str, field: str, *, referenced_by: str | None = None) -> None:
        if referenced_by:
            message = f"{table} row is still referenced by {referenced_by}.{field}"
        else:
            message = f"{table}.{field} references a missing row"
        super().__init__(message)
        self.table = table
        self.field = field
        self.referenced_by = referenced_by


# ==============================================================================
# INTERFACES
# ==============================================================================


class BackingStore(ABC):
    """Typed CRUD and query primitives over the relational store.

    Each call is atomic on its own; there is no multi-call transaction.
    """

    @abstractmethod
    async def fetch_many(self, table: str, ids: Sequence[str]) -> list[Row]:
        """Return the rows whose ``id`` is in ``ids``.

        Missing ids are omitted and the result order is unspecified.
        """

    @abstractmethod
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
        """Return rows matching every condition."""

    @abstractmethod
    async def count(self, table: str, conditions: Sequence[Condition] = ()) -> int:
        """Return the number of rows matching every condition."""

    @abstractmethod
    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """Insert ``row`` and return the stored copy."""

    @abstractmethod
    async def update(self, table: str, id: str, changes: Mapping[str, Any]) -> Row | None:
        """Apply ``changes`` to the row; ``None`` when it does not exist."""

    @abstractmethod
    async def increment(
        self,
        table: str,
        id: str,
        field: str,
        amount: int = 1,
        *,
        changes: Mapping[str, Any] | None = None,
    ) -> Row | None:
        """Atomically add ``amount`` to a numeric column, applying ``changes`` too."""

    @abstractmethod
    async def delete(self, table: str, id: str) -> bool:
        """Delete the row; ``False`` when it did not exist."""


__all__ = [
    "BackingStore",
    "Condition",
    "ReferenceViolation",
    "Row",
    "StoreError",
    "Tables",
    "UniqueViolation",
    "contains",
    "eq",
    "ge",
    "in_",
    "lt",
    "ne",
    "search",
]
