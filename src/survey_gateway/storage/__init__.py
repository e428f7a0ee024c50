"""Backing store contract and the bundled in-memory implementation."""

from .base import (
    BackingStore,
    Condition,
    ReferenceViolation,
    Row,
    StoreError,
    Tables,
    UniqueViolation,
)
from .memory import InMemoryStore

__all__ = [
    "BackingStore",
    "Condition",
    "InMemoryStore",
    "ReferenceViolation",
    "Row",
    "StoreError",
    "Tables",
    "UniqueViolation",
]
