"""Explicit success/failure values passed from services to the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar, Union

from .errors import GatewayError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome wrapping ``value``."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))


@dataclass(frozen=True, slots=True)
class Err:
    """Failed outcome carrying a taxonomy error."""

    error: GatewayError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        """Raise the wrapped error; the orchestrator boundary converts it."""
        raise self.error

    def map(self, fn: Callable[[object], object]) -> Err:
        return self


Result = Union[Ok[T], Err]


__all__ = ["Err", "Ok", "Result"]
