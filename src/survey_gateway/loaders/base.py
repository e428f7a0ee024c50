"""Request scoped batch loading on top of Strawberry's ``DataLoader``.

Key Responsibilities:
    - Coalesce every key requested during one scheduling tick into a single
      backing store fetch per loader instance
    - Map fetched values back to keys without trusting store ordering
    - Degrade failing keys to ``None`` instead of failing the whole batch

Collaborators:
    - Upstream: Services and orchestrator field resolvers
    - Downstream: :class:`~survey_gateway.storage.base.BackingStore`

Side Effects:
    - Issues backing store reads and records Prometheus loader metrics

Thread Safety:
    - Not thread-safe; one instance serves a single request on one event loop

Performance Characteristics:
    - Pending keys above ``max_batch_size`` are split into several batches
      that reach the store one after another
    - A dispatched batch runs in its own task, so it completes even when the
      request that triggered it is cancelled; its result is then discarded
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable, Mapping, Sequence
from typing import Generic, TypeVar

import structlog
from strawberry.dataloader import DataLoader

from ..observability.metrics import record_loader_batch, record_loader_fallback

logger = structlog.get_logger(__name__)

V = TypeVar("V")


class BatchLoader(ABC, Generic[V]):
    """Loader keyed by string ids whose results are cached for the request.

    Both hits and misses are cached: a key that resolved to ``None`` is not
    fetched again until it is cleared.
    """

    def __init__(self, name: str, *, max_batch_size: int) -> None:
        self.name = name
        self.max_batch_size = max_batch_size
        self.dispatched_batches = 0
        self._dispatching = asyncio.Lock()
        self._loader: DataLoader[str, V | None] = DataLoader(
            self._dispatch, max_batch_size=max_batch_size
        )

    @abstractmethod
    async def _fetch(self, keys: Sequence[str]) -> Mapping[str, V]:
        """Fetch values for ``keys``; keys absent from the mapping resolve to ``None``."""

    async def _dispatch(self, keys: list[str]) -> list[V | None]:
        # DataLoader schedules every capped chunk at once; the store sees them in turn.
        async with self._dispatching:
            return await self._dispatch_batch(keys)

    async def _dispatch_batch(self, keys: list[str]) -> list[V | None]:
        self.dispatched_batches += 1
        record_loader_batch(self.name, len(keys))
        try:
            found = await self._fetch(keys)
        except Exception:
            logger.warning(
                "loader.batch_failed", loader=self.name, size=len(keys), exc_info=True
            )
            record_loader_fallback(self.name)
            outcomes = await asyncio.gather(*(self._fetch_isolated(key) for key in keys))
            found = {key: value for key, value in zip(keys, outcomes) if value is not None}
        return [found.get(key) for key in keys]

    async def _fetch_isolated(self, key: str) -> V | None:
        try:
            return (await self._fetch([key])).get(key)
        except Exception:
            logger.warning("loader.key_failed", loader=self.name, key=key, exc_info=True)
            return None

    def load(self, key: str) -> Awaitable[V | None]:
        return self._loader.load(key)

    def load_many(self, keys: Iterable[str]) -> Awaitable[list[V | None]]:
        return self._loader.load_many(keys)

    def is_cached(self, key: str) -> bool:
        return self._loader.cache_map.get(key) is not None

    def clear(self, key: str) -> None:
        """Drop ``key`` from the cache; keys never loaded are ignored."""
        if self.is_cached(key):
            self._loader.clear(key)

    def clear_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.clear(key)

    def clear_all(self) -> None:
        self._loader.clear_all()

    def prime(self, key: str, value: V, *, replace: bool = True) -> None:
        """Seed the cache. ``replace=False`` keeps an existing entry."""
        self._loader.prime(key, value, force=replace)


__all__ = ["BatchLoader"]
