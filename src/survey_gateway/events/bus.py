"""Realtime notification bus.

Mutations publish small events after they succeed; realtime clients consume
them through subscriptions. Delivery is at-most-once: a subscriber whose
buffer is full loses the event, and nothing is persisted or replayed.

Key Responsibilities:
    - Fan events out to every subscription whose topic patterns match
    - Keep one bounded buffer per subscription
    - Release subscription resources as soon as the consumer stops

Collaborators:
    - Upstream: The orchestrator (publish) and the SSE route (subscribe)
    - Downstream: In-process queues or Redis pub/sub channels

Side Effects:
    - Records ``bus_events_total`` metrics for delivered and dropped events

Thread Safety:
    - Not thread-safe; use from a single event loop
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from fnmatch import fnmatchcase
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.asyncio import Redis
from redis.asyncio.client import PubSub

from ..config.settings import AppSettings, BusSettings, get_settings
from ..models.entities import new_id, utcnow
from ..observability.metrics import record_bus_event

logger = structlog.get_logger(__name__)

Predicate = Callable[["BusEvent"], bool]


class BusEvent(BaseModel):
    """Event delivered to subscribers."""

    model_config = ConfigDict(frozen=True)

    topic: str
    payload: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str | None = None
    emitted_at: datetime = Field(default_factory=utcnow)
    event_id: str = Field(default_factory=new_id)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> BusEvent:
        return cls.model_validate_json(data)


_CLOSED = object()


class Subscription:
    """Bounded buffer of events matching a set of topic patterns.

    Iterate with ``async for``; iteration ends once :meth:`aclose` is called.
    Topic patterns use shell-style wildcards (``survey.*``).
    """

    def __init__(
        self,
        topics: Iterable[str],
        predicate: Predicate | None,
        *,
        queue_size: int,
        on_close: Callable[[Subscription], Awaitable[None]],
    ) -> None:
        self.topics = tuple(topics) or ("*",)
        self.predicate = predicate
        self.closed = False
        self.dropped = 0
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._on_close = on_close

    def matches(self, event: BusEvent) -> bool:
        if not any(fnmatchcase(event.topic, pattern) for pattern in self.topics):
            return False
        return self.predicate is None or self.predicate(event)

    def offer(self, event: BusEvent) -> bool:
        """Buffer ``event`` if it matches; return whether it was accepted."""
        if self.closed or not self.matches(event):
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            record_bus_event(event.topic, "dropped")
            logger.warning("bus.event_dropped", topic=event.topic, event_id=event.event_id)
            return False
        return True

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> BusEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        await self._on_close(self)

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class NotificationBus(ABC):
    """Publish/subscribe contract shared by every bus backend."""

    @abstractmethod
    async def publish(
        self, topic: str, payload: dict[str, Any], *, tenant_id: str | None = None
    ) -> int:
        """Publish an event and return how many subscribers received it."""

    @abstractmethod
    async def subscribe(
        self, topics: Iterable[str] = (), predicate: Predicate | None = None
    ) -> Subscription:
        """Register a subscription; it receives events published from now on."""

    @abstractmethod
    async def close(self) -> None:
        """Close every subscription and release backend resources."""


class InMemoryNotificationBus(NotificationBus):
    """Single process bus backed by per-subscription ``asyncio.Queue`` buffers."""

    def __init__(self, *, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(
        self, topic: str, payload: dict[str, Any], *, tenant_id: str | None = None
    ) -> int:
        event = BusEvent(topic=topic, payload=payload, tenant_id=tenant_id)
        delivered = sum(1 for subscription in list(self._subscriptions) if subscription.offer(event))
        record_bus_event(topic, "delivered", delivered)
        return delivered

    async def subscribe(
        self, topics: Iterable[str] = (), predicate: Predicate | None = None
    ) -> Subscription:
        subscription = Subscription(
            topics, predicate, queue_size=self.queue_size, on_close=self._release
        )
        self._subscriptions.append(subscription)
        return subscription

    async def _release(self, subscription: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.aclose()


class RedisNotificationBus(NotificationBus):
    """Bus backed by Redis pub/sub so events reach every gateway process.

    Each subscription holds its own pattern subscription and a reader task
    that copies messages into the subscription buffer.
    """

    def __init__(
        self,
        client: Redis | None = None,
        *,
        url: str = "redis://localhost:6379/0",
        channel_prefix: str = "survey-gateway:",
        queue_size: int = 100,
    ) -> None:
        self._owns_client = client is None
        self._client = client or Redis.from_url(url, decode_responses=True)
        self.channel_prefix = channel_prefix
        self.queue_size = queue_size
        self._readers: dict[Subscription, tuple[PubSub, asyncio.Task[None]]] = {}

    def _channel(self, topic: str) -> str:
        return f"{self.channel_prefix}{topic}"

    async def publish(
        self, topic: str, payload: dict[str, Any], *, tenant_id: str | None = None
    ) -> int:
        event = BusEvent(topic=topic, payload=payload, tenant_id=tenant_id)
        receivers = int(await self._client.publish(self._channel(topic), event.to_json()))
        record_bus_event(topic, "delivered", receivers)
        return receivers

    async def subscribe(
        self, topics: Iterable[str] = (), predicate: Predicate | None = None
    ) -> Subscription:
        subscription = Subscription(
            topics, predicate, queue_size=self.queue_size, on_close=self._release
        )
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await pubsub.psubscribe(*(self._channel(topic) for topic in subscription.topics))
        reader = asyncio.create_task(self._pump(pubsub, subscription))
        self._readers[subscription] = (pubsub, reader)
        return subscription

    async def _pump(self, pubsub: PubSub, subscription: Subscription) -> None:
        async for message in pubsub.listen():
            if message.get("type") != "pmessage":
                continue
            try:
                event = BusEvent.from_json(message["data"])
            except ValidationError:
                logger.warning("bus.invalid_message", channel=message.get("channel"))
                continue
            subscription.offer(event)

    async def _release(self, subscription: Subscription) -> None:
        entry = self._readers.pop(subscription, None)
        if entry is None:
            return
        pubsub, reader = entry
        reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reader
        await pubsub.punsubscribe()
        await pubsub.aclose()

    async def close(self) -> None:
        for subscription in list(self._readers):
            await subscription.aclose()
        if self._owns_client:
            await self._client.aclose()


def build_bus(settings: AppSettings | None = None) -> NotificationBus:
    """Construct the configured bus backend."""
    cfg: BusSettings = (settings or get_settings()).bus
    if cfg.backend == "redis":
        return RedisNotificationBus(
            url=cfg.redis_url, channel_prefix=cfg.channel_prefix, queue_size=cfg.queue_size
        )
    return InMemoryNotificationBus(queue_size=cfg.queue_size)


__all__ = [
    "BusEvent",
    "InMemoryNotificationBus",
    "NotificationBus",
    "RedisNotificationBus",
    "Subscription",
    "build_bus",
]
