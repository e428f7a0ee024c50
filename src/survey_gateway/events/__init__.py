"""Realtime notification bus."""

from .bus import (
    BusEvent,
    InMemoryNotificationBus,
    NotificationBus,
    RedisNotificationBus,
    Subscription,
    build_bus,
)

__all__ = [
    "BusEvent",
    "InMemoryNotificationBus",
    "NotificationBus",
    "RedisNotificationBus",
    "Subscription",
    "build_bus",
]
