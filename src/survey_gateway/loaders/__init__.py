"""Request scoped batched loaders."""

from .base import BatchLoader
from .entity import EntityLoader, RelationLoader
from .registry import RequestLoaders
from .stats import SurveyStatsLoader

__all__ = [
    "BatchLoader",
    "EntityLoader",
    "RelationLoader",
    "RequestLoaders",
    "SurveyStatsLoader",
]
