"""Operation handlers and nested field resolvers, grouped by entity."""

from __future__ import annotations

from ..registry import OperationRegistry, TypeRegistry
from . import analysis, credentials, identities, responses, sessions, surveys, tenants

# Later modules attach fields to types registered by earlier ones.
MODULES = (tenants, identities, surveys, sessions, responses, credentials, analysis)


def build_registries() -> tuple[OperationRegistry, TypeRegistry]:
    """Return freshly populated operation and type registries."""
    operations = OperationRegistry()
    types = TypeRegistry()
    for module in MODULES:
        module.register(operations, types)
    return operations, types


__all__ = ["build_registries"]
