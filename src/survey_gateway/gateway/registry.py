"""Explicit operation and object type tables.

Resolver modules register every exposed operation and every nested field
here. Registering a name twice raises instead of silently replacing the
first registration.
"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================

from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel

from ..utils.errors import ValidationFailed

if TYPE_CHECKING:
    from .context import RequestContext

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================

OperationKind = Literal["query", "mutation"]
Handler = Callable[["RequestContext", Any], Awaitable[Any]]
FieldResolver = Callable[["RequestContext", Any], Awaitable[Any]]
EventBuilder = Callable[["RequestContext", Any], Awaitable["tuple[dict[str, Any], str | None]"]]
Selection = Sequence[Any] | None

MAX_SELECTION_DEPTH = 6


class RegistrationError(ValueError):
    """Raised when an operation, type or field is registered twice."""


# ==============================================================================
# OPERATIONS
# ==============================================================================


@dataclass(frozen=True)
class OperationSpec:
    """Static description of one exposed operation.

    Attributes:
        name: Operation name used by callers.
        kind: ``query`` operations may run concurrently; ``mutation``
            operations run one at a time in request order.
        arguments: Model the raw arguments are validated into.
        handler: Coroutine receiving the context and validated arguments.
        returns: Object type name used to render the result, ``None`` for
            plain JSON values.
        requires_auth: Reject anonymous callers before the handler runs.
        permission: Permission required before the handler runs.
        publishes: Bus topic published after a successful mutation.
        event: Coroutine building ``(payload, tenant_id)`` for the published
            event; defaults to the result id and tenant.
    """

    name: str
    kind: OperationKind
    arguments: type[BaseModel]
    handler: Handler
    returns: str | None = None
    requires_auth: bool = True
    permission: str | None = None
    publishes: str | None = None
    event: EventBuilder | None = None


class OperationRegistry:
    def __init__(self) -> None:
        self._operations: dict[str, OperationSpec] = {}

    def register(self, spec: OperationSpec) -> OperationSpec:
        if spec.name in self._operations:
            raise RegistrationError(f"Operation '{spec.name}' is already registered")
        self._operations[spec.name] = spec
        return spec

    def query(self, name: str, arguments: type[BaseModel], **options: Any) -> Callable[[Handler], Handler]:
        """Decorator registering ``handler`` as a query."""

        def decorator(handler: Handler) -> Handler:
            self.register(OperationSpec(name, "query", arguments, handler, **options))
            return handler

        return decorator

    def mutation(self, name: str, arguments: type[BaseModel], **options: Any) -> Callable[[Handler], Handler]:
        """Decorator registering ``handler`` as a mutation."""

        def decorator(handler: Handler) -> Handler:
            self.register(OperationSpec(name, "mutation", arguments, handler, **options))
            return handler

        return decorator

    def get(self, name: str) -> OperationSpec | None:
        return self._operations.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[OperationSpec]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)


# ==============================================================================
# OBJECT TYPES
# ==============================================================================


@dataclass(frozen=True)
class FieldSpec:
    """Nested field resolved from its parent object.

    Attributes:
        resolver: Coroutine loading the field value for a parent object.
        type_name: Object type of the value, ``None`` for plain JSON.
        permission: Elevated permission required to traverse the field.
        tenant_boundary: Returns the tenant owning the parent; when set the
            caller must be allowed into that tenant.
    """

    resolver: FieldResolver
    type_name: str | None = None
    permission: str | None = None
    tenant_boundary: Callable[[Any], str | None] | None = None


@dataclass
class ObjectType:
    name: str
    scalars: tuple[str, ...]
    fields: dict[str, FieldSpec] = field(default_factory=dict)

    @classmethod
    def from_model(
        cls,
        name: str,
        model: type[BaseModel],
        *,
        exclude: Iterable[str] = (),
        extra: Iterable[str] = (),
    ) -> ObjectType:
        hidden = set(exclude)
        scalars = tuple(item for item in model.model_fields if item not in hidden)
        return cls(name=name, scalars=scalars + tuple(extra))

    def add_field(self, name: str, spec: FieldSpec) -> None:
        if name in self.fields or name in self.scalars:
            raise RegistrationError(f"Field '{self.name}.{name}' is already registered")
        self.fields[name] = spec


def selection_items(selection: Selection) -> list[tuple[str, Selection]]:
    """Normalise ``["id", {"questions": ["id"]}]`` into ``(name, sub)`` pairs."""
    items: list[tuple[str, Selection]] = []
    for entry in selection or ():
        if isinstance(entry, str):
            items.append((entry, None))
        elif isinstance(entry, Mapping):
            for name, sub in entry.items():
                if sub is not None and (isinstance(sub, (str, bytes)) or not isinstance(sub, Sequence)):
                    raise ValidationFailed(f"Selection for '{name}' must be a list", field="fields")
                items.append((str(name), sub))
        else:
            raise ValidationFailed("Field selections must be names or objects", field="fields")
    return items


class TypeRegistry:
    def __init__(self) -> None:
        self._types: dict[str, ObjectType] = {}

    def register(self, object_type: ObjectType) -> ObjectType:
        if object_type.name in self._types:
            raise RegistrationError(f"Type '{object_type.name}' is already registered")
        self._types[object_type.name] = object_type
        return object_type

    def add_field(self, type_name: str, name: str, spec: FieldSpec) -> None:
        self[type_name].add_field(name, spec)

    def __getitem__(self, name: str) -> ObjectType:
        try:
            return self._types[name]
        except KeyError:
            raise KeyError(f"Unknown type '{name}'") from None

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def resolve_selection(self, type_name: str, selection: Selection) -> list[tuple[str, Selection]]:
        """Return the selected items, defaulting to every scalar field."""
        if not selection:
            return [(name, None) for name in self[type_name].scalars]
        return selection_items(selection)

    def check_selection(self, type_name: str | None, selection: Selection, depth: int = 0) -> None:
        """Validate a field selection before any work is done.

        Raises:
            ValidationFailed: On unknown fields, sub-selections of scalar
                fields or selections nested deeper than allowed.
        """
        if type_name is None:
            if selection:
                raise ValidationFailed("Field selection is not allowed here", field="fields")
            return
        if depth > MAX_SELECTION_DEPTH:
            raise ValidationFailed("Field selection is nested too deeply", field="fields")
        object_type = self[type_name]
        for name, sub in selection_items(selection):
            if name in object_type.fields:
                self.check_selection(object_type.fields[name].type_name, sub, depth + 1)
            elif name in object_type.scalars:
                if sub:
                    raise ValidationFailed(
                        f"Field '{type_name}.{name}' does not take a selection", field="fields"
                    )
            else:
                raise ValidationFailed(f"Unknown field '{name}' on {type_name}", field="fields")


# ==============================================================================
# EXPORTS
# ==============================================================================

__all__ = [
    "FieldSpec",
    "ObjectType",
    "OperationRegistry",
    "OperationSpec",
    "RegistrationError",
    "TypeRegistry",
    "selection_items",
]
