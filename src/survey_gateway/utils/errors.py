"""Error taxonomy shared by services, the orchestrator and the HTTP surface.

Key Responsibilities:
    - Define the stable set of gateway errors returned to callers
    - Provide the serialisable payload attached to each error entry in an
      operation response

Collaborators:
    - Upstream: Services wrap these errors in ``Err`` results; the gate raises
      them directly
    - Downstream: The orchestrator boundary serialises :class:`ErrorPayload`
      instances into ``{data, errors}`` responses

Side Effects:
    - None; helpers are pure data containers

Thread Safety:
    - Thread-safe; payloads are immutable
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================

INTERNAL_ERROR_MESSAGE = "Internal server error"


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Wire representation of a single operation error."""

    message: str
    code: str
    http_status: int
    field: str | None = None
    path: tuple[str | int, ...] = ()

    def as_json(self) -> dict[str, Any]:
        """Return the camel-cased response entry with empty optionals dropped."""
        payload: dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "httpStatus": self.http_status,
        }
        if self.field:
            payload["field"] = self.field
        if self.path:
            payload["path"] = list(self.path)
        return payload


# ==============================================================================
# EXCEPTIONS
# ==============================================================================


class GatewayError(RuntimeError):
    """Base exception carrying a stable error code and HTTP status."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def payload(self, path: Sequence[str | int] = ()) -> ErrorPayload:
        """Build the wire payload for this error at the given response path."""
        return ErrorPayload(
            message=self.message,
            code=self.code,
            http_status=self.http_status,
            field=self.field,
            path=tuple(path),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GatewayError):
            return NotImplemented
        return (type(self), self.message, self.field) == (type(other), other.message, other.field)

    def __hash__(self) -> int:
        return hash((type(self), self.message, self.field))


class Unauthenticated(GatewayError):
    code = "UNAUTHENTICATED"
    http_status = 401

    def __init__(self, message: str = "Authentication required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class Forbidden(GatewayError):
    code = "FORBIDDEN"
    http_status = 403

    def __init__(self, message: str = "Insufficient permissions", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ValidationFailed(GatewayError):
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(GatewayError):
    code = "NOT_FOUND"
    http_status = 404


class Conflict(GatewayError):
    code = "CONFLICT"
    http_status = 409


class Internal(GatewayError):
    """Server fault. The caller only ever sees the generic message."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str = INTERNAL_ERROR_MESSAGE, **kwargs: Any) -> None:
        super().__init__(INTERNAL_ERROR_MESSAGE, **kwargs)
        self.detail = message


class RateLimited(GatewayError):
    code = "RATE_LIMIT_EXCEEDED"
    http_status = 429

    def __init__(self, retry_after: float, message: str = "Rate limit exceeded") -> None:
        super().__init__(message)
        self.retry_after = retry_after


__all__ = [
    "INTERNAL_ERROR_MESSAGE",
    "Conflict",
    "ErrorPayload",
    "Forbidden",
    "GatewayError",
    "Internal",
    "NotFound",
    "RateLimited",
    "Unauthenticated",
    "ValidationFailed",
]
