"""Shared utilities: error taxonomy, result values, paging and logging."""

from .errors import (
    Conflict,
    ErrorPayload,
    Forbidden,
    GatewayError,
    Internal,
    NotFound,
    RateLimited,
    Unauthenticated,
    ValidationFailed,
)
from .pagination import Pagination
from .result import Err, Ok, Result

__all__ = [
    "Conflict",
    "Err",
    "ErrorPayload",
    "Forbidden",
    "GatewayError",
    "Internal",
    "NotFound",
    "Ok",
    "Pagination",
    "RateLimited",
    "Result",
    "Unauthenticated",
    "ValidationFailed",
]
