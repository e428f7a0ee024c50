"""Limit/offset paging shared by every list operation."""

from __future__ import annotations

from dataclasses import dataclass

from ..config.settings import PaginationSettings
from .errors import ValidationFailed


@dataclass(frozen=True, slots=True)
class Pagination:
    """Normalised page window. ``limit`` is always within ``1..max_limit``."""

    limit: int
    offset: int = 0

    @classmethod
    def build(
        cls,
        limit: int | None = None,
        offset: int | None = None,
        *,
        settings: PaginationSettings | None = None,
    ) -> Pagination:
        """Clamp the requested window to the configured cap.

        A missing or zero limit falls back to the default; a limit above the
        cap is clamped rather than rejected.

        Raises:
            ValidationFailed: When ``limit`` or ``offset`` is negative.
        """
        cfg = settings or PaginationSettings()
        if limit is not None and limit < 0:
            raise ValidationFailed("limit must not be negative", field="limit")
        if offset is not None and offset < 0:
            raise ValidationFailed("offset must not be negative", field="offset")
        effective = limit or cfg.default_limit
        return cls(limit=min(effective, cfg.max_limit), offset=offset or 0)


__all__ = ["Pagination"]
