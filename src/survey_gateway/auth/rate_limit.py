"""Request allowances checked before any operation work starts.

Every request is charged against two allowances: the caller's own (keyed by a
fingerprint of the bearer token, or by client address for anonymous callers)
and the client address as a whole. Tokens are not verified at this point, so
the address allowance is what stops a client from rotating made-up tokens to
get a fresh budget on every request. It is ``ip_multiplier`` times larger than
a single caller's, leaving room for several users behind one address.
"""

from __future__ import annotations

# ============================================================================
# IMPORTS
# ============================================================================

import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass, field

import structlog

from ..config.settings import AppSettings, RateLimitSettings, get_settings
from ..utils.errors import RateLimited

logger = structlog.get_logger(__name__)


# ============================================================================
# DATA MODELS
# ============================================================================


@dataclass
class Allowance:
    """Refilling request budget of one subject on one endpoint."""

    capacity: float
    per_second: float
    remaining: float
    refilled_at: float = field(default_factory=time.monotonic)

    def take(self) -> float:
        """Spend one request.

        Returns 0 when the request is admitted, otherwise the seconds until
        one request's worth has refilled.
        """
        now = time.monotonic()
        self.remaining = min(
            self.capacity, self.remaining + (now - self.refilled_at) * self.per_second
        )
        self.refilled_at = now
        if self.remaining >= 1:
            self.remaining -= 1
            return 0.0
        return max(1.0, (1 - self.remaining) / self.per_second)


@dataclass(frozen=True)
class Subject:
    """A key requests are counted under, with its share of the base budget."""

    key: str
    scale: int = 1


# ============================================================================
# RATE LIMITER IMPLEMENTATION
# ============================================================================


def fingerprint(token: str) -> str:
    """Short digest of a bearer token; raw secrets never reach limiter state or logs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class RateLimiter:
    """Caller and client-address allowances with per-endpoint rates."""

    MAX_TRACKED = 10_000

    def __init__(self, settings: RateLimitSettings) -> None:
        self.settings = settings
        self._allowances: OrderedDict[str, Allowance] = OrderedDict()

    def subjects(self, token: str | None, client_ip: str | None) -> list[Subject]:
        address = client_ip or "unknown"
        caller = f"token:{fingerprint(token)}" if token else f"anonymous:{address}"
        return [
            Subject(f"address:{address}", scale=self.settings.ip_multiplier),
            Subject(caller),
        ]

    def admit(self, endpoint: str, *, token: str | None, client_ip: str | None) -> None:
        """Charge one request on ``endpoint`` to the address and the caller.

        The address is charged first; a caller whose address is exhausted is
        refused without touching their own allowance.

        Raises:
            RateLimited: When either allowance is exhausted.
        """
        for subject in self.subjects(token, client_ip):
            self.charge(subject, endpoint)

    def charge(self, subject: Subject, endpoint: str) -> None:
        allowance = self._allowance(subject, endpoint)
        retry_after = allowance.take()
        if retry_after:
            logger.warning(
                "security.rate_limit_exceeded",
                subject=subject.key,
                endpoint=endpoint,
                retry_after=retry_after,
            )
            raise RateLimited(retry_after)

    def _allowance(self, subject: Subject, endpoint: str) -> Allowance:
        key = f"{subject.key}|{endpoint}"
        allowance = self._allowances.get(key)
        if allowance is not None:
            self._allowances.move_to_end(key)
            return allowance
        per_minute = self.settings.endpoint_overrides.get(
            endpoint, self.settings.requests_per_minute
        )
        capacity = self.settings.burst * subject.scale
        allowance = Allowance(
            capacity=capacity,
            per_second=per_minute * subject.scale / 60.0,
            remaining=capacity,
        )
        self._allowances[key] = allowance
        while len(self._allowances) > self.MAX_TRACKED:
            self._allowances.popitem(last=False)
        return allowance


# ============================================================================
# FACTORY FUNCTIONS
# ============================================================================


def build_rate_limiter(settings: AppSettings | None = None) -> RateLimiter:
    """Construct a rate limiter from application settings."""
    return RateLimiter((settings or get_settings()).security.rate_limit)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Allowance", "RateLimiter", "Subject", "build_rate_limiter", "fingerprint"]
