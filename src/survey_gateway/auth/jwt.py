"""Identity token verification against the identity provider's JWKS.

Bearer tokens that are not API keys are JWTs issued by the external identity
provider. This module fetches signing keys, validates tokens and exposes the
narrow :class:`IdentityVerifier` interface the context builder depends on.
"""

from __future__ import annotations

# ============================================================================
# IMPORTS
# ============================================================================

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
from jose import JWTError, jwt

from ..config.settings import AppSettings, get_settings

# ============================================================================
# ERRORS AND MODELS
# ============================================================================


class AuthenticationError(RuntimeError):
    """Raised when a token cannot be verified."""


@dataclass(frozen=True)
class VerifiedToken:
    """Subject and claims of a successfully verified token."""

    subject: str
    claims: Mapping[str, Any] = field(default_factory=dict)


class IdentityVerifier(ABC):
    """Collaborator turning a raw bearer token into a verified subject."""

    @abstractmethod
    async def verify(self, token: str) -> VerifiedToken:
        """Verify ``token``.

        Raises:
            AuthenticationError: When the token is malformed, expired or
                not signed by a trusted key.
        """


# ============================================================================
# JWKS CACHE
# ============================================================================


class JWKSCache:
    """Caches JWKS signing keys keyed by ``kid`` for ``ttl`` seconds."""

    def __init__(self, url: str, *, ttl: int = 300) -> None:
        self._url = url
        self._ttl = ttl
        self._expires_at = 0.0
        self._keys: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get_key(self, kid: str) -> dict[str, Any] | None:
        await self._refresh(force=False)
        key = self._keys.get(kid)
        if key is None:
            # Unknown kid may mean the provider rotated keys since the last fetch.
            await self._refresh(force=True)
            key = self._keys.get(kid)
        return key

    async def _refresh(self, *, force: bool) -> None:
        async with self._lock:
            if not force and self._keys and time.time() < self._expires_at:
                return
            try:
                async with httpx.AsyncClient(timeout=5.0) as client:
                    response = await client.get(self._url)
                    response.raise_for_status()
                    payload = response.json()
            except httpx.HTTPError as exc:
                raise AuthenticationError("Unable to fetch signing keys") from exc
            self._keys = {key["kid"]: key for key in payload.get("keys", []) if "kid" in key}
            self._expires_at = time.time() + self._ttl


# ============================================================================
# VERIFIER IMPLEMENTATION
# ============================================================================


class JWTIdentityVerifier(IdentityVerifier):
    """Validate JWT access tokens signed by keys published in a JWKS.

    Attributes:
        issuer: Expected issuer claim.
        audience: Expected audience claim.
        algorithms: Acceptable signature algorithms.
        cache: :class:`JWKSCache` storing signing keys.
    """

    def __init__(
        self,
        *,
        issuer: str,
        audience: str,
        jwks_url: str,
        algorithms: Iterable[str] = ("RS256", "RS384", "RS512"),
        cache_ttl: int = 300,
    ) -> None:
        self.issuer = issuer
        self.audience = audience
        self.algorithms = tuple(algorithms)
        self.cache = JWKSCache(jwks_url, ttl=cache_ttl)

    async def verify(self, token: str) -> VerifiedToken:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthenticationError("Invalid token header") from exc
        kid = header.get("kid")
        if not kid:
            raise AuthenticationError("Token missing key identifier")
        key_data = await self.cache.get_key(kid)
        if not key_data:
            raise AuthenticationError("Signing key not found")
        try:
            claims = jwt.decode(
                token,
                key_data,
                algorithms=list(self.algorithms),
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError as exc:
            raise AuthenticationError(str(exc)) from exc
        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Token missing subject")
        return VerifiedToken(subject=str(subject), claims=claims)


def build_verifier(settings: AppSettings | None = None) -> JWTIdentityVerifier:
    """Construct a :class:`JWTIdentityVerifier` from application settings."""
    cfg = (settings or get_settings()).security.oauth
    return JWTIdentityVerifier(
        issuer=cfg.issuer,
        audience=cfg.audience,
        jwks_url=cfg.jwks_url,
        algorithms=cfg.algorithms,
        cache_ttl=cfg.jwks_cache_ttl,
    )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "AuthenticationError",
    "IdentityVerifier",
    "JWKSCache",
    "JWTIdentityVerifier",
    "VerifiedToken",
    "build_verifier",
]
