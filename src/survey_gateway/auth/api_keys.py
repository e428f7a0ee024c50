"""API key secret generation and hashing.

Credentials are persisted by the credential service; this module only deals
with the secret material. Raw secrets are returned to the caller exactly once
and only their digest is stored.

Key Responsibilities:
    - Generate prefixed, cryptographically random API key secrets
    - Hash secrets with the configured ``hashlib`` algorithm
    - Recognise bearer tokens that are API keys rather than identity tokens

Collaborators:
    - Upstream: ``services.credentials`` and ``gateway.context``
    - Downstream: ``hashlib`` and ``secrets``

Side Effects:
    - None

Example:
    >>> hasher = APIKeyHasher(prefix="sgk_")
    >>> issued = hasher.generate()
    >>> hasher.is_api_key(issued.raw_secret)
    True
"""

from __future__ import annotations

# ============================================================================
# IMPORTS
# ============================================================================

import hashlib
import hmac
import secrets
from dataclasses import dataclass

from ..config.settings import APIKeySettings, AppSettings, get_settings

# ============================================================================
# DATA MODELS
# ============================================================================

DISPLAY_PREFIX_LENGTH = 12


@dataclass(frozen=True)
class IssuedSecret:
    """Secret material for a newly issued key.

    Attributes:
        raw_secret: Plaintext secret handed to the caller once.
        hashed_secret: Digest persisted with the credential.
        display_prefix: Leading characters kept for identification in listings.
    """

    raw_secret: str
    hashed_secret: str
    display_prefix: str


# ============================================================================
# HASHER IMPLEMENTATION
# ============================================================================


class APIKeyHasher:
    """Generate and hash API key secrets."""

    def __init__(
        self, *, prefix: str = "sgk_", hashing_algorithm: str = "sha256", secret_bytes: int = 32
    ) -> None:
        if hashing_algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hashing algorithm {hashing_algorithm}")
        self.prefix = prefix
        self.hashing_algorithm = hashing_algorithm
        self.secret_bytes = secret_bytes

    def generate(self) -> IssuedSecret:
        raw_secret = f"{self.prefix}{secrets.token_urlsafe(self.secret_bytes)}"
        return IssuedSecret(
            raw_secret=raw_secret,
            hashed_secret=self.hash(raw_secret),
            display_prefix=raw_secret[:DISPLAY_PREFIX_LENGTH],
        )

    def hash(self, raw_secret: str) -> str:
        return hashlib.new(self.hashing_algorithm, raw_secret.encode("utf-8")).hexdigest()

    def verify(self, raw_secret: str, hashed_secret: str) -> bool:
        return hmac.compare_digest(self.hash(raw_secret), hashed_secret)

    def is_api_key(self, token: str) -> bool:
        return token.startswith(self.prefix)

    @classmethod
    def from_settings(cls, cfg: APIKeySettings) -> APIKeyHasher:
        return cls(
            prefix=cfg.prefix,
            hashing_algorithm=cfg.hashing_algorithm,
            secret_bytes=cfg.secret_bytes,
        )


# ============================================================================
# FACTORY FUNCTIONS
# ============================================================================


def build_api_key_hasher(settings: AppSettings | None = None) -> APIKeyHasher:
    """Construct an :class:`APIKeyHasher` from application settings."""
    return APIKeyHasher.from_settings((settings or get_settings()).security.api_keys)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["APIKeyHasher", "IssuedSecret", "build_api_key_hasher"]
