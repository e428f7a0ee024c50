"""Authentication and authorization primitives for the gateway.

This package exposes the permission catalogue, the per-request authorization
gate, API key hashing, identity token verification and rate limiting.
"""

from __future__ import annotations

# ============================================================================
# IMPORTS
# ============================================================================

from .api_keys import APIKeyHasher
from .context import Principal
from .gate import AuthorizationGate
from .jwt import AuthenticationError, IdentityVerifier, JWTIdentityVerifier, VerifiedToken
from .permissions import ALL_PERMISSIONS, DEFAULT_PERMISSION_MAP, Permission, RolePermissionMap
from .rate_limit import RateLimiter

# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ALL_PERMISSIONS",
    "APIKeyHasher",
    "AuthenticationError",
    "AuthorizationGate",
    "DEFAULT_PERMISSION_MAP",
    "IdentityVerifier",
    "JWTIdentityVerifier",
    "Permission",
    "Principal",
    "RateLimiter",
    "RolePermissionMap",
    "VerifiedToken",
]
