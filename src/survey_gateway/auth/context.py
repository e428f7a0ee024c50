"""Resolved caller identity shared by the gate, services and rate limiting.

A :class:`Principal` is produced once per request by the context builder,
either from a verified identity token or from an API credential.
"""

from __future__ import annotations

# ============================================================================
# IMPORTS
# ============================================================================

from dataclasses import dataclass, field

from ..models.entities import Credential, Identity, Role

# ============================================================================
# DATA MODELS
# ============================================================================


@dataclass(frozen=True)
class Principal:
    """Authenticated caller for the current request.

    Attributes:
        identity_id: Identity the request acts as (the owner for API keys).
        email: Identity email, used for logging only.
        role: Role tier of the identity.
        tenant_id: Tenant the identity belongs to, ``None`` for platform staff.
        grants: Explicit permissions granted beyond the role.
        auth_type: ``"token"`` or ``"api_key"``.
        credential_id: Credential used when ``auth_type`` is ``"api_key"``.
        credential_scope: Permission ceiling of that credential; ``None``
            means the credential carries the owner's full permissions.
    """

    identity_id: str
    role: Role
    tenant_id: str | None = None
    email: str | None = None
    grants: frozenset[str] = field(default_factory=frozenset)
    auth_type: str = "token"
    credential_id: str | None = None
    credential_scope: frozenset[str] | None = None

    @property
    def subject(self) -> str:
        """Stable identifier used for logging and rate limiting."""
        return self.credential_id or self.identity_id

    @classmethod
    def from_identity(cls, identity: Identity) -> Principal:
        return cls(
            identity_id=identity.id,
            role=identity.role,
            tenant_id=identity.tenant_id,
            email=identity.email,
            grants=frozenset(identity.permissions),
        )

    @classmethod
    def from_credential(cls, credential: Credential, owner: Identity) -> Principal:
        return cls(
            identity_id=owner.id,
            role=owner.role,
            tenant_id=credential.tenant_id,
            email=owner.email,
            grants=frozenset(owner.permissions),
            auth_type="api_key",
            credential_id=credential.id,
            credential_scope=frozenset(credential.permissions) or None,
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Principal"]
