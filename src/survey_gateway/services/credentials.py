"""API credentials: issuance, revocation and authentication.

Key Responsibilities:
    - Issue credentials whose raw secret is returned exactly once
    - Persist only the secret digest and a short display prefix
    - Authenticate raw secrets, rejecting revoked, inactive and expired keys
    - Track usage counters

Collaborators:
    - Upstream: credential resolvers and the request context builder
    - Downstream: :class:`~survey_gateway.auth.api_keys.APIKeyHasher`

Side Effects:
    - Store writes; ``credential.issued`` and ``credential.revoked`` log events
      (never the secret itself)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

import structlog

from ..auth.api_keys import APIKeyHasher
from ..auth.permissions import ALL_PERMISSIONS
from ..config.settings import AppSettings
from ..loaders.registry import RequestLoaders
from ..models.entities import CreatedCredential, Credential, new_id, utcnow
from ..storage.base import BackingStore, Tables, eq
from ..utils.errors import NotFound, Unauthenticated, ValidationFailed
from ..utils.pagination import Pagination
from .base import BaseService, service_operation

logger = structlog.get_logger(__name__)


class CredentialService(BaseService[Credential]):
    table = Tables.CREDENTIALS
    model = Credential
    label = "Credential"

    def __init__(
        self,
        store: BackingStore,
        loaders: RequestLoaders,
        settings: AppSettings | None = None,
        *,
        hasher: APIKeyHasher | None = None,
    ) -> None:
        super().__init__(store, loaders, settings)
        self.hasher = hasher or APIKeyHasher.from_settings(self.settings.security.api_keys)

    @service_operation
    async def find_many(self, pagination: Pagination, *, tenant_id: str) -> list[Credential]:
        return await self._list([eq("tenant_id", tenant_id)], pagination)

    @service_operation
    async def create(
        self,
        owner_id: str,
        tenant_id: str,
        name: str,
        *,
        permissions: Iterable[str] = (),
        expires_at: datetime | None = None,
    ) -> CreatedCredential:
        scope = tuple(dict.fromkeys(permissions))
        unknown = sorted(set(scope) - ALL_PERMISSIONS)
        if unknown:
            raise ValidationFailed(f"Unknown permission: {unknown[0]}", field="permissions")
        if expires_at is not None and expires_at <= utcnow():
            raise ValidationFailed("Expiry must be in the future", field="expires_at")
        issued = self.hasher.generate()
        credential = await self._insert(
            Credential(
                id=new_id(),
                owner_id=owner_id,
                tenant_id=tenant_id,
                name=name,
                key_prefix=issued.display_prefix,
                key_hash=issued.hashed_secret,
                permissions=scope,
                expires_at=expires_at,
            )
        )
        self.loaders.credentials_by_tenant.clear(tenant_id)
        logger.info(
            "credential.issued",
            credential_id=credential.id,
            tenant_id=tenant_id,
            key_prefix=credential.key_prefix,
        )
        return CreatedCredential(credential=credential, secret=issued.raw_secret)

    @service_operation
    async def revoke(self, credential_id: str, revoked_by: str | None = None) -> Credential:
        """Revoke a credential. Revoking twice returns the first revocation unchanged."""
        credential = await self.require(credential_id)
        if credential.revoked:
            return credential
        updated = await self._update(
            credential_id,
            {"revoked": True, "is_active": False, "revoked_at": utcnow(), "revoked_by": revoked_by},
        )
        self.loaders.credentials_by_tenant.clear(updated.tenant_id)
        logger.info("credential.revoked", credential_id=credential_id, revoked_by=revoked_by)
        return updated

    @service_operation
    async def authenticate(self, raw_secret: str) -> Credential:
        rows = await self.store.query(
            self.table, [eq("key_hash", self.hasher.hash(raw_secret))], limit=1
        )
        if not rows or not self.hasher.verify(raw_secret, rows[0]["key_hash"]):
            raise Unauthenticated("Invalid API key")
        credential = self.model.model_validate(rows[0])
        if credential.revoked or not credential.is_active:
            raise Unauthenticated("API key has been revoked")
        if credential.is_expired():
            raise Unauthenticated("API key has expired")
        self.loader.prime(credential.id, credential)
        return credential

    @service_operation
    async def record_usage(self, credential_id: str) -> Credential:
        row = await self.store.increment(
            self.table, credential_id, "usage_count", changes={"last_used_at": utcnow()}
        )
        if row is None:
            raise NotFound("Credential not found")
        credential = self.model.model_validate(row)
        self.loader.prime(credential_id, credential)
        return credential


__all__ = ["CredentialService"]
