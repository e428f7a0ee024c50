"""Per-request context construction.

Every inbound request gets exactly one :class:`RequestContext`: a fresh
loader set, a service registry bound to those loaders, and an authorization
gate bound to the caller resolved from the ``Authorization`` header.

Key Responsibilities:
    - Resolve the caller from a bearer identity token or an API key
    - Fall back to an anonymous context whenever resolution fails
    - Record best-effort activity (credential usage, identity last seen)

Collaborators:
    - Upstream: :class:`~survey_gateway.gateway.orchestrator.Orchestrator`
    - Downstream: :class:`IdentityVerifier`, credential and identity services

Side Effects:
    - Store writes for credential usage and identity activity; failures are
      logged and never abort the request

Thread Safety:
    - The builder is shared; every context it builds belongs to one request
"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================

from dataclasses import dataclass

import structlog

from ..auth.api_keys import APIKeyHasher
from ..auth.context import Principal
from ..auth.gate import AuthorizationGate
from ..auth.jwt import AuthenticationError, IdentityVerifier
from ..auth.permissions import DEFAULT_PERMISSION_MAP, Permission, RolePermissionMap
from ..config.settings import AppSettings, get_settings
from ..events.bus import NotificationBus
from ..loaders.entity import EntityLoader
from ..loaders.registry import RequestLoaders
from ..models.entities import Entity, Identity
from ..services.registry import ServiceRegistry
from ..storage.base import BackingStore
from ..utils.errors import NotFound

logger = structlog.get_logger(__name__)

BEARER = "bearer"


# ==============================================================================
# CONTEXT
# ==============================================================================


@dataclass
class RequestContext:
    """Everything a resolver needs for one request."""

    gate: AuthorizationGate
    loaders: RequestLoaders
    services: ServiceRegistry
    bus: NotificationBus
    settings: AppSettings
    correlation_id: str | None = None
    client_ip: str | None = None

    @property
    def principal(self) -> Principal | None:
        return self.gate.principal

    @property
    def tenant_id(self) -> str | None:
        return self.principal.tenant_id if self.principal else None

    def scoped_tenant(self, requested: str | None) -> str | None:
        """Return the tenant a tenant-scoped operation acts on.

        ``requested`` defaults to the caller's tenant; another tenant requires
        the cross-tenant permission.
        """
        tenant_id = requested or self.tenant_id
        if tenant_id is None:
            # Callers without a tenant act across tenants.
            self.gate.require_permission(Permission.CROSS_TENANT)
            return None
        self.gate.require_tenant_scope(tenant_id)
        return tenant_id

    async def load_visible(
        self, loader: EntityLoader, entity_id: str, label: str, *, tenant_of: str | None = None
    ) -> Entity:
        """Load an entity the caller may see.

        Entities of another tenant are reported exactly like missing ones.
        ``tenant_of`` names the tenant when the entity has no ``tenant_id``.
        """
        entity = await loader.load(entity_id)
        if entity is None:
            raise NotFound(f"{label} not found")
        owner = tenant_of if tenant_of is not None else getattr(entity, "tenant_id", None)
        if not self.gate.can_access_tenant(owner):
            raise NotFound(f"{label} not found")
        return entity


# ==============================================================================
# BUILDER
# ==============================================================================


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != BEARER or not token.strip():
        return None
    return token.strip()


class ContextBuilder:
    """Builds a fresh :class:`RequestContext` for every request."""

    def __init__(
        self,
        store: BackingStore,
        *,
        verifier: IdentityVerifier,
        bus: NotificationBus,
        settings: AppSettings | None = None,
        permission_map: RolePermissionMap | None = None,
        hasher: APIKeyHasher | None = None,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.bus = bus
        self.settings = settings or get_settings()
        if permission_map is None:
            grants = self.settings.security.role_grants
            permission_map = RolePermissionMap.build(extra=grants) if grants else DEFAULT_PERMISSION_MAP
        self.permission_map = permission_map
        self.hasher = hasher or APIKeyHasher.from_settings(self.settings.security.api_keys)

    async def build(
        self,
        authorization: str | None,
        *,
        client_ip: str | None = None,
        correlation_id: str | None = None,
    ) -> RequestContext:
        loaders = RequestLoaders(self.store, self.settings.loaders)
        services = ServiceRegistry(self.store, loaders, self.settings, hasher=self.hasher)
        principal = await self._resolve(bearer_token(authorization), services)
        if principal is not None:
            await self._touch(services, principal)
        return RequestContext(
            gate=AuthorizationGate(principal, self.permission_map),
            loaders=loaders,
            services=services,
            bus=self.bus,
            settings=self.settings,
            correlation_id=correlation_id,
            client_ip=client_ip,
        )

    async def _resolve(self, token: str | None, services: ServiceRegistry) -> Principal | None:
        if token is None:
            return None
        if self.settings.security.api_keys.enabled and self.hasher.is_api_key(token):
            return await self._from_api_key(token, services)
        try:
            verified = await self.verifier.verify(token)
        except AuthenticationError as exc:
            logger.info("auth.token_rejected", reason=str(exc))
            return None
        identity = await self._active_identity(services, verified.subject)
        return Principal.from_identity(identity) if identity else None

    async def _from_api_key(self, token: str, services: ServiceRegistry) -> Principal | None:
        result = await services.credentials.authenticate(token)
        if not result.ok:
            logger.info("auth.api_key_rejected", reason=result.error.message)
            return None
        credential = result.value
        owner = await self._active_identity(services, credential.owner_id)
        if owner is None:
            return None
        usage = await services.credentials.record_usage(credential.id)
        if not usage.ok:
            logger.warning(
                "auth.api_key_usage_failed", credential_id=credential.id, error=usage.error.message
            )
        return Principal.from_credential(credential, owner)

    async def _active_identity(self, services: ServiceRegistry, identity_id: str) -> Identity | None:
        identity = await services.loaders.identities.load(identity_id)
        if identity is None or not identity.is_active:
            logger.info("auth.identity_unavailable", identity_id=identity_id)
            return None
        return identity

    async def _touch(self, services: ServiceRegistry, principal: Principal) -> None:
        result = await services.identities.touch_last_seen(principal.identity_id)
        if not result.ok:
            logger.warning(
                "auth.touch_failed",
                identity_id=principal.identity_id,
                error=result.error.message,
            )


# ==============================================================================
# EXPORTS
# ==============================================================================

__all__ = ["ContextBuilder", "RequestContext", "bearer_token"]
