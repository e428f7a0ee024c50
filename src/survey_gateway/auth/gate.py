"""Authorization gate bound to one request's principal.

Every check is a pure function of the principal and the requested scope: no
I/O and no side effects. Failing checks raise taxonomy errors, which the
orchestrator converts into operation errors.
"""

from __future__ import annotations

# ============================================================================
# IMPORTS
# ============================================================================

from ..models.entities import Role
from ..utils.errors import Forbidden, Unauthenticated
from .context import Principal
from .permissions import DEFAULT_PERMISSION_MAP, Permission, RolePermissionMap

# ============================================================================
# GATE IMPLEMENTATION
# ============================================================================


class AuthorizationGate:
    """Role hierarchy and explicit permission evaluator.

    Attributes:
        principal: Resolved caller, ``None`` for anonymous requests.
        permission_map: Injected immutable role to permission map.
    """

    def __init__(
        self,
        principal: Principal | None,
        permission_map: RolePermissionMap = DEFAULT_PERMISSION_MAP,
    ) -> None:
        self.principal = principal
        self.permission_map = permission_map

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    def has_permission(self, permission: str) -> bool:
        """Return ``True`` when the principal holds ``permission``.

        API credentials are additionally capped by their permission subset.
        """
        principal = self.principal
        if principal is None:
            return False
        if principal.credential_scope is not None and permission not in principal.credential_scope:
            return False
        if principal.role is Role.SYSTEM_ADMIN:
            return True
        return (
            permission in self.permission_map.permissions_for(principal.role)
            or permission in principal.grants
        )

    def has_role(self, role: Role) -> bool:
        if self.principal is None:
            return False
        ordinal = self.permission_map.ordinal
        return ordinal(self.principal.role) >= ordinal(role)

    def can_access_tenant(self, tenant_id: str | None) -> bool:
        """Return ``True`` for same-tenant callers or holders of the cross-tenant permission."""
        principal = self.principal
        if principal is None:
            return False
        if tenant_id is not None and principal.tenant_id == tenant_id:
            return True
        return self.has_permission(Permission.CROSS_TENANT)

    def require_authenticated(self) -> Principal:
        if self.principal is None:
            raise Unauthenticated()
        return self.principal

    def require_permission(self, permission: str) -> Principal:
        principal = self.require_authenticated()
        if not self.has_permission(permission):
            raise Forbidden(f"Missing required permission: {permission}")
        return principal

    def require_role(self, role: Role) -> Principal:
        principal = self.require_authenticated()
        if not self.has_role(role):
            raise Forbidden(f"Requires role {role.value} or higher")
        return principal

    def require_tenant_scope(self, tenant_id: str | None) -> Principal:
        principal = self.require_authenticated()
        if not self.can_access_tenant(tenant_id):
            raise Forbidden("Access to this tenant is not permitted")
        return principal


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["AuthorizationGate"]
