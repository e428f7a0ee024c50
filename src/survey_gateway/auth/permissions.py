"""Permission catalogue and the role to permission map.

Roles are cumulative: each tier holds every permission of the tiers below it
plus its own increment. ``SYSTEM_ADMIN`` holds the entire catalogue.

The map is built once at process start (optionally extended from settings)
and injected into every :class:`~survey_gateway.auth.gate.AuthorizationGate`.
"""

from __future__ import annotations

# ============================================================================
# IMPORTS
# ============================================================================

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from ..models.entities import Role

# ============================================================================
# PERMISSIONS
# ============================================================================


class Permission:
    """Permission strings understood by the gate."""

    USERS_READ = "users:read"
    USERS_READ_ALL = "users:read_all"
    USERS_MANAGE = "users:manage"

    TENANTS_READ = "tenants:read"
    TENANTS_READ_ALL = "tenants:read_all"
    TENANTS_CREATE = "tenants:create"
    TENANTS_MANAGE = "tenants:manage"
    TENANTS_DELETE = "tenants:delete"

    SURVEYS_READ = "surveys:read"
    SURVEYS_CREATE = "surveys:create"
    SURVEYS_UPDATE = "surveys:update"
    SURVEYS_DELETE = "surveys:delete"
    SURVEYS_PUBLISH = "surveys:publish"
    SURVEYS_MANAGE = "surveys:manage"
    SURVEYS_ARCHIVE = "surveys:archive"
    SURVEYS_EDIT_PUBLISHED = "surveys:edit_published"

    RESPONSES_READ = "responses:read"
    RESPONSES_CREATE = "responses:create"
    RESPONSES_UPDATE = "responses:update"
    RESPONSES_DELETE = "responses:delete"

    ANALYTICS_READ = "analytics:read"
    ANALYTICS_WRITE = "analytics:write"

    API_KEYS_READ = "api_keys:read"
    API_KEYS_CREATE = "api_keys:create"
    API_KEYS_MANAGE = "api_keys:manage"

    SESSIONS_READ = "sessions:read"
    SESSIONS_MANAGE = "sessions:manage"

    SYSTEM_READ = "system:read"

    CROSS_TENANT = TENANTS_READ_ALL


ALL_PERMISSIONS: frozenset[str] = frozenset(
    value
    for name, value in vars(Permission).items()
    if name.isupper() and isinstance(value, str)
)

ROLE_ORDER: tuple[Role, ...] = (
    Role.VIEWER,
    Role.USER,
    Role.ANALYST,
    Role.TENANT_ADMIN,
    Role.SYSTEM_ADMIN,
)

ROLE_INCREMENTS: Mapping[Role, frozenset[str]] = {
    Role.VIEWER: frozenset(
        {
            Permission.SURVEYS_READ,
            Permission.RESPONSES_READ,
            Permission.ANALYTICS_READ,
            Permission.TENANTS_READ,
        }
    ),
    Role.USER: frozenset(
        {
            Permission.SURVEYS_CREATE,
            Permission.SURVEYS_UPDATE,
            Permission.RESPONSES_CREATE,
            Permission.RESPONSES_UPDATE,
        }
    ),
    Role.ANALYST: frozenset({Permission.ANALYTICS_WRITE, Permission.SESSIONS_READ}),
    Role.TENANT_ADMIN: frozenset(
        {
            Permission.USERS_READ,
            Permission.USERS_MANAGE,
            Permission.SURVEYS_MANAGE,
            Permission.SURVEYS_PUBLISH,
            Permission.SURVEYS_ARCHIVE,
            Permission.SURVEYS_DELETE,
            Permission.SURVEYS_EDIT_PUBLISHED,
            Permission.RESPONSES_DELETE,
            Permission.TENANTS_MANAGE,
            Permission.API_KEYS_READ,
            Permission.API_KEYS_CREATE,
            Permission.API_KEYS_MANAGE,
            Permission.SESSIONS_MANAGE,
        }
    ),
    Role.SYSTEM_ADMIN: ALL_PERMISSIONS,
}


# ============================================================================
# ROLE PERMISSION MAP
# ============================================================================


@dataclass(frozen=True)
class RolePermissionMap:
    """Immutable cumulative permission sets per role."""

    grants: Mapping[Role, frozenset[str]]

    @classmethod
    def build(
        cls,
        increments: Mapping[Role, Iterable[str]] = ROLE_INCREMENTS,
        extra: Mapping[str, Iterable[str]] | None = None,
    ) -> RolePermissionMap:
        """Accumulate increments from the lowest tier upwards.

        Args:
            increments: Permissions introduced at each tier.
            extra: Additional grants keyed by role name; a grant added to a
                tier is inherited by every tier above it.

        Raises:
            ValueError: When ``extra`` names an unknown role or permission.
        """
        additions: dict[Role, set[str]] = {role: set(increments.get(role, ())) for role in ROLE_ORDER}
        for role_name, permissions in (extra or {}).items():
            try:
                role = Role(str(role_name).upper())
            except ValueError:
                raise ValueError(f"Unknown role '{role_name}' in role grants") from None
            unknown = set(permissions) - ALL_PERMISSIONS
            if unknown:
                raise ValueError(f"Unknown permissions in role grants: {sorted(unknown)}")
            additions[role].update(permissions)

        cumulative: dict[Role, frozenset[str]] = {}
        running: set[str] = set()
        for role in ROLE_ORDER:
            running |= additions[role]
            cumulative[role] = frozenset(running)
        cumulative[Role.SYSTEM_ADMIN] = ALL_PERMISSIONS | cumulative[Role.SYSTEM_ADMIN]
        return cls(grants=MappingProxyType(cumulative))

    def permissions_for(self, role: Role) -> frozenset[str]:
        return self.grants.get(role, frozenset())

    @staticmethod
    def ordinal(role: Role) -> int:
        return ROLE_ORDER.index(role)


DEFAULT_PERMISSION_MAP = RolePermissionMap.build()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ALL_PERMISSIONS",
    "DEFAULT_PERMISSION_MAP",
    "Permission",
    "ROLE_INCREMENTS",
    "ROLE_ORDER",
    "RolePermissionMap",
]
