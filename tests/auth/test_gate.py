import pytest

from survey_gateway.auth.context import Principal
from survey_gateway.auth.gate import AuthorizationGate
from survey_gateway.auth.permissions import (
    ALL_PERMISSIONS,
    DEFAULT_PERMISSION_MAP,
    Permission,
    RolePermissionMap,
)
from survey_gateway.models.entities import Credential, Identity, Role
from survey_gateway.utils.errors import Forbidden, Unauthenticated


def gate_for(role: Role, tenant_id: str | None = "acme", **kwargs) -> AuthorizationGate:
    return AuthorizationGate(Principal(identity_id="u1", role=role, tenant_id=tenant_id, **kwargs))


def test_roles_are_cumulative():
    grants = DEFAULT_PERMISSION_MAP.grants
    assert grants[Role.VIEWER] < grants[Role.USER] < grants[Role.ANALYST]
    assert grants[Role.ANALYST] < grants[Role.TENANT_ADMIN] < grants[Role.SYSTEM_ADMIN]
    assert grants[Role.SYSTEM_ADMIN] == ALL_PERMISSIONS


def test_permission_checks_follow_the_role():
    viewer = gate_for(Role.VIEWER)
    assert viewer.has_permission(Permission.SURVEYS_READ)
    assert not viewer.has_permission(Permission.SURVEYS_CREATE)

    analyst = gate_for(Role.ANALYST)
    assert analyst.has_permission(Permission.ANALYTICS_WRITE)
    assert not analyst.has_permission(Permission.SURVEYS_PUBLISH)

    admin = gate_for(Role.TENANT_ADMIN)
    assert admin.has_permission(Permission.API_KEYS_MANAGE)
    assert not admin.has_permission(Permission.CROSS_TENANT)


def test_explicit_grants_extend_the_role():
    gate = gate_for(Role.VIEWER, grants=frozenset({Permission.SESSIONS_READ}))
    assert gate.has_permission(Permission.SESSIONS_READ)
    assert not gate.has_permission(Permission.SESSIONS_MANAGE)


def test_credential_scope_caps_even_system_admins():
    owner = Identity(id="root", email="root@example.com", role=Role.SYSTEM_ADMIN)
    credential = Credential(
        id="c1",
        owner_id="root",
        tenant_id="acme",
        name="reporting",
        key_prefix="sgk_abc",
        key_hash="x",
        permissions=(Permission.SURVEYS_READ,),
    )
    gate = AuthorizationGate(Principal.from_credential(credential, owner))

    assert gate.principal.subject == "c1"
    assert gate.principal.tenant_id == "acme"
    assert gate.has_permission(Permission.SURVEYS_READ)
    assert not gate.has_permission(Permission.SURVEYS_DELETE)
    assert not gate.can_access_tenant("globex")


def test_unscoped_credential_carries_owner_permissions():
    owner = Identity(id="u1", email="u1@example.com", role=Role.USER, tenant_id="acme")
    credential = Credential(
        id="c1", owner_id="u1", tenant_id="acme", name="all", key_prefix="sgk_abc", key_hash="x"
    )
    principal = Principal.from_credential(credential, owner)
    assert principal.credential_scope is None
    assert AuthorizationGate(principal).has_permission(Permission.SURVEYS_CREATE)


def test_role_hierarchy():
    gate = gate_for(Role.ANALYST)
    assert gate.has_role(Role.USER)
    assert gate.has_role(Role.ANALYST)
    assert not gate.has_role(Role.TENANT_ADMIN)
    assert not AuthorizationGate(None).has_role(Role.VIEWER)


def test_tenant_access():
    member = gate_for(Role.TENANT_ADMIN)
    assert member.can_access_tenant("acme")
    assert not member.can_access_tenant("globex")
    assert not member.can_access_tenant(None)

    staff = gate_for(Role.SYSTEM_ADMIN, tenant_id=None)
    assert staff.can_access_tenant("globex")

    granted = gate_for(Role.VIEWER, grants=frozenset({Permission.CROSS_TENANT}))
    assert granted.can_access_tenant("globex")


def test_anonymous_callers_hold_nothing():
    gate = AuthorizationGate(None)
    assert not gate.is_authenticated
    assert not gate.has_permission(Permission.SURVEYS_READ)
    assert not gate.can_access_tenant("acme")
    with pytest.raises(Unauthenticated):
        gate.require_permission(Permission.SURVEYS_READ)
    with pytest.raises(Unauthenticated):
        gate.require_tenant_scope("acme")


def test_require_helpers_raise_forbidden():
    gate = gate_for(Role.VIEWER)
    assert gate.require_permission(Permission.SURVEYS_READ).identity_id == "u1"

    with pytest.raises(Forbidden) as missing:
        gate.require_permission(Permission.SURVEYS_DELETE)
    assert missing.value.message == "Missing required permission: surveys:delete"

    with pytest.raises(Forbidden) as low:
        gate.require_role(Role.TENANT_ADMIN)
    assert low.value.message == "Requires role TENANT_ADMIN or higher"

    with pytest.raises(Forbidden):
        gate.require_tenant_scope("globex")


def test_extra_grants_are_inherited_upwards():
    permission_map = RolePermissionMap.build(extra={"user": [Permission.SESSIONS_READ]})
    assert Permission.SESSIONS_READ not in permission_map.permissions_for(Role.VIEWER)
    assert Permission.SESSIONS_READ in permission_map.permissions_for(Role.USER)
    assert Permission.SESSIONS_READ in permission_map.permissions_for(Role.ANALYST)

    gate = AuthorizationGate(
        Principal(identity_id="u1", role=Role.USER, tenant_id="acme"), permission_map
    )
    assert gate.has_permission(Permission.SESSIONS_READ)


def test_extra_grants_are_validated():
    with pytest.raises(ValueError, match="Unknown role"):
        RolePermissionMap.build(extra={"owner": [Permission.SURVEYS_READ]})
    with pytest.raises(ValueError, match="Unknown permissions"):
        RolePermissionMap.build(extra={"viewer": ["surveys:teleport"]})
