"""Identity operations and the ``Identity`` object type."""

from __future__ import annotations

from typing import Any

from ...auth.permissions import Permission
from ...models.entities import Identity
from ...models.inputs import IdArguments, IdentityListArguments, NoArguments, UpdateIdentityRoleArguments
from ...utils.errors import NotFound, ValidationFailed
from ..context import RequestContext
from ..registry import FieldSpec, ObjectType, OperationRegistry, TypeRegistry
from .common import by_attribute, children, own_tenant, page, row_tenant


async def _identity_event(context: RequestContext, value: Identity) -> tuple[dict[str, Any], str | None]:
    return {"id": value.id, "role": value.role.value}, value.tenant_id


def register(operations: OperationRegistry, types: TypeRegistry) -> None:
    identity_type = types.register(ObjectType.from_model("Identity", Identity))
    identity_type.add_field(
        "tenant",
        FieldSpec(by_attribute("tenants", "tenant_id", "Tenant"), "Tenant", tenant_boundary=row_tenant),
    )
    types.add_field(
        "Tenant",
        "members",
        FieldSpec(
            children("members_by_tenant"),
            "Identity",
            permission=Permission.USERS_READ,
            tenant_boundary=own_tenant,
        ),
    )

    @operations.query("me", NoArguments, returns="Identity")
    async def me(context: RequestContext, arguments: NoArguments) -> Any:
        principal = context.gate.require_authenticated()
        identity = await context.loaders.identities.load(principal.identity_id)
        if identity is None:
            raise NotFound("User not found")
        return identity

    @operations.query(
        "identity", IdArguments, returns="Identity", permission=Permission.USERS_READ
    )
    async def identity(context: RequestContext, arguments: IdArguments) -> Any:
        return await context.load_visible(context.loaders.identities, arguments.id, "User")

    @operations.query(
        "identities", IdentityListArguments, returns="Identity", permission=Permission.USERS_READ
    )
    async def identities(context: RequestContext, arguments: IdentityListArguments) -> Any:
        return await context.services.identities.find_many(
            page(context, arguments),
            tenant_id=context.scoped_tenant(arguments.tenant_id),
            role=arguments.role,
            search_text=arguments.search,
        )

    @operations.mutation(
        "updateIdentityRole",
        UpdateIdentityRoleArguments,
        returns="Identity",
        permission=Permission.USERS_MANAGE,
        publishes="identity.updated",
        event=_identity_event,
    )
    async def update_identity_role(
        context: RequestContext, arguments: UpdateIdentityRoleArguments
    ) -> Any:
        principal = context.gate.require_authenticated()
        target = await context.load_visible(context.loaders.identities, arguments.id, "User")
        if target.id == principal.identity_id:
            raise ValidationFailed("You cannot change your own role", field="role")
        # Callers may only manage identities at or below their own tier.
        context.gate.require_role(target.role)
        context.gate.require_role(arguments.role)
        return await context.services.identities.update_role(target.id, arguments.role)


__all__ = ["register"]
