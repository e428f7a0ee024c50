"""API credential operations.

The digest of a credential's secret is never rendered; the raw secret is
only ever part of the ``createCredential`` result.
"""

from __future__ import annotations

from typing import Any

from ...auth.permissions import Permission
from ...models.entities import CreatedCredential, Credential
from ...models.inputs import CreateCredentialArguments, CredentialListArguments, IdArguments
from ...utils.errors import Forbidden, ValidationFailed
from ..context import RequestContext
from ..registry import FieldSpec, ObjectType, OperationRegistry, TypeRegistry
from .common import by_attribute, children, own_tenant, page


async def _credential_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    credential = value.credential if isinstance(value, CreatedCredential) else value
    payload = {"id": credential.id, "key_prefix": credential.key_prefix}
    return payload, credential.tenant_id


def register(operations: OperationRegistry, types: TypeRegistry) -> None:
    credential_type = types.register(
        ObjectType.from_model("Credential", Credential, exclude=("key_hash",))
    )
    credential_type.add_field(
        "owner", FieldSpec(by_attribute("identities", "owner_id", "User"), "Identity")
    )
    created_type = types.register(ObjectType("CreatedCredential", scalars=("secret",)))

    async def issued_credential(context: RequestContext, created: CreatedCredential) -> Any:
        return created.credential

    created_type.add_field("credential", FieldSpec(issued_credential, "Credential"))
    types.add_field(
        "Tenant",
        "credentials",
        FieldSpec(
            children("credentials_by_tenant"),
            "Credential",
            permission=Permission.API_KEYS_READ,
            tenant_boundary=own_tenant,
        ),
    )

    @operations.query(
        "credential", IdArguments, returns="Credential", permission=Permission.API_KEYS_READ
    )
    async def credential(context: RequestContext, arguments: IdArguments) -> Any:
        return await context.load_visible(context.loaders.credentials, arguments.id, "Credential")

    @operations.query(
        "credentials",
        CredentialListArguments,
        returns="Credential",
        permission=Permission.API_KEYS_READ,
    )
    async def credentials(context: RequestContext, arguments: CredentialListArguments) -> Any:
        tenant_id = context.scoped_tenant(arguments.tenant_id)
        if tenant_id is None:
            raise ValidationFailed("tenant_id is required", field="tenant_id")
        return await context.services.credentials.find_many(page(context, arguments), tenant_id=tenant_id)

    @operations.mutation(
        "createCredential",
        CreateCredentialArguments,
        returns="CreatedCredential",
        permission=Permission.API_KEYS_CREATE,
        publishes="credential.created",
        event=_credential_event,
    )
    async def create_credential(context: RequestContext, arguments: CreateCredentialArguments) -> Any:
        principal = context.gate.require_authenticated()
        if principal.tenant_id is None:
            raise ValidationFailed("Credentials are issued within a tenant", field="tenant_id")
        for permission in arguments.permissions:
            if not context.gate.has_permission(permission):
                raise Forbidden(f"Cannot delegate a permission you do not hold: {permission}")
        return await context.services.credentials.create(
            principal.identity_id,
            principal.tenant_id,
            arguments.name,
            permissions=arguments.permissions,
            expires_at=arguments.expires_at,
        )

    @operations.mutation(
        "revokeCredential",
        IdArguments,
        returns="Credential",
        publishes="credential.revoked",
        event=_credential_event,
    )
    async def revoke_credential(context: RequestContext, arguments: IdArguments) -> Any:
        principal = context.gate.require_authenticated()
        target = await context.load_visible(context.loaders.credentials, arguments.id, "Credential")
        if target.owner_id != principal.identity_id:
            context.gate.require_permission(Permission.API_KEYS_MANAGE)
        return await context.services.credentials.revoke(target.id, principal.identity_id)


__all__ = ["register"]
