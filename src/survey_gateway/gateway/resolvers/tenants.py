"""Tenant operations and the ``Tenant`` object type."""

from __future__ import annotations

from typing import Any

from ...auth.permissions import Permission
from ...models.entities import Deletion, Tenant, TenantCounts
from ...models.inputs import (
    CreateTenantArguments,
    IdArguments,
    TenantArguments,
    TenantListArguments,
    UpdateTenantSettingsArguments,
)
from ...utils.errors import ValidationFailed
from ..context import RequestContext
from ..registry import FieldSpec, ObjectType, OperationRegistry, TypeRegistry
from .common import page


def _tenant_id(context: RequestContext, requested: str | None) -> str:
    tenant_id = requested or context.tenant_id
    if tenant_id is None:
        raise ValidationFailed("id is required", field="id")
    context.gate.require_tenant_scope(tenant_id)
    return tenant_id


async def _tenant_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    return {"id": value.id}, value.id


def register(operations: OperationRegistry, types: TypeRegistry) -> None:
    tenant_type = types.register(ObjectType.from_model("Tenant", Tenant))
    types.register(ObjectType.from_model("TenantCounts", TenantCounts))
    types.register(ObjectType.from_model("Deletion", Deletion))

    async def counts(context: RequestContext, tenant: Tenant) -> Any:
        return await context.services.tenants.counts(tenant.id)

    tenant_type.add_field("counts", FieldSpec(counts, "TenantCounts"))

    @operations.query("tenant", TenantArguments, returns="Tenant")
    async def tenant(context: RequestContext, arguments: TenantArguments) -> Any:
        return await context.services.tenants.get(_tenant_id(context, arguments.id))

    @operations.query(
        "tenants", TenantListArguments, returns="Tenant", permission=Permission.TENANTS_READ_ALL
    )
    async def tenants(context: RequestContext, arguments: TenantListArguments) -> Any:
        return await context.services.tenants.find_many(
            page(context, arguments), search_text=arguments.search, is_active=arguments.is_active
        )

    @operations.mutation(
        "createTenant",
        CreateTenantArguments,
        returns="Tenant",
        permission=Permission.TENANTS_CREATE,
        publishes="tenant.created",
        event=_tenant_event,
    )
    async def create_tenant(context: RequestContext, arguments: CreateTenantArguments) -> Any:
        settings = arguments.settings.changes() if arguments.settings else None
        return await context.services.tenants.create(
            arguments.name, settings=settings, is_trial=arguments.is_trial
        )

    @operations.mutation(
        "updateTenantSettings",
        UpdateTenantSettingsArguments,
        returns="Tenant",
        permission=Permission.TENANTS_MANAGE,
        publishes="tenant.updated",
        event=_tenant_event,
    )
    async def update_tenant_settings(
        context: RequestContext, arguments: UpdateTenantSettingsArguments
    ) -> Any:
        return await context.services.tenants.update_settings(
            _tenant_id(context, arguments.id), arguments.settings.changes()
        )

    @operations.mutation(
        "deleteTenant",
        IdArguments,
        returns="Deletion",
        permission=Permission.TENANTS_DELETE,
        publishes="tenant.deleted",
        event=_tenant_event,
    )
    async def delete_tenant(context: RequestContext, arguments: IdArguments) -> Any:
        return await context.services.tenants.delete(_tenant_id(context, arguments.id))


__all__ = ["register"]
