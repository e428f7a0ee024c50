"""Tenant lifecycle and settings."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from ..models.entities import Deletion, Tenant, TenantCounts, TenantSettings, SurveyStatus, new_id
from ..storage.base import Condition, Tables, eq, search
from ..utils.errors import ValidationFailed
from ..utils.pagination import Pagination
from .base import BaseService, service_operation, validation_failure


class TenantService(BaseService[Tenant]):
    table = Tables.TENANTS
    model = Tenant
    label = "Tenant"
    conflict_messages = {("name",): "A tenant with this name already exists"}

    @service_operation
    async def find_many(
        self,
        pagination: Pagination,
        *,
        search_text: str | None = None,
        is_active: bool | None = None,
    ) -> list[Tenant]:
        conditions: list[Condition] = []
        if search_text:
            conditions.append(search(("name",), search_text))
        if is_active is not None:
            conditions.append(eq("is_active", is_active))
        return await self._list(conditions, pagination, order_by="name", descending=False)

    @service_operation
    async def create(
        self,
        name: str,
        *,
        settings: Mapping[str, Any] | None = None,
        is_trial: bool = False,
    ) -> Tenant:
        try:
            tenant = Tenant(
                id=new_id(),
                name=name,
                settings=TenantSettings.model_validate(dict(settings or {})),
                is_trial=is_trial,
            )
        except ValidationError as exc:
            raise validation_failure(exc) from exc
        return await self._insert(tenant)

    @service_operation
    async def update_settings(self, tenant_id: str, changes: Mapping[str, Any]) -> Tenant:
        """Merge ``changes`` over the tenant's current settings."""
        tenant = await self.require(tenant_id)
        merged = {**tenant.settings.model_dump(), **changes}
        try:
            settings = TenantSettings.model_validate(merged)
        except ValidationError as exc:
            raise validation_failure(exc) from exc
        if settings.enable_sso and not settings.sso_provider:
            raise ValidationFailed(
                "sso_provider is required when enable_sso is set", field="sso_provider"
            )
        return await self._update(tenant_id, {"settings": settings.model_dump()})

    @service_operation
    async def delete(self, tenant_id: str) -> Deletion:
        """Delete an empty tenant; tenants with members or surveys are refused."""
        await self.require(tenant_id)
        counts = await self._counts(tenant_id)
        if counts.members or counts.surveys:
            raise ValidationFailed(
                f"Cannot delete a tenant with {counts.members} member(s) "
                f"and {counts.surveys} survey(s)"
            )
        deletion = await self._delete(tenant_id, tenant_id=tenant_id)
        self.loaders.members_by_tenant.clear(tenant_id)
        self.loaders.surveys_by_tenant.clear(tenant_id)
        self.loaders.credentials_by_tenant.clear(tenant_id)
        return deletion

    @service_operation
    async def counts(self, tenant_id: str) -> TenantCounts:
        await self.require(tenant_id)
        return await self._counts(tenant_id)

    async def _counts(self, tenant_id: str) -> TenantCounts:
        scope = eq("tenant_id", tenant_id)
        return TenantCounts(
            tenant_id=tenant_id,
            members=await self.store.count(Tables.IDENTITIES, [scope]),
            surveys=await self.store.count(Tables.SURVEYS, [scope]),
            active_surveys=await self.store.count(
                Tables.SURVEYS, [scope, eq("status", SurveyStatus.ACTIVE)]
            ),
        )


__all__ = ["TenantService"]
