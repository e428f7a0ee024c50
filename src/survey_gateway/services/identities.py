"""Identity lookups, role assignment and activity tracking."""

from __future__ import annotations

from collections.abc import Iterable

from ..models.entities import Identity, Role, new_id, utcnow
from ..storage.base import Condition, Tables, eq, search
from ..utils.pagination import Pagination
from .base import BaseService, service_operation


class IdentityService(BaseService[Identity]):
    table = Tables.IDENTITIES
    model = Identity
    label = "User"
    conflict_messages = {("email",): "A user with this email already exists"}

    @service_operation
    async def find_many(
        self,
        pagination: Pagination,
        *,
        tenant_id: str | None = None,
        role: Role | None = None,
        search_text: str | None = None,
    ) -> list[Identity]:
        conditions: list[Condition] = []
        if tenant_id is not None:
            conditions.append(eq("tenant_id", tenant_id))
        if role is not None:
            conditions.append(eq("role", role))
        if search_text:
            conditions.append(search(("email", "display_name"), search_text))
        return await self._list(conditions, pagination, order_by="email", descending=False)

    @service_operation
    async def create(
        self,
        email: str,
        *,
        tenant_id: str | None = None,
        role: Role = Role.USER,
        display_name: str | None = None,
        permissions: Iterable[str] = (),
    ) -> Identity:
        identity = await self._insert(
            Identity(
                id=new_id(),
                email=email.strip().lower(),
                display_name=display_name,
                role=role,
                tenant_id=tenant_id,
                permissions=tuple(permissions),
            )
        )
        if tenant_id is not None:
            self.loaders.members_by_tenant.clear(tenant_id)
        return identity

    @service_operation
    async def update_role(self, identity_id: str, role: Role) -> Identity:
        identity = await self.require(identity_id)
        if identity.role is role:
            return identity
        updated = await self._update(identity_id, {"role": role})
        if updated.tenant_id is not None:
            self.loaders.members_by_tenant.clear(updated.tenant_id)
        return updated

    @service_operation
    async def touch_last_seen(self, identity_id: str) -> Identity:
        identity = await self.require(identity_id)
        # Activity is not an edit: updated_at keeps its value.
        return await self._update(
            identity_id, {"last_seen_at": utcnow(), "updated_at": identity.updated_at}
        )


__all__ = ["IdentityService"]
