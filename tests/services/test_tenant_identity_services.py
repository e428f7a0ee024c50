import pytest

from survey_gateway.models.entities import Role
from survey_gateway.storage.base import StoreError, Tables
from survey_gateway.utils.errors import Conflict, Internal, NotFound, ValidationFailed
from survey_gateway.utils.pagination import Pagination
from survey_gateway.utils.result import Err, Ok


@pytest.mark.anyio("asyncio")
async def test_get_returns_ok_or_not_found(services, world):
    registry = services()
    found = await registry.tenants.get("acme")
    assert isinstance(found, Ok)
    assert found.value.name == "Acme"

    missing = await registry.tenants.get("nope")
    assert isinstance(missing, Err)
    assert missing.error == NotFound("Tenant not found")


@pytest.mark.anyio("asyncio")
async def test_create_tenant_and_duplicate_name(services, world):
    registry = services()
    created = (await registry.tenants.create("Initech", settings={"max_surveys_per_user": 3})).unwrap()
    assert created.settings.max_surveys_per_user == 3
    assert created.settings.enable_audit_logs is True
    assert (await registry.tenants.get(created.id)).unwrap() is created

    duplicate = await registry.tenants.create("Acme")
    assert duplicate.error == Conflict("A tenant with this name already exists", field="name")


@pytest.mark.anyio("asyncio")
async def test_find_many_filters_and_pages(services, world):
    registry = services()
    everything = (await registry.tenants.find_many(Pagination(limit=10))).unwrap()
    assert [tenant.name for tenant in everything] == ["Acme", "Globex"]

    searched = (await registry.tenants.find_many(Pagination(limit=10), search_text="glob")).unwrap()
    assert [tenant.id for tenant in searched] == ["globex"]

    second = (await registry.tenants.find_many(Pagination(limit=1, offset=1))).unwrap()
    assert [tenant.id for tenant in second] == ["globex"]


@pytest.mark.anyio("asyncio")
async def test_update_settings_merges_and_validates(services, world):
    registry = services()
    updated = (await registry.tenants.update_settings("acme", {"enable_voice_recording": True})).unwrap()
    assert updated.settings.enable_voice_recording is True
    assert updated.settings.allow_anonymous_responses is True

    refused = await registry.tenants.update_settings("acme", {"enable_sso": True})
    assert refused.error.field == "sso_provider"

    invalid = await registry.tenants.update_settings("acme", {"max_surveys_per_user": "many"})
    assert isinstance(invalid.error, ValidationFailed)
    assert invalid.error.field == "max_surveys_per_user"


@pytest.mark.anyio("asyncio")
async def test_tenant_counts_and_delete_guard(services, world):
    registry = services()
    counts = (await registry.tenants.counts("acme")).unwrap()
    assert (counts.members, counts.surveys, counts.active_surveys) == (4, 2, 1)

    refused = await registry.tenants.delete("acme")
    assert refused.error == ValidationFailed("Cannot delete a tenant with 4 member(s) and 2 survey(s)")

    empty = (await registry.tenants.create("Empty Co")).unwrap()
    deletion = (await registry.tenants.delete(empty.id)).unwrap()
    assert deletion.id == empty.id
    assert isinstance((await registry.tenants.get(empty.id)).error, NotFound)


@pytest.mark.anyio("asyncio")
async def test_store_faults_become_internal_errors(services, store, world, monkeypatch):
    async def broken(*args, **kwargs):
        raise StoreError("connection reset")

    monkeypatch.setattr(store, "count", broken)
    result = await services().tenants.counts("acme")
    assert isinstance(result.error, Internal)
    assert result.error.detail == "connection reset"
    assert result.error.payload().as_json()["message"] == "Internal server error"


@pytest.mark.anyio("asyncio")
async def test_identity_create_normalises_email(services, world):
    registry = services()
    members = await registry.loaders.members_by_tenant.load("acme")
    assert len(members) == 4

    created = (
        await registry.identities.create("  New.Person@Example.COM ", tenant_id="acme", role=Role.ANALYST)
    ).unwrap()
    assert created.email == "new.person@example.com"
    assert len(await registry.loaders.members_by_tenant.load("acme")) == 5

    duplicate = await registry.identities.create("admin@example.com", tenant_id="acme")
    assert duplicate.error == Conflict("A user with this email already exists", field="email")

    dangling = await registry.identities.create("ghost@example.com", tenant_id="nowhere")
    assert dangling.error == ValidationFailed("Referenced tenant_id does not exist", field="tenant_id")


@pytest.mark.anyio("asyncio")
async def test_identity_find_many(services, world):
    registry = services()
    analysts = (
        await registry.identities.find_many(Pagination(limit=10), tenant_id="acme", role=Role.ANALYST)
    ).unwrap()
    assert [identity.id for identity in analysts] == ["analyst"]

    searched = (await registry.identities.find_many(Pagination(limit=10), search_text="RIVAL")).unwrap()
    assert [identity.id for identity in searched] == ["rival"]


@pytest.mark.anyio("asyncio")
async def test_update_role_and_touch_last_seen(services, store, world):
    registry = services()
    promoted = (await registry.identities.update_role("user", Role.ANALYST)).unwrap()
    assert promoted.role is Role.ANALYST
    assert (await store.fetch_many(Tables.IDENTITIES, ["user"]))[0]["role"] == Role.ANALYST

    unchanged = (await registry.identities.update_role("user", Role.ANALYST)).unwrap()
    assert unchanged is promoted

    touched = (await registry.identities.touch_last_seen("viewer")).unwrap()
    assert touched.last_seen_at is not None
    assert touched.updated_at == world.viewer.updated_at

    assert isinstance((await registry.identities.update_role("ghost", Role.USER)).error, NotFound)
