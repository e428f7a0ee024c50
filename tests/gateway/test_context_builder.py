import pytest

from survey_gateway.auth.permissions import Permission
from survey_gateway.gateway.context import ContextBuilder, bearer_token
from survey_gateway.storage.base import Tables
from survey_gateway.utils.errors import Forbidden, NotFound


@pytest.fixture
def builder(store, bus, settings, verifier) -> ContextBuilder:
    return ContextBuilder(store, verifier=verifier, bus=bus, settings=settings)


def test_bearer_token_parsing():
    assert bearer_token(None) is None
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("  bearer   abc  ") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer ") is None


@pytest.mark.anyio("asyncio")
async def test_missing_or_malformed_headers_are_anonymous(builder):
    for header in (None, "", "Basic dXNlcjpwdw==", "Bearer unknown-token"):
        context = await builder.build(header)
        assert context.principal is None
        assert not context.gate.is_authenticated


@pytest.mark.anyio("asyncio")
async def test_identity_token_resolves_principal(builder, store):
    context = await builder.build("Bearer analyst-token", client_ip="10.0.0.1", correlation_id="c-1")

    assert context.principal.identity_id == "analyst"
    assert context.tenant_id == "acme"
    assert context.principal.auth_type == "token"
    assert (context.client_ip, context.correlation_id) == ("10.0.0.1", "c-1")
    row = (await store.fetch_many(Tables.IDENTITIES, ["analyst"]))[0]
    assert row["last_seen_at"] is not None


@pytest.mark.anyio("asyncio")
async def test_every_build_gets_fresh_loaders(builder):
    first = await builder.build("Bearer admin-token")
    second = await builder.build("Bearer admin-token")
    assert first.loaders is not second.loaders
    assert first.services.loaders is first.loaders


@pytest.mark.anyio("asyncio")
async def test_inactive_identity_is_anonymous(builder, store):
    await store.update(Tables.IDENTITIES, "user", {"is_active": False})
    context = await builder.build("Bearer user-token")
    assert context.principal is None


@pytest.mark.anyio("asyncio")
async def test_api_key_is_capped_by_its_scope(builder, services, store):
    created = (
        await services().credentials.create(
            "admin", "acme", "reporting", permissions=[Permission.SURVEYS_READ]
        )
    ).unwrap()

    context = await builder.build(f"Bearer {created.secret}")

    principal = context.principal
    assert principal.identity_id == "admin"
    assert principal.auth_type == "api_key"
    assert principal.credential_id == created.credential.id
    assert context.gate.has_permission(Permission.SURVEYS_READ)
    assert not context.gate.has_permission(Permission.SURVEYS_DELETE)
    row = (await store.fetch_many(Tables.CREDENTIALS, [created.credential.id]))[0]
    assert row["usage_count"] == 1


@pytest.mark.anyio("asyncio")
async def test_revoked_or_unknown_api_keys_are_anonymous(builder, services):
    created = (await services().credentials.create("admin", "acme", "old")).unwrap()
    await services().credentials.revoke(created.credential.id, "admin")

    assert (await builder.build(f"Bearer {created.secret}")).principal is None
    assert (await builder.build("Bearer sgk_made-up")).principal is None


@pytest.mark.anyio("asyncio")
async def test_load_visible_hides_other_tenants(builder):
    context = await builder.build("Bearer rival-token")

    own = await context.load_visible(context.loaders.surveys, "s-globex", "Survey")
    assert own.id == "s-globex"
    with pytest.raises(NotFound, match="Survey not found"):
        await context.load_visible(context.loaders.surveys, "s-live", "Survey")
    with pytest.raises(NotFound):
        await context.load_visible(context.loaders.surveys, "missing", "Survey")


@pytest.mark.anyio("asyncio")
async def test_scoped_tenant(builder):
    member = await builder.build("Bearer admin-token")
    assert member.scoped_tenant(None) == "acme"
    with pytest.raises(Forbidden):
        member.scoped_tenant("globex")

    root = await builder.build("Bearer root-token")
    assert root.scoped_tenant(None) is None
    assert root.scoped_tenant("globex") == "globex"
