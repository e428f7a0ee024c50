import asyncio

import pytest

from survey_gateway.auth.permissions import Permission
from survey_gateway.auth.rate_limit import RateLimiter
from survey_gateway.config.settings import RateLimitSettings
from survey_gateway.gateway.context import ContextBuilder
from survey_gateway.gateway.orchestrator import Orchestrator
from survey_gateway.gateway.resolvers import build_registries
from survey_gateway.models.inputs import NoArguments
from survey_gateway.storage.base import Tables
from survey_gateway.utils.errors import RateLimited


@pytest.fixture
def orchestrator(store, bus, settings, verifier) -> Orchestrator:
    operations, types = build_registries()
    contexts = ContextBuilder(store, verifier=verifier, bus=bus, settings=settings)
    return Orchestrator(contexts, operations=operations, types=types)


def messages(result) -> list[str]:
    return [error["message"] for error in result["errors"]]


@pytest.mark.anyio("asyncio")
async def test_single_operation_payload(orchestrator):
    result = await orchestrator.handle(
        {"name": "survey", "arguments": {"id": "s-live"}, "fields": ["id", "title", "status"]},
        "Bearer viewer-token",
    )
    assert result == {
        "data": {"survey": {"id": "s-live", "title": "Customer satisfaction", "status": "active"}},
        "errors": [],
    }


@pytest.mark.anyio("asyncio")
async def test_sibling_queries_share_loader_batches(orchestrator, store, monkeypatch):
    fetched: list[tuple[str, tuple[str, ...]]] = []
    original = store.fetch_many

    async def recording_fetch(table, ids):
        fetched.append((table, tuple(ids)))
        return await original(table, ids)

    monkeypatch.setattr(store, "fetch_many", recording_fetch)
    result = await orchestrator.handle(
        {
            "operations": [
                {"name": "survey", "alias": "live", "arguments": {"id": "s-live"},
                 "fields": ["id", {"creator": ["email"]}]},
                {"name": "survey", "alias": "draft", "arguments": {"id": "s-draft"},
                 "fields": ["id", {"creator": ["email"]}]},
            ]
        },
        "Bearer admin-token",
    )

    assert result["errors"] == []
    assert result["data"]["live"]["creator"] == {"email": "admin@example.com"}
    assert result["data"]["draft"]["creator"] == {"email": "user@example.com"}
    survey_fetches = [ids for table, ids in fetched if table == Tables.SURVEYS]
    assert survey_fetches == [("s-live", "s-draft")]


@pytest.mark.anyio("asyncio")
async def test_nested_fields_over_lists(orchestrator):
    result = await orchestrator.handle(
        {"name": "surveys", "fields": ["id", {"questions": ["id"]}]}, "Bearer admin-token"
    )

    assert result["errors"] == []
    by_id = {survey["id"]: survey for survey in result["data"]["surveys"]}
    assert set(by_id) == {"s-live", "s-draft"}
    assert [question["id"] for question in by_id["s-live"]["questions"]] == [
        "q-text",
        "q-choice",
        "q-scale",
    ]
    assert by_id["s-draft"]["questions"] == []


@pytest.mark.anyio("asyncio")
async def test_unknown_operation_and_duplicate_keys(orchestrator):
    result = await orchestrator.handle(
        {"operations": [{"name": "nope"}, {"name": "me", "fields": ["id"]}, {"name": "me"}]},
        "Bearer admin-token",
    )

    assert result["data"] == {"nope": None, "me": {"id": "admin"}}
    errors = {error["message"]: error for error in result["errors"]}
    assert errors["Unknown operation 'nope'"]["path"] == ["nope"]
    assert errors["Unknown operation 'nope'"]["field"] == "name"
    assert errors["Duplicate response key 'me'"]["field"] == "alias"


@pytest.mark.anyio("asyncio")
async def test_selection_and_argument_errors(orchestrator):
    result = await orchestrator.handle(
        {
            "operations": [
                {"name": "survey", "alias": "a", "arguments": {"id": "s-live"}, "fields": ["bogus"]},
                {"name": "survey", "alias": "b", "arguments": {"id": "s-live"},
                 "fields": [{"title": ["x"]}]},
                {"name": "survey", "alias": "c", "arguments": {}},
            ]
        },
        "Bearer admin-token",
    )

    assert result["data"] == {"a": None, "b": None, "c": None}
    by_path = {error["path"][0]: error for error in result["errors"]}
    assert by_path["a"]["message"] == "Unknown field 'bogus' on Survey"
    assert by_path["b"]["message"] == "Field 'Survey.title' does not take a selection"
    assert by_path["c"]["code"] == "VALIDATION_ERROR"
    assert by_path["c"]["field"] == "id"


@pytest.mark.anyio("asyncio")
async def test_authentication_and_permissions(orchestrator):
    anonymous = await orchestrator.handle({"name": "survey", "arguments": {"id": "s-live"}}, None)
    assert anonymous["errors"][0]["code"] == "UNAUTHENTICATED"
    assert anonymous["errors"][0]["httpStatus"] == 401

    viewer = await orchestrator.handle(
        {"name": "createSurvey", "arguments": {"title": "Nope"}}, "Bearer viewer-token"
    )
    assert viewer["data"] == {"createSurvey": None}
    assert messages(viewer) == ["Missing required permission: surveys:create"]

    public = await orchestrator.handle(
        {"name": "publicSurvey", "arguments": {"id": "s-live"}, "fields": ["title"]}, None
    )
    assert public["data"] == {"publicSurvey": {"title": "Customer satisfaction"}}


@pytest.mark.anyio("asyncio")
async def test_tenants_are_isolated(orchestrator):
    result = await orchestrator.handle(
        {
            "operations": [
                {"name": "survey", "arguments": {"id": "s-live"}},
                {"name": "tenant", "arguments": {"id": "acme"}},
            ]
        },
        "Bearer rival-token",
    )
    errors = {error["path"][0]: error for error in result["errors"]}
    assert errors["survey"]["message"] == "Survey not found"
    assert errors["tenant"]["message"] == "Access to this tenant is not permitted"

    root = await orchestrator.handle(
        {"name": "survey", "arguments": {"id": "s-globex"}, "fields": ["tenant_id"]},
        "Bearer root-token",
    )
    assert root["data"]["survey"] == {"tenant_id": "globex"}


@pytest.mark.anyio("asyncio")
async def test_field_errors_stay_local(orchestrator):
    result = await orchestrator.handle(
        {"name": "tenant", "fields": ["name", {"members": ["id"]}]}, "Bearer analyst-token"
    )

    assert result["data"]["tenant"] == {"name": "Acme", "members": None}
    assert result["errors"] == [
        {
            "message": "Missing required permission: users:read",
            "code": "FORBIDDEN",
            "httpStatus": 403,
            "path": ["tenant", "members"],
        }
    ]


@pytest.mark.anyio("asyncio")
async def test_mutations_run_in_order_and_publish(orchestrator, bus):
    subscription = await bus.subscribe(["survey.*"])
    result = await orchestrator.handle(
        {
            "operations": [
                {"name": "pauseSurvey", "alias": "paused", "arguments": {"id": "s-live"},
                 "fields": ["status"]},
                {"name": "publishSurvey", "alias": "resumed", "arguments": {"id": "s-live"},
                 "fields": ["status"]},
            ]
        },
        "Bearer admin-token",
    )

    assert result["data"] == {"paused": {"status": "paused"}, "resumed": {"status": "active"}}
    first = await asyncio.wait_for(subscription.__anext__(), 1.0)
    second = await asyncio.wait_for(subscription.__anext__(), 1.0)
    assert (first.topic, first.tenant_id) == ("survey.paused", "acme")
    assert first.payload == {"id": "s-live", "status": "paused", "operation": "pauseSurvey"}
    assert second.topic == "survey.published"


@pytest.mark.anyio("asyncio")
async def test_failed_mutation_publishes_nothing(orchestrator, bus):
    subscription = await bus.subscribe()
    result = await orchestrator.handle(
        {"name": "archiveSurvey", "arguments": {"id": "s-globex"}}, "Bearer admin-token"
    )

    assert messages(result) == ["Survey not found"]
    assert bus.subscriber_count == 1
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(subscription.__anext__(), 0.05)


@pytest.mark.anyio("asyncio")
async def test_anonymous_respondent_flow(orchestrator):
    started = await orchestrator.handle(
        {"name": "startSession", "arguments": {"survey_id": "s-live"}, "fields": ["id", "status"]},
        None,
    )
    session = started["data"]["startSession"]
    assert session["status"] == "not_started"

    submitted = await orchestrator.handle(
        {
            "name": "submitResponse",
            "arguments": {
                "session_id": session["id"],
                "question_id": "q-choice",
                "answer": {"type": "choice", "choices": ["Blue"]},
            },
            "fields": ["question_id", "answer"],
        },
        None,
    )
    assert submitted["errors"] == []
    assert submitted["data"]["submitResponse"] == {
        "question_id": "q-choice",
        "answer": {"type": "choice", "choices": ["Blue"]},
    }

    closed = await orchestrator.handle(
        {"name": "startSession", "arguments": {"survey_id": "s-draft"}}, None
    )
    assert messages(closed) == ["Survey not found"]


@pytest.mark.anyio("asyncio")
async def test_api_key_scope_limits_operations(orchestrator, services):
    created = (
        await services().credentials.create(
            "admin", "acme", "read-only", permissions=[Permission.SURVEYS_READ]
        )
    ).unwrap()
    header = f"Bearer {created.secret}"

    result = await orchestrator.handle(
        {
            "operations": [
                {"name": "survey", "arguments": {"id": "s-draft"}, "fields": ["id"]},
                {"name": "deleteSurvey", "arguments": {"id": "s-draft"}},
            ]
        },
        header,
    )
    assert result["data"]["survey"] == {"id": "s-draft"}
    assert messages(result) == ["Missing required permission: surveys:delete"]


@pytest.mark.anyio("asyncio")
async def test_invalid_payloads(orchestrator):
    for payload in ({"operations": []}, [1, 2], {"name": ""}):
        result = await orchestrator.handle(payload, "Bearer admin-token")
        assert result["data"] is None
        assert result["errors"][0]["code"] == "VALIDATION_ERROR"


@pytest.mark.anyio("asyncio")
async def test_unexpected_failures_are_internal(orchestrator):
    async def explode(context, arguments):
        raise RuntimeError("disk on fire")

    orchestrator.operations.query("explode", NoArguments, requires_auth=False)(explode)
    result = await orchestrator.handle({"name": "explode"}, None)

    assert result["data"] == {"explode": None}
    assert result["errors"] == [
        {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "httpStatus": 500,
            "path": ["explode"],
        }
    ]


@pytest.mark.anyio("asyncio")
async def test_rate_limit_applies_before_execution(store, bus, settings, verifier):
    operations, types = build_registries()
    limited = Orchestrator(
        ContextBuilder(store, verifier=verifier, bus=bus, settings=settings),
        operations=operations,
        types=types,
        rate_limiter=RateLimiter(RateLimitSettings(requests_per_minute=1, burst=1)),
    )
    payload = {"name": "me", "fields": ["id"]}

    assert (await limited.handle(payload, "Bearer user-token"))["data"] == {"me": {"id": "user"}}
    with pytest.raises(RateLimited) as raised:
        await limited.handle(payload, "Bearer user-token")
    assert raised.value.retry_after >= 1
    other = await limited.handle(payload, "Bearer viewer-token")
    assert other["data"] == {"me": {"id": "viewer"}}


@pytest.mark.anyio("asyncio")
async def test_rotated_tokens_share_the_address_allowance(store, bus, settings, verifier):
    operations, types = build_registries()
    limited = Orchestrator(
        ContextBuilder(store, verifier=verifier, bus=bus, settings=settings),
        operations=operations,
        types=types,
        rate_limiter=RateLimiter(RateLimitSettings(requests_per_minute=1, burst=1, ip_multiplier=2)),
    )
    payload = {"name": "publicSurvey", "arguments": {"id": "s-live"}, "fields": ["id"]}

    for forged in ("Bearer forged-1", "Bearer forged-2"):
        result = await limited.handle(payload, forged, client_ip="203.0.113.9")
        assert result["data"] == {"publicSurvey": {"id": "s-live"}}
    with pytest.raises(RateLimited):
        await limited.handle(payload, "Bearer forged-3", client_ip="203.0.113.9")


# ==============================================================================
# NESTED FIELD BOUNDARIES
# ==============================================================================


@pytest.mark.anyio("asyncio")
async def test_public_survey_does_not_expose_creator_or_tenant(orchestrator):
    result = await orchestrator.handle(
        {
            "name": "publicSurvey",
            "arguments": {"id": "s-live"},
            "fields": [
                "title",
                {"creator": ["email", "role", "permissions"]},
                {"tenant": ["name", "settings"]},
                {"questions": ["id", {"survey": ["id"]}]},
            ],
        },
        None,
    )

    survey = result["data"]["publicSurvey"]
    assert survey["title"] == "Customer satisfaction"
    assert survey["creator"] is None
    assert survey["tenant"] is None
    assert {question["survey"]["id"] for question in survey["questions"]} == {"s-live"}
    errors = {tuple(error["path"]): error["code"] for error in result["errors"]}
    assert errors == {
        ("publicSurvey", "creator"): "UNAUTHENTICATED",
        ("publicSurvey", "tenant"): "UNAUTHENTICATED",
    }


@pytest.mark.anyio("asyncio")
async def test_nested_links_respect_the_caller_tenant(orchestrator):
    started = await orchestrator.handle(
        {
            "name": "startSession",
            "arguments": {"survey_id": "s-live"},
            "fields": ["id", {"survey": ["id", {"tenant": ["name"]}, {"creator": ["email"]}]}],
        },
        "Bearer rival-token",
    )

    survey = started["data"]["startSession"]["survey"]
    assert survey == {"id": "s-live", "tenant": None, "creator": None}
    assert messages(started) == ["Access to this tenant is not permitted"] * 2

    member = await orchestrator.handle(
        {"name": "me", "fields": [{"tenant": ["name"]}]}, "Bearer viewer-token"
    )
    assert member["data"] == {"me": {"tenant": {"name": "Acme"}}}


@pytest.mark.anyio("asyncio")
async def test_response_session_needs_session_access(orchestrator):
    started = await orchestrator.handle(
        {"name": "startSession", "arguments": {"survey_id": "s-live"}, "fields": ["id"]},
        "Bearer user-token",
    )
    session_id = started["data"]["startSession"]["id"]
    submitted = await orchestrator.handle(
        {
            "name": "submitResponse",
            "arguments": {
                "session_id": session_id,
                "question_id": "q-choice",
                "answer": {"type": "choice", "choices": ["Blue"]},
            },
            "fields": [{"session": ["id"]}],
        },
        "Bearer user-token",
    )
    assert submitted["data"]["submitResponse"] == {"session": {"id": session_id}}

    query = {
        "name": "responses",
        "arguments": {"survey_id": "s-live"},
        "fields": ["question_id", {"session": ["id"]}],
    }
    viewer = await orchestrator.handle(query, "Bearer viewer-token")
    assert viewer["data"]["responses"] == [{"question_id": "q-choice", "session": None}]
    assert messages(viewer) == ["Session not found"]

    analyst = await orchestrator.handle(query, "Bearer analyst-token")
    assert analyst["errors"] == []
    assert analyst["data"]["responses"][0]["session"] == {"id": session_id}


@pytest.mark.anyio("asyncio")
async def test_cold_cache_mutations_succeed(orchestrator):
    result = await orchestrator.handle(
        {
            "operations": [
                {"name": "startSession", "alias": "started", "arguments": {"survey_id": "s-live"},
                 "fields": ["status"]},
                {"name": "pauseSurvey", "alias": "paused", "arguments": {"id": "s-live"},
                 "fields": ["status"]},
            ]
        },
        "Bearer admin-token",
    )
    assert result["errors"] == []
    assert result["data"] == {"started": {"status": "not_started"}, "paused": {"status": "paused"}}
