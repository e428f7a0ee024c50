import pytest

from survey_gateway.models.entities import QuestionType, Session, SurveyStatus
from survey_gateway.models.inputs import CreateSurveyArguments, QuestionInput
from survey_gateway.storage.base import StoreError, Tables
from survey_gateway.utils.errors import NotFound, ValidationFailed
from survey_gateway.utils.pagination import Pagination


def survey_arguments(**overrides) -> CreateSurveyArguments:
    payload = {
        "title": "Onboarding feedback",
        "tags": ["onboarding"],
        "settings": {"enable_voice": False},
        "questions": [
            {"type": "text", "title": "Anything else?"},
            {"type": "single_choice", "title": "Pick one", "options": ["Yes", "No"]},
        ],
    }
    payload.update(overrides)
    return CreateSurveyArguments.model_validate(payload)


@pytest.mark.anyio("asyncio")
async def test_create_survey_with_questions(services, world):
    registry = services()
    survey = (await registry.surveys.create("acme", "analyst", survey_arguments())).unwrap()

    assert survey.status is SurveyStatus.DRAFT
    assert survey.tags == ("onboarding",)
    questions = (await registry.questions.for_survey(survey.id)).unwrap()
    assert [(question.title, question.order) for question in questions] == [
        ("Anything else?", 0),
        ("Pick one", 1),
    ]
    listed = await registry.loaders.surveys_by_tenant.load("acme")
    assert survey.id in {item.id for item in listed}


@pytest.mark.anyio("asyncio")
async def test_create_survey_enforces_tenant_and_quota(services, world):
    registry = services()
    missing = await registry.surveys.create("nowhere", None, survey_arguments())
    assert missing.error == NotFound("Tenant not found")

    await registry.tenants.update_settings("acme", {"max_surveys_per_user": 1})
    fresh = services()
    refused = await fresh.surveys.create("acme", "admin", survey_arguments())
    assert refused.error == ValidationFailed("Survey limit of 1 reached for this user")


@pytest.mark.anyio("asyncio")
async def test_failed_question_insert_removes_the_survey(services, store, world, monkeypatch):
    registry = services()
    original_insert = store.insert
    calls = {"questions": 0}

    async def flaky_insert(table, row):
        if table == Tables.QUESTIONS:
            calls["questions"] += 1
            if calls["questions"] == 2:
                raise StoreError("write timeout")
        return await original_insert(table, row)

    monkeypatch.setattr(store, "insert", flaky_insert)
    result = await registry.surveys.create("acme", "analyst", survey_arguments(title="Doomed"))

    assert result.error.code == "INTERNAL_ERROR"
    titles = [row["title"] for row in await store.query(Tables.SURVEYS)]
    assert "Doomed" not in titles
    assert await store.count(Tables.QUESTIONS) == 4


@pytest.mark.anyio("asyncio")
async def test_find_many_filters(services, world):
    registry = services()
    page = Pagination(limit=10)
    active = (await registry.surveys.find_many(page, tenant_id="acme", status=SurveyStatus.ACTIVE)).unwrap()
    assert [survey.id for survey in active] == ["s-live"]

    tagged = (await registry.surveys.find_many(page, tags=["cx"])).unwrap()
    assert [survey.id for survey in tagged] == ["s-live"]

    searched = (await registry.surveys.find_many(page, search_text="pulse")).unwrap()
    assert [survey.id for survey in searched] == ["s-globex"]


@pytest.mark.anyio("asyncio")
async def test_publishing_checks(services, world):
    registry = services()
    problems = (await registry.surveys.validate_for_publishing("s-draft")).unwrap()
    assert problems == ["Survey must have at least one question"]

    refused = await registry.surveys.publish("s-draft")
    assert refused.error.message.startswith("Survey is not ready to publish")

    await registry.questions.add("s-draft", QuestionInput(type=QuestionType.VOICE, title="Say it"))
    problems = (await registry.surveys.validate_for_publishing("s-draft")).unwrap()
    assert problems == ["Question 'Say it' requires voice responses to be enabled"]

    await registry.surveys.update("s-draft", {}, {"enable_voice": True})
    published = (await registry.surveys.publish("s-draft")).unwrap()
    assert published.status is SurveyStatus.ACTIVE
    assert published.published_at is not None


@pytest.mark.anyio("asyncio")
async def test_lifecycle_transitions(services, world):
    registry = services()
    again = await registry.surveys.publish("s-live")
    assert again.error == ValidationFailed("Cannot publish a survey with status active")

    paused = (await registry.surveys.pause("s-live")).unwrap()
    assert paused.status is SurveyStatus.PAUSED
    assert (await registry.surveys.pause("s-live")).error == ValidationFailed(
        "Only active surveys can be paused"
    )

    resumed = (await registry.surveys.publish("s-live")).unwrap()
    assert resumed.status is SurveyStatus.ACTIVE

    archived = (await registry.surveys.archive("s-live")).unwrap()
    assert archived.archived_at is not None
    assert (await registry.surveys.archive("s-live")).error.message == "Survey is already archived"
    assert (await registry.surveys.update("s-live", {"title": "New"})).error.message == (
        "Archived surveys cannot be modified"
    )
    assert (await registry.questions.delete("q-text")).error.message == (
        "Archived surveys cannot be modified"
    )


@pytest.mark.anyio("asyncio")
async def test_update_merges_survey_settings(services, world):
    registry = services()
    updated = (
        await registry.surveys.update(
            "s-draft", {"title": "Renamed", "tags": ["a", "b"]}, {"session_timeout_minutes": 15}
        )
    ).unwrap()
    assert updated.title == "Renamed"
    assert updated.tags == ("a", "b")
    assert updated.settings.session_timeout_minutes == 15
    assert updated.settings.allow_anonymous is True


@pytest.mark.anyio("asyncio")
async def test_duplicate_copies_questions(services, world):
    registry = services()
    clone = (await registry.surveys.duplicate("s-live", created_by="analyst")).unwrap()

    assert clone.title == "Customer satisfaction (Copy)"
    assert clone.status is SurveyStatus.DRAFT
    assert clone.created_by == "analyst"
    questions = (await registry.questions.for_survey(clone.id)).unwrap()
    assert [question.title for question in questions] == [q.title for q in world.questions]
    assert not {question.id for question in questions} & {q.id for q in world.questions}


@pytest.mark.anyio("asyncio")
async def test_delete_survey(services, store, world):
    registry = services()
    deletion = (await registry.surveys.delete("s-draft")).unwrap()
    assert (deletion.id, deletion.tenant_id) == ("s-draft", "acme")

    await store.insert(Tables.SESSIONS, Session(id="sess", survey_id="s-live").model_dump())
    refused = await registry.surveys.delete("s-live")
    assert refused.error.message == "Surveys with sessions cannot be deleted; archive them instead"

    await store.delete(Tables.SESSIONS, "sess")
    (await registry.surveys.delete("s-live")).unwrap()
    assert await store.count(Tables.QUESTIONS) == 1


@pytest.mark.anyio("asyncio")
async def test_question_add_update_delete(services, world):
    registry = services()
    added = (
        await registry.questions.add("s-live", QuestionInput(type=QuestionType.RATING, title="Stars"))
    ).unwrap()
    assert added.order == 3
    assert (added.validation.min_value, added.validation.max_value) == (1.0, 5.0)

    updated = (await registry.questions.update("q-choice", {"options": ["Red", "Teal"]})).unwrap()
    assert updated.options == ("Red", "Teal")

    refused = await registry.questions.update("q-text", {"options": ["a", "b"]})
    assert refused.error == ValidationFailed("text questions do not take options", field="options")

    refused = await registry.questions.update("q-scale", {"validation": {"min_value": 5, "max_value": 1}})
    assert refused.error.message == "min_value must be lower than max_value"

    deletion = (await registry.questions.delete("q-scale")).unwrap()
    assert deletion.tenant_id == "acme"
    remaining = (await registry.questions.for_survey("s-live")).unwrap()
    assert [question.id for question in remaining] == ["q-text", "q-choice", added.id]
    orphan = await registry.questions.add("missing", QuestionInput(type=QuestionType.TEXT, title="Why?"))
    assert isinstance(orphan.error, NotFound)
