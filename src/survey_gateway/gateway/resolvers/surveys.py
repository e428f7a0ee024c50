"""Survey and question operations, and the ``Survey``/``Question`` types."""

from __future__ import annotations

from typing import Any

from ...auth.permissions import Permission
from ...models.entities import Deletion, Question, Survey, SurveyStatus
from ...models.inputs import (
    AddQuestionArguments,
    CreateSurveyArguments,
    DuplicateSurveyArguments,
    IdArguments,
    SurveyListArguments,
    UpdateQuestionArguments,
    UpdateSurveyArguments,
)
from ...utils.errors import NotFound, ValidationFailed
from ..context import RequestContext
from ..registry import FieldSpec, ObjectType, OperationRegistry, TypeRegistry
from .common import (
    by_attribute,
    children,
    linked_survey,
    own_tenant,
    page,
    row_tenant,
    survey_tenant,
    visible_survey,
)


async def _survey_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    payload = {"id": value.id}
    status = getattr(value, "status", None)
    if status is not None:
        payload["status"] = status.value
    return payload, value.tenant_id


async def _question_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    if isinstance(value, Deletion):
        return {"question_id": value.id}, value.tenant_id
    payload = {"id": value.survey_id, "question_id": value.id}
    return payload, await survey_tenant(context, value.survey_id)


async def editable_survey(context: RequestContext, survey_id: str) -> Survey:
    """Load a survey the caller may edit; live surveys need an extra permission."""
    survey = await visible_survey(context, survey_id)
    if survey.status is SurveyStatus.ACTIVE:
        context.gate.require_permission(Permission.SURVEYS_EDIT_PUBLISHED)
    return survey


async def editable_question(context: RequestContext, question_id: str) -> Question:
    question = await context.loaders.questions.load(question_id)
    if question is None:
        raise NotFound("Question not found")
    survey = await context.loaders.surveys.load(question.survey_id)
    if survey is None or not context.gate.can_access_tenant(survey.tenant_id):
        raise NotFound("Question not found")
    await editable_survey(context, survey.id)
    return question


def register(operations: OperationRegistry, types: TypeRegistry) -> None:
    survey_type = types.register(ObjectType.from_model("Survey", Survey))
    question_type = types.register(ObjectType.from_model("Question", Question))
    survey_type.add_field("questions", FieldSpec(children("questions_by_survey"), "Question"))
    survey_type.add_field(
        "tenant",
        FieldSpec(by_attribute("tenants", "tenant_id", "Tenant"), "Tenant", tenant_boundary=row_tenant),
    )
    survey_type.add_field(
        "creator",
        FieldSpec(
            by_attribute("identities", "created_by", "User"),
            "Identity",
            permission=Permission.USERS_READ,
            tenant_boundary=row_tenant,
        ),
    )
    question_type.add_field("survey", FieldSpec(linked_survey, "Survey"))
    types.add_field(
        "Tenant",
        "surveys",
        FieldSpec(
            children("surveys_by_tenant"),
            "Survey",
            permission=Permission.SURVEYS_READ,
            tenant_boundary=own_tenant,
        ),
    )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @operations.query("survey", IdArguments, returns="Survey", permission=Permission.SURVEYS_READ)
    async def survey(context: RequestContext, arguments: IdArguments) -> Any:
        return await visible_survey(context, arguments.id)

    @operations.query(
        "surveys", SurveyListArguments, returns="Survey", permission=Permission.SURVEYS_READ
    )
    async def surveys(context: RequestContext, arguments: SurveyListArguments) -> Any:
        return await context.services.surveys.find_many(
            page(context, arguments),
            tenant_id=context.scoped_tenant(arguments.tenant_id),
            status=arguments.status,
            search_text=arguments.search,
            tags=arguments.tags,
        )

    @operations.query("publicSurvey", IdArguments, returns="Survey", requires_auth=False)
    async def public_survey(context: RequestContext, arguments: IdArguments) -> Any:
        found = await context.loaders.surveys.load(arguments.id)
        if found is None or found.status is not SurveyStatus.ACTIVE:
            raise NotFound("Survey not found")
        return found

    @operations.query(
        "surveyPublishingIssues", IdArguments, permission=Permission.SURVEYS_READ
    )
    async def survey_publishing_issues(context: RequestContext, arguments: IdArguments) -> Any:
        target = await visible_survey(context, arguments.id)
        return await context.services.surveys.validate_for_publishing(target.id)

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    @operations.mutation(
        "createSurvey",
        CreateSurveyArguments,
        returns="Survey",
        permission=Permission.SURVEYS_CREATE,
        publishes="survey.created",
        event=_survey_event,
    )
    async def create_survey(context: RequestContext, arguments: CreateSurveyArguments) -> Any:
        principal = context.gate.require_authenticated()
        tenant_id = arguments.tenant_id or principal.tenant_id
        if tenant_id is None:
            raise ValidationFailed("tenant_id is required", field="tenant_id")
        context.gate.require_tenant_scope(tenant_id)
        return await context.services.surveys.create(tenant_id, principal.identity_id, arguments)

    @operations.mutation(
        "updateSurvey",
        UpdateSurveyArguments,
        returns="Survey",
        permission=Permission.SURVEYS_UPDATE,
        publishes="survey.updated",
        event=_survey_event,
    )
    async def update_survey(context: RequestContext, arguments: UpdateSurveyArguments) -> Any:
        target = await editable_survey(context, arguments.id)
        settings = arguments.settings.changes() if arguments.settings else None
        return await context.services.surveys.update(target.id, arguments.changes(), settings)

    @operations.mutation(
        "duplicateSurvey",
        DuplicateSurveyArguments,
        returns="Survey",
        permission=Permission.SURVEYS_CREATE,
        publishes="survey.created",
        event=_survey_event,
    )
    async def duplicate_survey(context: RequestContext, arguments: DuplicateSurveyArguments) -> Any:
        principal = context.gate.require_authenticated()
        source = await visible_survey(context, arguments.id)
        return await context.services.surveys.duplicate(
            source.id, title=arguments.title, created_by=principal.identity_id
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def lifecycle(name: str, permission: str, topic: str, method: str) -> None:
        async def handler(context: RequestContext, arguments: IdArguments) -> Any:
            target = await visible_survey(context, arguments.id)
            return await getattr(context.services.surveys, method)(target.id)

        operations.mutation(
            name,
            IdArguments,
            returns="Survey" if method != "delete" else "Deletion",
            permission=permission,
            publishes=topic,
            event=_survey_event,
        )(handler)

    lifecycle("publishSurvey", Permission.SURVEYS_PUBLISH, "survey.published", "publish")
    lifecycle("pauseSurvey", Permission.SURVEYS_MANAGE, "survey.paused", "pause")
    lifecycle("archiveSurvey", Permission.SURVEYS_ARCHIVE, "survey.archived", "archive")
    lifecycle("deleteSurvey", Permission.SURVEYS_DELETE, "survey.deleted", "delete")

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    @operations.mutation(
        "addQuestion",
        AddQuestionArguments,
        returns="Question",
        permission=Permission.SURVEYS_UPDATE,
        publishes="survey.updated",
        event=_question_event,
    )
    async def add_question(context: RequestContext, arguments: AddQuestionArguments) -> Any:
        target = await editable_survey(context, arguments.survey_id)
        return await context.services.questions.add(target.id, arguments)

    @operations.mutation(
        "updateQuestion",
        UpdateQuestionArguments,
        returns="Question",
        permission=Permission.SURVEYS_UPDATE,
        publishes="survey.updated",
        event=_question_event,
    )
    async def update_question(context: RequestContext, arguments: UpdateQuestionArguments) -> Any:
        question = await editable_question(context, arguments.id)
        return await context.services.questions.update(question.id, arguments.changes())

    @operations.mutation(
        "deleteQuestion",
        IdArguments,
        returns="Deletion",
        permission=Permission.SURVEYS_UPDATE,
        publishes="survey.updated",
        event=_question_event,
    )
    async def delete_question(context: RequestContext, arguments: IdArguments) -> Any:
        question = await editable_question(context, arguments.id)
        return await context.services.questions.delete(question.id)


__all__ = ["editable_survey", "register"]
