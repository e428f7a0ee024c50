"""Survey authoring and lifecycle.

Key Responsibilities:
    - Create surveys together with their questions, compensating when the
      question step fails
    - Drive the ``draft -> active <-> paused -> archived`` lifecycle and the
      checks a survey must pass before it is published
    - Duplicate surveys as new drafts

Collaborators:
    - Upstream: survey resolvers
    - Downstream: :class:`QuestionService` for question rows

Side Effects:
    - Store writes; clears ``surveys_by_tenant`` for the owning tenant on
      every mutation
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import structlog
from pydantic import ValidationError

from ..config.settings import AppSettings
from ..loaders.registry import RequestLoaders
from ..models.entities import (
    Deletion,
    Question,
    QuestionType,
    Survey,
    SurveySettings,
    SurveyStatus,
    new_id,
    utcnow,
)
from ..models.inputs import CreateSurveyArguments
from ..storage.base import BackingStore, Condition, StoreError, Tables, contains, eq, search
from ..utils.errors import NotFound, ValidationFailed
from ..utils.pagination import Pagination
from .base import BaseService, service_operation, validation_failure
from .questions import QuestionService

logger = structlog.get_logger(__name__)

PUBLISHABLE = frozenset({SurveyStatus.DRAFT, SurveyStatus.PAUSED})


class SurveyService(BaseService[Survey]):
    table = Tables.SURVEYS
    model = Survey
    label = "Survey"

    def __init__(
        self,
        store: BackingStore,
        loaders: RequestLoaders,
        settings: AppSettings | None = None,
        *,
        questions: QuestionService | None = None,
    ) -> None:
        super().__init__(store, loaders, settings)
        self.questions = questions or QuestionService(store, loaders, self.settings)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @service_operation
    async def find_many(
        self,
        pagination: Pagination,
        *,
        tenant_id: str | None = None,
        status: SurveyStatus | None = None,
        search_text: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> list[Survey]:
        conditions: list[Condition] = []
        if tenant_id is not None:
            conditions.append(eq("tenant_id", tenant_id))
        if status is not None:
            conditions.append(eq("status", status))
        if search_text:
            conditions.append(search(("title", "description"), search_text))
        if tags:
            conditions.append(contains("tags", tags))
        return await self._list(conditions, pagination)

    @service_operation
    async def validate_for_publishing(self, survey_id: str) -> list[str]:
        """Return the reasons the survey cannot be published; empty when ready."""
        return await self._publish_problems(await self.require(survey_id))

    async def _publish_problems(self, survey: Survey) -> list[str]:
        problems: list[str] = []
        if not survey.title.strip():
            problems.append("Survey title is required")
        questions = await self.loaders.questions_by_survey.load(survey.id) or ()
        if not questions:
            problems.append("Survey must have at least one question")
        for question in questions:
            if question.type.is_choice and len(question.options) < 2:
                problems.append(f"Question '{question.title}' needs at least 2 options")
            if question.type is QuestionType.VOICE and not survey.settings.enable_voice:
                problems.append(f"Question '{question.title}' requires voice responses to be enabled")
        return problems

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    @service_operation
    async def create(
        self, tenant_id: str, created_by: str | None, arguments: CreateSurveyArguments
    ) -> Survey:
        tenant = await self.loaders.tenants.load(tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
        if created_by is not None:
            owned = await self.store.count(
                self.table, [eq("tenant_id", tenant_id), eq("created_by", created_by)]
            )
            if owned >= tenant.settings.max_surveys_per_user:
                raise ValidationFailed(
                    f"Survey limit of {tenant.settings.max_surveys_per_user} reached for this user"
                )
        settings = arguments.settings.changes() if arguments.settings else {}
        try:
            survey = Survey(
                id=new_id(),
                tenant_id=tenant_id,
                created_by=created_by,
                title=arguments.title,
                description=arguments.description,
                settings=SurveySettings.model_validate(settings),
                tags=tuple(arguments.tags),
            )
        except ValidationError as exc:
            raise validation_failure(exc) from exc
        questions = [
            self.questions.build(survey.id, spec, index)
            for index, spec in enumerate(arguments.questions)
        ]
        return await self._create_with_questions(survey, questions)

    async def _create_with_questions(self, survey: Survey, questions: Sequence[Question]) -> Survey:
        stored = await self._insert(survey)
        self.loaders.surveys_by_tenant.clear(stored.tenant_id)
        try:
            await self.questions.insert_all(questions)
        except StoreError:
            await self._compensate(stored)
            raise
        return stored

    async def _compensate(self, survey: Survey) -> None:
        try:
            await self.questions.remove_all(survey.id)
            await self.store.delete(self.table, survey.id)
        except StoreError:
            logger.error("survey.compensation_failed", survey_id=survey.id, exc_info=True)
            raise
        finally:
            self.loader.clear(survey.id)
            self.loaders.surveys_by_tenant.clear(survey.tenant_id)
        logger.warning("survey.create_compensated", survey_id=survey.id)

    @service_operation
    async def update(
        self,
        survey_id: str,
        changes: Mapping[str, Any],
        settings_changes: Mapping[str, Any] | None = None,
    ) -> Survey:
        survey = await self.require(survey_id)
        if survey.status is SurveyStatus.ARCHIVED:
            raise ValidationFailed("Archived surveys cannot be modified")
        values = dict(changes)
        if "tags" in values:
            values["tags"] = list(values["tags"])
        if settings_changes:
            try:
                merged = SurveySettings.model_validate(
                    {**survey.settings.model_dump(), **settings_changes}
                )
            except ValidationError as exc:
                raise validation_failure(exc) from exc
            values["settings"] = merged.model_dump()
        updated = await self._update(survey_id, values)
        self.loaders.surveys_by_tenant.clear(updated.tenant_id)
        return updated

    @service_operation
    async def duplicate(
        self, survey_id: str, *, title: str | None = None, created_by: str | None = None
    ) -> Survey:
        source = await self.require(survey_id)
        clone = Survey(
            id=new_id(),
            tenant_id=source.tenant_id,
            created_by=created_by or source.created_by,
            title=title or f"{source.title} (Copy)",
            description=source.description,
            settings=source.settings,
            tags=source.tags,
        )
        originals = await self.loaders.questions_by_survey.load(source.id) or ()
        questions = [
            question.model_copy(
                update={"id": new_id(), "survey_id": clone.id, "created_at": utcnow(), "updated_at": utcnow()}
            )
            for question in originals
        ]
        return await self._create_with_questions(clone, questions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _transition(self, survey: Survey, status: SurveyStatus, **extra: Any) -> Survey:
        updated = await self._update(survey.id, {"status": status, **extra})
        self.loaders.surveys_by_tenant.clear(updated.tenant_id)
        logger.info(
            "survey.status_changed",
            survey_id=survey.id,
            previous=survey.status.value,
            status=status.value,
        )
        return updated

    @service_operation
    async def publish(self, survey_id: str) -> Survey:
        survey = await self.require(survey_id)
        if survey.status not in PUBLISHABLE:
            raise ValidationFailed(f"Cannot publish a survey with status {survey.status.value}")
        problems = await self._publish_problems(survey)
        if problems:
            raise ValidationFailed("Survey is not ready to publish: " + "; ".join(problems))
        return await self._transition(
            survey, SurveyStatus.ACTIVE, published_at=survey.published_at or utcnow()
        )

    @service_operation
    async def pause(self, survey_id: str) -> Survey:
        survey = await self.require(survey_id)
        if survey.status is not SurveyStatus.ACTIVE:
            raise ValidationFailed("Only active surveys can be paused")
        return await self._transition(survey, SurveyStatus.PAUSED)

    @service_operation
    async def archive(self, survey_id: str) -> Survey:
        survey = await self.require(survey_id)
        if survey.status is SurveyStatus.ARCHIVED:
            raise ValidationFailed("Survey is already archived")
        return await self._transition(survey, SurveyStatus.ARCHIVED, archived_at=utcnow())

    @service_operation
    async def delete(self, survey_id: str) -> Deletion:
        survey = await self.require(survey_id)
        sessions = await self.store.count(Tables.SESSIONS, [eq("survey_id", survey_id)])
        if sessions:
            raise ValidationFailed("Surveys with sessions cannot be deleted; archive them instead")
        await self.questions.remove_all(survey_id)
        deletion = await self._delete(survey_id, tenant_id=survey.tenant_id)
        self.loaders.surveys_by_tenant.clear(survey.tenant_id)
        return deletion


__all__ = ["SurveyService"]
