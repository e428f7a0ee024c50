"""Survey questions."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from ..models.entities import Deletion, Question, QuestionRules, Survey, SurveyStatus, new_id
from ..models.inputs import MAX_QUESTIONS_PER_SURVEY, QuestionInput, check_question_shape
from ..storage.base import Tables, eq
from ..utils.errors import NotFound, ValidationFailed
from .base import BaseService, service_operation, validation_failure


class QuestionService(BaseService[Question]):
    table = Tables.QUESTIONS
    model = Question
    label = "Question"

    async def _editable_survey(self, survey_id: str) -> Survey:
        survey = await self.loaders.surveys.load(survey_id)
        if survey is None:
            raise NotFound("Survey not found")
        if survey.status is SurveyStatus.ARCHIVED:
            raise ValidationFailed("Archived surveys cannot be modified")
        return survey

    def build(self, survey_id: str, spec: QuestionInput, order: int) -> Question:
        return Question(
            id=new_id(),
            survey_id=survey_id,
            type=spec.type,
            title=spec.title,
            description=spec.description,
            required=spec.required,
            order=spec.order if spec.order is not None else order,
            options=tuple(spec.options),
            validation=spec.validation,
        )

    async def insert_all(self, questions: Sequence[Question]) -> list[Question]:
        """Insert already validated questions; store faults propagate to the caller."""
        inserted = [await self._insert(question) for question in questions]
        for survey_id in {question.survey_id for question in questions}:
            self.loaders.questions_by_survey.clear(survey_id)
        return inserted

    async def remove_all(self, survey_id: str) -> int:
        """Delete every question of ``survey_id``; store faults propagate."""
        rows = await self.store.query(self.table, [eq("survey_id", survey_id)])
        for row in rows:
            await self.store.delete(self.table, row["id"])
            self.loader.clear(row["id"])
        self.loaders.questions_by_survey.clear(survey_id)
        return len(rows)

    @service_operation
    async def for_survey(self, survey_id: str) -> tuple[Question, ...]:
        return await self.loaders.questions_by_survey.load(survey_id) or ()

    @service_operation
    async def add(self, survey_id: str, spec: QuestionInput) -> Question:
        await self._editable_survey(survey_id)
        existing = await self.loaders.questions_by_survey.load(survey_id) or ()
        if len(existing) >= MAX_QUESTIONS_PER_SURVEY:
            raise ValidationFailed(
                f"A survey can have at most {MAX_QUESTIONS_PER_SURVEY} questions"
            )
        next_order = max((question.order for question in existing), default=-1) + 1
        question = await self._insert(self.build(survey_id, spec, next_order))
        self.loaders.questions_by_survey.clear(survey_id)
        return question

    @service_operation
    async def update(self, question_id: str, changes: Mapping[str, Any]) -> Question:
        question = await self.require(question_id)
        await self._editable_survey(question.survey_id)
        values = dict(changes)
        try:
            rules = QuestionRules.model_validate(values.get("validation", question.validation))
        except ValidationError as exc:
            raise validation_failure(exc) from exc
        options = tuple(values.get("options", question.options))
        try:
            check_question_shape(question.type, options, rules)
        except ValueError as exc:
            raise ValidationFailed(str(exc), field="options") from exc
        values["validation"] = rules.model_dump()
        values["options"] = list(options)
        updated = await self._update(question_id, values)
        self.loaders.questions_by_survey.clear(question.survey_id)
        return updated

    @service_operation
    async def delete(self, question_id: str) -> Deletion:
        question = await self.require(question_id)
        survey = await self._editable_survey(question.survey_id)
        deletion = await self._delete(question_id, tenant_id=survey.tenant_id)
        self.loaders.questions_by_survey.clear(question.survey_id)
        return deletion


__all__ = ["QuestionService"]
