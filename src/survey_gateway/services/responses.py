"""Answers submitted within respondent sessions."""

from __future__ import annotations

from ..config.settings import AppSettings
from ..loaders.registry import RequestLoaders
from ..models.entities import (
    Answer,
    ChoiceAnswer,
    Deletion,
    NumberAnswer,
    Question,
    QuestionType,
    Response,
    SessionStatus,
    Survey,
    SurveyStatus,
    TextAnswer,
    VoiceAnswer,
    new_id,
    utcnow,
)
from ..storage.base import BackingStore, Condition, Tables, eq
from ..utils.errors import NotFound, ValidationFailed
from ..utils.pagination import Pagination
from .base import BaseService, service_operation
from .sessions import SessionService

EXPECTED_ANSWER: dict[QuestionType, type] = {
    QuestionType.TEXT: TextAnswer,
    QuestionType.SINGLE_CHOICE: ChoiceAnswer,
    QuestionType.MULTIPLE_CHOICE: ChoiceAnswer,
    QuestionType.SCALE: NumberAnswer,
    QuestionType.RATING: NumberAnswer,
    QuestionType.VOICE: VoiceAnswer,
}


def check_answer(question: Question, answer: Answer, survey: Survey) -> None:
    """Raise ``ValidationFailed`` when ``answer`` does not fit ``question``."""
    expected = EXPECTED_ANSWER[question.type]
    if not isinstance(answer, expected):
        raise ValidationFailed(
            f"{question.type.value} questions expect a {expected.model_fields['type'].default} answer",
            field="answer",
        )
    rules = question.validation
    if isinstance(answer, TextAnswer):
        text = answer.text.strip()
        if question.required and not text:
            raise ValidationFailed("An answer is required", field="answer")
        if rules.min_length is not None and len(text) < rules.min_length:
            raise ValidationFailed(
                f"Answer must be at least {rules.min_length} characters", field="answer"
            )
        if rules.max_length is not None and len(text) > rules.max_length:
            raise ValidationFailed(
                f"Answer must be at most {rules.max_length} characters", field="answer"
            )
    elif isinstance(answer, ChoiceAnswer):
        if len(set(answer.choices)) != len(answer.choices):
            raise ValidationFailed("Choices must not repeat", field="answer")
        if question.type is QuestionType.SINGLE_CHOICE and len(answer.choices) != 1:
            raise ValidationFailed("Exactly one choice is allowed", field="answer")
        unknown = [choice for choice in answer.choices if choice not in question.options]
        if unknown:
            raise ValidationFailed(f"Unknown choice: {unknown[0]}", field="answer")
    elif isinstance(answer, NumberAnswer):
        if rules.min_value is not None and answer.value < rules.min_value:
            raise ValidationFailed(f"Value must be at least {rules.min_value:g}", field="answer")
        if rules.max_value is not None and answer.value > rules.max_value:
            raise ValidationFailed(f"Value must be at most {rules.max_value:g}", field="answer")
    elif isinstance(answer, VoiceAnswer) and not survey.settings.enable_voice:
        raise ValidationFailed("Voice responses are not enabled for this survey", field="answer")


class ResponseService(BaseService[Response]):
    table = Tables.RESPONSES
    model = Response
    label = "Response"
    conflict_messages = {
        ("session_id", "question_id"): "This question has already been answered in this session"
    }

    def __init__(
        self,
        store: BackingStore,
        loaders: RequestLoaders,
        settings: AppSettings | None = None,
        *,
        sessions: SessionService | None = None,
    ) -> None:
        super().__init__(store, loaders, settings)
        self.sessions = sessions or SessionService(store, loaders, self.settings)

    async def _question_in_survey(self, question_id: str, survey_id: str) -> Question:
        question = await self.loaders.questions.load(question_id)
        if question is None or question.survey_id != survey_id:
            raise ValidationFailed("Question does not belong to this survey", field="question_id")
        return question

    async def _survey(self, survey_id: str) -> Survey:
        survey = await self.loaders.surveys.load(survey_id)
        if survey is None:
            raise NotFound("Survey not found")
        return survey

    def _invalidate(self, response: Response) -> None:
        self.loaders.responses_by_session.clear(response.session_id)
        self.loaders.survey_stats.clear(response.survey_id)

    @service_operation
    async def find_many(
        self,
        pagination: Pagination,
        *,
        survey_id: str | None = None,
        session_id: str | None = None,
    ) -> list[Response]:
        conditions: list[Condition] = []
        if survey_id is not None:
            conditions.append(eq("survey_id", survey_id))
        if session_id is not None:
            conditions.append(eq("session_id", session_id))
        if not conditions:
            raise ValidationFailed("either survey_id or session_id is required")
        return await self._list(conditions, pagination, descending=False)

    @service_operation
    async def submit(self, session_id: str, question_id: str, answer: Answer) -> Response:
        """Record one answer and advance the session's progress."""
        session = await self.sessions.require_open(session_id)
        survey = await self._survey(session.survey_id)
        if survey.status is not SurveyStatus.ACTIVE:
            raise ValidationFailed("Survey is not accepting responses")
        question = await self._question_in_survey(question_id, survey.id)
        check_answer(question, answer, survey)
        response = await self._insert(
            Response(
                id=new_id(),
                session_id=session.id,
                question_id=question.id,
                survey_id=survey.id,
                answer=answer,
            )
        )
        self._invalidate(response)
        answered = await self.store.count(self.table, [eq("session_id", session.id)])
        (await self.sessions.record_progress(session.id, answered)).unwrap()
        return response

    @service_operation
    async def update(self, response_id: str, answer: Answer) -> Response:
        response = await self.require(response_id)
        session = await self.sessions.require(response.session_id)
        if session.status in (SessionStatus.ABANDONED, SessionStatus.EXPIRED):
            raise ValidationFailed(f"Responses of an {session.status.value} session cannot be edited")
        survey = await self._survey(response.survey_id)
        question = await self._question_in_survey(response.question_id, survey.id)
        check_answer(question, answer, survey)
        row = await self.store.increment(
            self.table,
            response_id,
            "edit_count",
            changes={"answer": answer.model_dump(), "updated_at": utcnow()},
        )
        if row is None:
            self.loader.clear(response_id)
            raise NotFound("Response not found")
        updated = self.model.model_validate(row)
        self.loader.prime(response_id, updated)
        self._invalidate(updated)
        return updated

    @service_operation
    async def delete(self, response_id: str) -> Deletion:
        response = await self.require(response_id)
        survey = await self._survey(response.survey_id)
        deletion = await self._delete(response_id, tenant_id=survey.tenant_id)
        self._invalidate(response)
        return deletion


__all__ = ["ResponseService", "check_answer"]
