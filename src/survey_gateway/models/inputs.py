"""Typed argument models for every exposed operation.

The orchestrator validates raw operation arguments into one of these models
exactly once; services only ever receive validated values.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .entities import (
    Answer,
    QuestionRules,
    QuestionType,
    Role,
    SessionStatus,
    SurveyStatus,
)

MAX_QUESTIONS_PER_SURVEY = 100
MIN_CHOICE_OPTIONS = 2
MAX_CHOICE_OPTIONS = 20
DEFAULT_SCALE_RANGE = (1.0, 5.0)


class Arguments(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class NoArguments(Arguments):
    pass


class IdArguments(Arguments):
    id: str = Field(min_length=1)


class PageArguments(Arguments):
    limit: int | None = None
    offset: int = Field(default=0, ge=0)


# ==============================================================================
# TENANTS & IDENTITIES
# ==============================================================================


class TenantSettingsInput(Arguments):
    """Partial settings update; omitted keys keep their current value."""

    allow_self_registration: bool | None = None
    default_role: Role | None = None
    require_email_verification: bool | None = None
    data_retention_days: int | None = Field(default=None, ge=30, le=2555)
    enable_audit_logs: bool | None = None
    allow_anonymous_responses: bool | None = None
    enable_voice_recording: bool | None = None
    max_surveys_per_user: int | None = Field(default=None, ge=1, le=1000)
    enable_sso: bool | None = None
    sso_provider: str | None = None

    @field_validator("default_role")
    @classmethod
    def _assignable_default_role(cls, value: Role | None) -> Role | None:
        if value in (Role.VIEWER, Role.SYSTEM_ADMIN):
            raise ValueError("default_role must be USER, ANALYST or TENANT_ADMIN")
        return value

    @model_validator(mode="after")
    def _sso_requires_provider(self) -> TenantSettingsInput:
        if self.enable_sso and not self.sso_provider:
            raise ValueError("sso_provider is required when enable_sso is set")
        return self

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_none=True)


class TenantArguments(Arguments):
    id: str | None = None


class TenantListArguments(PageArguments):
    search: str | None = None
    is_active: bool | None = None


class CreateTenantArguments(Arguments):
    name: str = Field(min_length=1, max_length=100)
    settings: TenantSettingsInput | None = None
    is_trial: bool = False


class UpdateTenantSettingsArguments(Arguments):
    id: str | None = None
    settings: TenantSettingsInput


class IdentityListArguments(PageArguments):
    tenant_id: str | None = None
    role: Role | None = None
    search: str | None = None


class UpdateIdentityRoleArguments(Arguments):
    id: str = Field(min_length=1)
    role: Role


# ==============================================================================
# SURVEYS & QUESTIONS
# ==============================================================================


class SurveySettingsInput(Arguments):
    allow_anonymous: bool | None = None
    one_response_per_identity: bool | None = None
    enable_voice: bool | None = None
    show_progress_bar: bool | None = None
    allow_previous_navigation: bool | None = None
    session_timeout_minutes: int | None = Field(default=None, ge=1, le=24 * 60)

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_none=True)


class QuestionInput(Arguments):
    type: QuestionType
    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=1000)
    required: bool = False
    order: int | None = Field(default=None, ge=0)
    options: list[str] = Field(default_factory=list)
    validation: QuestionRules = Field(default_factory=QuestionRules)

    @model_validator(mode="after")
    def _check_shape(self) -> QuestionInput:
        check_question_shape(self.type, self.options, self.validation)
        if self.type.is_numeric and (
            self.validation.min_value is None or self.validation.max_value is None
        ):
            low, high = DEFAULT_SCALE_RANGE
            self.validation = self.validation.model_copy(
                update={
                    "min_value": self.validation.min_value if self.validation.min_value is not None else low,
                    "max_value": self.validation.max_value if self.validation.max_value is not None else high,
                }
            )
            check_question_shape(self.type, self.options, self.validation)
        return self


def check_question_shape(
    question_type: QuestionType, options: list[str] | tuple[str, ...], rules: QuestionRules
) -> None:
    """Raise ``ValueError`` when options or rules do not fit the question type."""
    if question_type.is_choice:
        if not MIN_CHOICE_OPTIONS <= len(options) <= MAX_CHOICE_OPTIONS:
            raise ValueError(
                f"choice questions need between {MIN_CHOICE_OPTIONS} and {MAX_CHOICE_OPTIONS} options"
            )
        if len(set(options)) != len(options):
            raise ValueError("choice options must be unique")
        if any(not option.strip() for option in options):
            raise ValueError("choice options must not be blank")
    elif options:
        raise ValueError(f"{question_type.value} questions do not take options")
    if (
        rules.min_value is not None
        and rules.max_value is not None
        and rules.min_value >= rules.max_value
    ):
        raise ValueError("min_value must be lower than max_value")
    if (
        rules.min_length is not None
        and rules.max_length is not None
        and rules.min_length > rules.max_length
    ):
        raise ValueError("min_length cannot exceed max_length")


class CreateSurveyArguments(Arguments):
    tenant_id: str | None = None
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    settings: SurveySettingsInput | None = None
    tags: list[str] = Field(default_factory=list, max_length=20)
    questions: list[QuestionInput] = Field(default_factory=list, max_length=MAX_QUESTIONS_PER_SURVEY)


class UpdateSurveyArguments(Arguments):
    id: str = Field(min_length=1)
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    settings: SurveySettingsInput | None = None
    tags: list[str] | None = Field(default=None, max_length=20)

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude={"id", "settings"}, exclude_none=True)


class SurveyListArguments(PageArguments):
    tenant_id: str | None = None
    status: SurveyStatus | None = None
    search: str | None = None
    tags: list[str] | None = None


class DuplicateSurveyArguments(Arguments):
    id: str = Field(min_length=1)
    title: str | None = Field(default=None, min_length=1, max_length=200)


class AddQuestionArguments(QuestionInput):
    survey_id: str = Field(min_length=1)


class UpdateQuestionArguments(Arguments):
    id: str = Field(min_length=1)
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=1000)
    required: bool | None = None
    order: int | None = Field(default=None, ge=0)
    options: list[str] | None = None
    validation: QuestionRules | None = None

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude={"id"}, exclude_none=True)


class SurveyArguments(Arguments):
    survey_id: str = Field(min_length=1)


class SurveyPageArguments(PageArguments):
    survey_id: str = Field(min_length=1)


# ==============================================================================
# SESSIONS & RESPONSES
# ==============================================================================


class SessionListArguments(PageArguments):
    survey_id: str = Field(min_length=1)
    status: SessionStatus | None = None


class SubmitResponseArguments(Arguments):
    session_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    answer: Answer


class UpdateResponseArguments(Arguments):
    id: str = Field(min_length=1)
    answer: Answer


class ResponseListArguments(PageArguments):
    survey_id: str | None = None
    session_id: str | None = None

    @model_validator(mode="after")
    def _requires_scope(self) -> ResponseListArguments:
        if not (self.survey_id or self.session_id):
            raise ValueError("either survey_id or session_id is required")
        return self


# ==============================================================================
# CREDENTIALS & ANALYSIS
# ==============================================================================


class CreateCredentialArguments(Arguments):
    name: str = Field(min_length=1, max_length=100)
    permissions: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class CredentialListArguments(PageArguments):
    tenant_id: str | None = None


class RecordAnalysisArguments(Arguments):
    survey_id: str = Field(min_length=1)
    response_id: str | None = None
    scores: dict[str, float] = Field(default_factory=dict)
    insights: list[str] = Field(default_factory=list)

    @field_validator("scores")
    @classmethod
    def _scores_in_unit_range(cls, value: dict[str, float]) -> dict[str, float]:
        for label, score in value.items():
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"score '{label}' must be between 0 and 1")
        return value


__all__ = [
    "AddQuestionArguments",
    "Arguments",
    "CreateCredentialArguments",
    "CreateSurveyArguments",
    "CreateTenantArguments",
    "CredentialListArguments",
    "DuplicateSurveyArguments",
    "IdArguments",
    "IdentityListArguments",
    "MAX_QUESTIONS_PER_SURVEY",
    "NoArguments",
    "PageArguments",
    "QuestionInput",
    "RecordAnalysisArguments",
    "ResponseListArguments",
    "SessionListArguments",
    "SubmitResponseArguments",
    "SurveyArguments",
    "SurveyListArguments",
    "SurveyPageArguments",
    "SurveySettingsInput",
    "TenantArguments",
    "TenantListArguments",
    "TenantSettingsInput",
    "UpdateIdentityRoleArguments",
    "UpdateQuestionArguments",
    "UpdateResponseArguments",
    "UpdateSurveyArguments",
    "UpdateTenantSettingsArguments",
    "check_question_shape",
]
