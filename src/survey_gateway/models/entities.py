"""Domain entities served by the survey gateway.

Every entity is an immutable Pydantic model validated from a backing store
row. Loaders and services hand these instances around within a request;
mutations always produce a fresh instance instead of editing one in place.

Key Responsibilities:
    - Define the enumerations for roles, survey, question and session states
    - Define the tagged answer union stored on responses
    - Merge tenant and survey settings over their defaults on validation

Collaborators:
    - Upstream: Services and loaders validate store rows into these models
    - Downstream: The orchestrator renders selected fields to JSON

Side Effects:
    - None: Pure data models

Thread Safety:
    - Thread-safe: Models are frozen
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

# ==============================================================================
# HELPERS
# ==============================================================================


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


# ==============================================================================
# ENUMERATIONS
# ==============================================================================


class Role(str, Enum):
    """Role tiers, declared lowest first."""

    VIEWER = "VIEWER"
    USER = "USER"
    ANALYST = "ANALYST"
    TENANT_ADMIN = "TENANT_ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"


class SurveyStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class QuestionType(str, Enum):
    TEXT = "text"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    SCALE = "scale"
    RATING = "rating"
    VOICE = "voice"

    @property
    def is_choice(self) -> bool:
        return self in (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE)

    @property
    def is_numeric(self) -> bool:
        return self in (QuestionType.SCALE, QuestionType.RATING)


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ABANDONED, SessionStatus.EXPIRED)


# ==============================================================================
# BASE MODEL
# ==============================================================================


class Entity(BaseModel):
    """Base class for stored entities."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str


# ==============================================================================
# TENANTS & IDENTITIES
# ==============================================================================


class TenantSettings(BaseModel):
    """Tenant level policy switches; unknown keys are preserved."""

    model_config = ConfigDict(frozen=True, extra="allow")

    allow_self_registration: bool = False
    default_role: Role = Role.USER
    require_email_verification: bool = True
    data_retention_days: int = 365
    enable_audit_logs: bool = True
    allow_anonymous_responses: bool = True
    enable_voice_recording: bool = False
    max_surveys_per_user: int = 10
    enable_sso: bool = False
    sso_provider: str | None = None


class Tenant(Entity):
    name: str
    settings: TenantSettings = Field(default_factory=TenantSettings)
    is_active: bool = True
    is_trial: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Identity(Entity):
    email: str
    display_name: str | None = None
    role: Role = Role.USER
    tenant_id: str | None = None
    permissions: tuple[str, ...] = ()
    is_active: bool = True
    email_verified: bool = False
    last_seen_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TenantCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    members: int
    surveys: int
    active_surveys: int


# ==============================================================================
# SURVEYS & QUESTIONS
# ==============================================================================


class SurveySettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    allow_anonymous: bool = True
    one_response_per_identity: bool = True
    enable_voice: bool = False
    show_progress_bar: bool = True
    allow_previous_navigation: bool = True
    session_timeout_minutes: int | None = None


class Survey(Entity):
    tenant_id: str
    created_by: str | None = None
    title: str
    description: str | None = None
    status: SurveyStatus = SurveyStatus.DRAFT
    settings: SurveySettings = Field(default_factory=SurveySettings)
    tags: tuple[str, ...] = ()
    published_at: datetime | None = None
    archived_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class QuestionRules(BaseModel):
    """Per-question answer constraints."""

    model_config = ConfigDict(frozen=True)

    min_value: float | None = None
    max_value: float | None = None
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=1)


class Question(Entity):
    survey_id: str
    type: QuestionType
    title: str
    description: str | None = None
    required: bool = False
    order: int = 0
    options: tuple[str, ...] = ()
    validation: QuestionRules = Field(default_factory=QuestionRules)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ==============================================================================
# SESSIONS & RESPONSES
# ==============================================================================


class Session(Entity):
    survey_id: str
    identity_id: str | None = None
    status: SessionStatus = SessionStatus.NOT_STARTED
    questions_answered: int = 0
    questions_total: int = 0
    progress_percent: float = 0.0
    started_at: datetime | None = None
    last_active_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    ended_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class TextAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ChoiceAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["choice"] = "choice"
    choices: tuple[str, ...] = Field(min_length=1)


class NumberAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["number"] = "number"
    value: float


class VoiceAnswer(BaseModel):
    """Reference to a recording held by the blob storage collaborator."""

    model_config = ConfigDict(frozen=True)

    type: Literal["voice"] = "voice"
    recording_url: str
    duration_seconds: float | None = Field(default=None, ge=0)
    transcript: str | None = None


Answer = Annotated[
    Union[TextAnswer, ChoiceAnswer, NumberAnswer, VoiceAnswer],
    Field(discriminator="type"),
]


class Response(Entity):
    session_id: str
    question_id: str
    survey_id: str
    answer: Answer
    quality: dict[str, Any] = Field(default_factory=dict)
    edit_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ==============================================================================
# CREDENTIALS
# ==============================================================================


class Credential(Entity):
    owner_id: str
    tenant_id: str
    name: str
    key_prefix: str
    key_hash: str
    permissions: tuple[str, ...] = ()
    is_active: bool = True
    revoked: bool = False
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    usage_count: int = 0
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    @property
    def usable(self) -> bool:
        return self.is_active and not self.revoked and not self.is_expired()


class CreatedCredential(BaseModel):
    """A freshly issued credential together with its one-time raw secret."""

    model_config = ConfigDict(frozen=True)

    credential: Credential
    secret: str


# ==============================================================================
# ANALYTICS
# ==============================================================================


class AnalysisResult(Entity):
    tenant_id: str
    survey_id: str
    response_id: str | None = None
    scores: dict[str, float] = Field(default_factory=dict)
    insights: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=utcnow)


class SurveyStats(BaseModel):
    """Aggregate counts for a survey; computed, never stored."""

    model_config = ConfigDict(frozen=True)

    survey_id: str
    total_sessions: int = 0
    completed_sessions: int = 0
    abandoned_sessions: int = 0
    total_responses: int = 0

    @property
    def completion_rate(self) -> float:
        if not self.total_sessions:
            return 0.0
        return round(self.completed_sessions / self.total_sessions, 4)


class Deletion(BaseModel):
    """Outcome of a delete operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str | None = None
    deleted: bool = True


__all__ = [
    "AnalysisResult",
    "Answer",
    "ChoiceAnswer",
    "CreatedCredential",
    "Credential",
    "Deletion",
    "Entity",
    "Identity",
    "NumberAnswer",
    "Question",
    "QuestionRules",
    "QuestionType",
    "Response",
    "Role",
    "Session",
    "SessionStatus",
    "Survey",
    "SurveySettings",
    "SurveyStats",
    "SurveyStatus",
    "Tenant",
    "TenantCounts",
    "TenantSettings",
    "TextAnswer",
    "VoiceAnswer",
    "new_id",
    "utcnow",
]
