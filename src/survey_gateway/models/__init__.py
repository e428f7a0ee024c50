"""Domain entities and operation argument models."""

from .entities import (
    AnalysisResult,
    Answer,
    ChoiceAnswer,
    CreatedCredential,
    Credential,
    Deletion,
    Identity,
    NumberAnswer,
    Question,
    QuestionRules,
    QuestionType,
    Response,
    Role,
    Session,
    SessionStatus,
    Survey,
    SurveySettings,
    SurveyStats,
    SurveyStatus,
    Tenant,
    TenantCounts,
    TenantSettings,
    TextAnswer,
    VoiceAnswer,
)

__all__ = [
    "AnalysisResult",
    "Answer",
    "ChoiceAnswer",
    "CreatedCredential",
    "Credential",
    "Deletion",
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
]
