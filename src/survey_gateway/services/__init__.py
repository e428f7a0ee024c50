"""Per-entity services returning ``Result`` values."""

from .analysis import AnalysisService
from .base import BaseService, service_operation
from .credentials import CredentialService
from .identities import IdentityService
from .questions import QuestionService
from .registry import ServiceRegistry
from .responses import ResponseService, check_answer
from .sessions import SessionService
from .surveys import SurveyService
from .tenants import TenantService

__all__ = [
    "AnalysisService",
    "BaseService",
    "CredentialService",
    "IdentityService",
    "QuestionService",
    "ResponseService",
    "ServiceRegistry",
    "SessionService",
    "SurveyService",
    "TenantService",
    "check_answer",
    "service_operation",
]
