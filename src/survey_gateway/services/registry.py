"""Per-request service container."""

from __future__ import annotations

from ..auth.api_keys import APIKeyHasher
from ..config.settings import AppSettings
from ..loaders.registry import RequestLoaders
from ..storage.base import BackingStore
from .analysis import AnalysisService
from .credentials import CredentialService
from .identities import IdentityService
from .questions import QuestionService
from .responses import ResponseService
from .sessions import SessionService
from .surveys import SurveyService
from .tenants import TenantService


class ServiceRegistry:
    """All services of one request, sharing that request's loaders."""

    def __init__(
        self,
        store: BackingStore,
        loaders: RequestLoaders,
        settings: AppSettings | None = None,
        *,
        hasher: APIKeyHasher | None = None,
    ) -> None:
        self.store = store
        self.loaders = loaders
        self.settings = settings or AppSettings()
        self.tenants = TenantService(store, loaders, self.settings)
        self.identities = IdentityService(store, loaders, self.settings)
        self.questions = QuestionService(store, loaders, self.settings)
        self.surveys = SurveyService(store, loaders, self.settings, questions=self.questions)
        self.sessions = SessionService(store, loaders, self.settings)
        self.responses = ResponseService(store, loaders, self.settings, sessions=self.sessions)
        self.credentials = CredentialService(store, loaders, self.settings, hasher=hasher)
        self.analysis = AnalysisService(store, loaders, self.settings)


__all__ = ["ServiceRegistry"]
