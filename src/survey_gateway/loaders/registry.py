"""The per-request loader set.

A :class:`RequestLoaders` instance is created by the context builder for
exactly one request and dropped with it. Instances must never be shared
between requests: the cache holds tenant data resolved for one caller.
"""

from __future__ import annotations

from collections.abc import Iterator

from ..config.settings import LoaderSettings
from ..models.entities import (
    AnalysisResult,
    Credential,
    Identity,
    Question,
    Response,
    Session,
    Survey,
    Tenant,
)
from ..storage.base import BackingStore, Tables
from .base import BatchLoader
from .entity import EntityLoader, RelationLoader
from .stats import SurveyStatsLoader


class RequestLoaders:
    """Fresh set of entity, relation and aggregate loaders for one request."""

    def __init__(self, store: BackingStore, settings: LoaderSettings | None = None) -> None:
        cfg = settings or LoaderSettings()
        size = cfg.batch_size_for

        self.tenants = EntityLoader(
            "tenants", store, Tables.TENANTS, Tenant, max_batch_size=size("tenants")
        )
        self.identities = EntityLoader(
            "identities", store, Tables.IDENTITIES, Identity, max_batch_size=size("identities")
        )
        self.surveys = EntityLoader(
            "surveys", store, Tables.SURVEYS, Survey, max_batch_size=size("surveys")
        )
        self.questions = EntityLoader(
            "questions", store, Tables.QUESTIONS, Question, max_batch_size=size("questions")
        )
        self.sessions = EntityLoader(
            "sessions", store, Tables.SESSIONS, Session, max_batch_size=size("sessions")
        )
        self.responses = EntityLoader(
            "responses", store, Tables.RESPONSES, Response, max_batch_size=size("responses")
        )
        self.credentials = EntityLoader(
            "credentials", store, Tables.CREDENTIALS, Credential, max_batch_size=size("credentials")
        )
        self.analysis_results = EntityLoader(
            "analysis_results",
            store,
            Tables.ANALYSIS_RESULTS,
            AnalysisResult,
            max_batch_size=size("analysis_results"),
        )

        self.questions_by_survey = RelationLoader(
            "questions_by_survey",
            store,
            Tables.QUESTIONS,
            Question,
            "survey_id",
            order_by="order",
            entity_loader=self.questions,
            max_batch_size=size("questions_by_survey"),
        )
        self.surveys_by_tenant = RelationLoader(
            "surveys_by_tenant",
            store,
            Tables.SURVEYS,
            Survey,
            "tenant_id",
            order_by="created_at",
            descending=True,
            entity_loader=self.surveys,
            max_batch_size=size("surveys_by_tenant"),
        )
        self.members_by_tenant = RelationLoader(
            "members_by_tenant",
            store,
            Tables.IDENTITIES,
            Identity,
            "tenant_id",
            order_by="email",
            entity_loader=self.identities,
            max_batch_size=size("members_by_tenant"),
        )
        self.credentials_by_tenant = RelationLoader(
            "credentials_by_tenant",
            store,
            Tables.CREDENTIALS,
            Credential,
            "tenant_id",
            order_by="created_at",
            descending=True,
            entity_loader=self.credentials,
            max_batch_size=size("credentials_by_tenant"),
        )
        self.sessions_by_survey = RelationLoader(
            "sessions_by_survey",
            store,
            Tables.SESSIONS,
            Session,
            "survey_id",
            order_by="created_at",
            descending=True,
            entity_loader=self.sessions,
            max_batch_size=size("sessions_by_survey"),
        )
        self.responses_by_session = RelationLoader(
            "responses_by_session",
            store,
            Tables.RESPONSES,
            Response,
            "session_id",
            order_by="created_at",
            entity_loader=self.responses,
            max_batch_size=size("responses_by_session"),
        )
        self.analysis_by_survey = RelationLoader(
            "analysis_by_survey",
            store,
            Tables.ANALYSIS_RESULTS,
            AnalysisResult,
            "survey_id",
            order_by="created_at",
            descending=True,
            entity_loader=self.analysis_results,
            max_batch_size=size("analysis_by_survey"),
        )
        self.survey_stats = SurveyStatsLoader(store, max_batch_size=size("survey_stats"))

        self._by_table: dict[str, EntityLoader] = {
            loader.table: loader
            for loader in (
                self.tenants,
                self.identities,
                self.surveys,
                self.questions,
                self.sessions,
                self.responses,
                self.credentials,
                self.analysis_results,
            )
        }

    def entity(self, table: str) -> EntityLoader:
        """Return the primary key loader for ``table``."""
        return self._by_table[table]

    def __iter__(self) -> Iterator[BatchLoader]:
        return iter(
            value for value in vars(self).values() if isinstance(value, BatchLoader)
        )

    def clear_all(self) -> None:
        for loader in self:
            loader.clear_all()


__all__ = ["RequestLoaders"]
