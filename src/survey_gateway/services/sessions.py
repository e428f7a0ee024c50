"""Respondent sessions and their state machine.

Sessions move ``not_started -> in_progress -> completed``; from any
non-terminal state they may also be abandoned or expire. Terminal states are
final and nothing returns to ``not_started``.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from ..models.entities import Session, SessionStatus, Survey, SurveyStatus, new_id, utcnow
from ..storage.base import Condition, Tables, eq, in_, lt
from ..utils.errors import Conflict, NotFound, ValidationFailed
from ..utils.pagination import Pagination
from .base import BaseService, service_operation

logger = structlog.get_logger(__name__)

TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.NOT_STARTED: frozenset(
        {SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.ABANDONED, SessionStatus.EXPIRED}
    ),
    SessionStatus.IN_PROGRESS: frozenset(
        {SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.ABANDONED, SessionStatus.EXPIRED}
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.ABANDONED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}

OPEN_STATUSES = (SessionStatus.NOT_STARTED, SessionStatus.IN_PROGRESS)


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


class SessionService(BaseService[Session]):
    table = Tables.SESSIONS
    model = Session
    label = "Session"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _survey(self, survey_id: str) -> Survey:
        survey = await self.loaders.surveys.load(survey_id)
        if survey is None:
            raise NotFound("Survey not found")
        return survey

    def timeout_for(self, survey: Survey) -> timedelta:
        minutes = survey.settings.session_timeout_minutes or self.settings.sessions.expiry_minutes
        return timedelta(minutes=minutes)

    def _invalidate(self, survey_id: str) -> None:
        self.loaders.sessions_by_survey.clear(survey_id)
        self.loaders.survey_stats.clear(survey_id)

    async def _move(self, session: Session, target: SessionStatus, **extra: object) -> Session:
        if not can_transition(session.status, target):
            raise ValidationFailed(
                f"Session cannot move from {session.status.value} to {target.value}"
            )
        now = utcnow()
        changes: dict[str, object] = {"status": target, "last_active_at": now, **extra}
        if target is SessionStatus.COMPLETED:
            changes.setdefault("completed_at", now)
        if target.is_terminal:
            changes.setdefault("ended_at", now)
        updated = await self._update(session.id, changes)
        self._invalidate(session.survey_id)
        if updated.status is not session.status:
            logger.info(
                "session.status_changed",
                session_id=session.id,
                previous=session.status.value,
                status=updated.status.value,
            )
        return updated

    async def require_open(self, session_id: str) -> Session:
        """Load a session that still accepts answers, expiring it lazily when idle."""
        session = await self.require(session_id)
        if session.status.is_terminal:
            raise ValidationFailed(f"Session is {session.status.value}")
        survey = await self._survey(session.survey_id)
        if session.last_active_at + self.timeout_for(survey) <= utcnow():
            await self._move(session, SessionStatus.EXPIRED)
            raise ValidationFailed("Session has expired")
        return session

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @service_operation
    async def find_many(
        self,
        pagination: Pagination,
        *,
        survey_id: str,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        conditions: list[Condition] = [eq("survey_id", survey_id)]
        if status is not None:
            conditions.append(eq("status", status))
        return await self._list(conditions, pagination)

    @service_operation
    async def start(self, survey_id: str, identity_id: str | None = None) -> Session:
        """Start a session, or resume the caller's open one."""
        survey = await self._survey(survey_id)
        if survey.status is not SurveyStatus.ACTIVE:
            raise ValidationFailed("Survey is not accepting responses")
        if identity_id is not None:
            mine = await self.store.query(
                self.table,
                [eq("survey_id", survey_id), eq("identity_id", identity_id)],
                order_by="created_at",
                descending=True,
            )
            for existing in self._from_rows(mine):
                if existing.status in OPEN_STATUSES:
                    self.loader.prime(existing.id, existing, replace=False)
                    return existing
                if (
                    existing.status is SessionStatus.COMPLETED
                    and survey.settings.one_response_per_identity
                ):
                    raise Conflict("You have already completed this survey")
        questions = await self.loaders.questions_by_survey.load(survey_id) or ()
        session = await self._insert(
            Session(
                id=new_id(),
                survey_id=survey_id,
                identity_id=identity_id,
                questions_total=len(questions),
            )
        )
        self._invalidate(survey_id)
        return session

    @service_operation
    async def record_progress(self, session_id: str, answered: int) -> Session:
        if answered < 0:
            raise ValidationFailed("answered must not be negative", field="answered")
        session = await self.require_open(session_id)
        total = session.questions_total
        percent = 100.0 if total == 0 else min(100.0, round(answered * 100.0 / total, 2))
        target = SessionStatus.COMPLETED if percent >= 100.0 else SessionStatus.IN_PROGRESS
        extra: dict[str, object] = {"questions_answered": answered, "progress_percent": percent}
        if session.started_at is None:
            extra["started_at"] = utcnow()
        return await self._move(session, target, **extra)

    @service_operation
    async def abandon(self, session_id: str) -> Session:
        session = await self.require(session_id)
        return await self._move(session, SessionStatus.ABANDONED)

    @service_operation
    async def expire_stale(self, survey_id: str, now: datetime | None = None) -> list[Session]:
        """Expire every open session of the survey idle for longer than its timeout."""
        survey = await self._survey(survey_id)
        cutoff = (now or utcnow()) - self.timeout_for(survey)
        rows = await self.store.query(
            self.table,
            [eq("survey_id", survey_id), in_("status", OPEN_STATUSES), lt("last_active_at", cutoff)],
        )
        expired: list[Session] = []
        for session in self._from_rows(rows):
            expired.append(await self._move(session, SessionStatus.EXPIRED))
        if expired:
            logger.info("session.expired", survey_id=survey_id, count=len(expired))
        return expired


__all__ = ["OPEN_STATUSES", "SessionService", "TRANSITIONS", "can_transition"]
