"""Aggregate survey statistics loader."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence

from ..models.entities import SessionStatus, SurveyStats
from ..storage.base import BackingStore, Tables, in_
from .base import BatchLoader


class SurveyStatsLoader(BatchLoader[SurveyStats]):
    """Computes session and response counts for many surveys in two queries.

    Session and response mutations must clear the affected survey key.
    """

    def __init__(self, store: BackingStore, *, max_batch_size: int, name: str = "survey_stats") -> None:
        super().__init__(name, max_batch_size=max_batch_size)
        self._store = store

    async def _fetch(self, keys: Sequence[str]) -> Mapping[str, SurveyStats]:
        sessions = await self._store.query(Tables.SESSIONS, [in_("survey_id", keys)])
        responses = await self._store.query(Tables.RESPONSES, [in_("survey_id", keys)])
        totals: Counter[str] = Counter()
        completed: Counter[str] = Counter()
        abandoned: Counter[str] = Counter()
        for row in sessions:
            survey_id = row["survey_id"]
            totals[survey_id] += 1
            status = SessionStatus(row.get("status", SessionStatus.NOT_STARTED))
            if status is SessionStatus.COMPLETED:
                completed[survey_id] += 1
            elif status is SessionStatus.ABANDONED:
                abandoned[survey_id] += 1
        answered = Counter(row["survey_id"] for row in responses)
        return {
            key: SurveyStats(
                survey_id=key,
                total_sessions=totals[key],
                completed_sessions=completed[key],
                abandoned_sessions=abandoned[key],
                total_responses=answered[key],
            )
            for key in keys
        }


__all__ = ["SurveyStatsLoader"]
