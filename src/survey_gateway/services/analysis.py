"""Stored analysis results and computed survey statistics."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from ..models.entities import AnalysisResult, SurveyStats, new_id
from ..storage.base import Tables, eq
from ..utils.errors import Internal, NotFound, ValidationFailed
from ..utils.pagination import Pagination
from .base import BaseService, service_operation


class AnalysisService(BaseService[AnalysisResult]):
    table = Tables.ANALYSIS_RESULTS
    model = AnalysisResult
    label = "Analysis result"

    @service_operation
    async def record(
        self,
        survey_id: str,
        *,
        response_id: str | None = None,
        scores: Mapping[str, float] | None = None,
        insights: Iterable[str] = (),
    ) -> AnalysisResult:
        survey = await self.loaders.surveys.load(survey_id)
        if survey is None:
            raise NotFound("Survey not found")
        if response_id is not None:
            response = await self.loaders.responses.load(response_id)
            if response is None or response.survey_id != survey_id:
                raise ValidationFailed(
                    "Response does not belong to this survey", field="response_id"
                )
        result = await self._insert(
            AnalysisResult(
                id=new_id(),
                tenant_id=survey.tenant_id,
                survey_id=survey_id,
                response_id=response_id,
                scores=dict(scores or {}),
                insights=tuple(insights),
            )
        )
        self.loaders.analysis_by_survey.clear(survey_id)
        return result

    @service_operation
    async def find_many(self, pagination: Pagination, *, survey_id: str) -> list[AnalysisResult]:
        return await self._list([eq("survey_id", survey_id)], pagination)

    @service_operation
    async def survey_stats(self, survey_id: str) -> SurveyStats:
        stats = await self.loaders.survey_stats.load(survey_id)
        if stats is None:
            raise Internal(f"statistics unavailable for survey {survey_id}")
        return stats


__all__ = ["AnalysisService"]
