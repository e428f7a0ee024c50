"""Analytics operations: stored analysis results and survey statistics."""

from __future__ import annotations

from typing import Any

from ...auth.permissions import Permission
from ...models.entities import AnalysisResult, SurveyStats
from ...models.inputs import RecordAnalysisArguments, SurveyArguments, SurveyPageArguments
from ...utils.errors import Internal
from ..context import RequestContext
from ..registry import FieldSpec, ObjectType, OperationRegistry, TypeRegistry
from .common import by_attribute, children, page, row_tenant, visible_survey


async def _analysis_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    payload = {"id": value.id, "survey_id": value.survey_id, "response_id": value.response_id}
    return payload, value.tenant_id


async def _stats(context: RequestContext, survey: Any) -> Any:
    stats = await context.loaders.survey_stats.load(survey.id)
    if stats is None:
        raise Internal(f"statistics unavailable for survey {survey.id}")
    return stats


def register(operations: OperationRegistry, types: TypeRegistry) -> None:
    result_type = types.register(ObjectType.from_model("AnalysisResult", AnalysisResult))
    result_type.add_field("survey", FieldSpec(by_attribute("surveys", "survey_id", "Survey"), "Survey"))
    result_type.add_field(
        "response", FieldSpec(by_attribute("responses", "response_id", "Response"), "Response")
    )
    types.register(ObjectType.from_model("SurveyStats", SurveyStats, extra=("completion_rate",)))
    types.add_field(
        "Survey",
        "stats",
        FieldSpec(_stats, "SurveyStats", permission=Permission.ANALYTICS_READ, tenant_boundary=row_tenant),
    )
    types.add_field(
        "Survey",
        "analysis",
        FieldSpec(
            children("analysis_by_survey"),
            "AnalysisResult",
            permission=Permission.ANALYTICS_READ,
            tenant_boundary=row_tenant,
        ),
    )

    @operations.query(
        "surveyStats", SurveyArguments, returns="SurveyStats", permission=Permission.ANALYTICS_READ
    )
    async def survey_stats(context: RequestContext, arguments: SurveyArguments) -> Any:
        survey = await visible_survey(context, arguments.survey_id)
        return await context.services.analysis.survey_stats(survey.id)

    @operations.query(
        "analysisResults",
        SurveyPageArguments,
        returns="AnalysisResult",
        permission=Permission.ANALYTICS_READ,
    )
    async def analysis_results(context: RequestContext, arguments: SurveyPageArguments) -> Any:
        survey = await visible_survey(context, arguments.survey_id)
        return await context.services.analysis.find_many(page(context, arguments), survey_id=survey.id)

    @operations.mutation(
        "recordAnalysis",
        RecordAnalysisArguments,
        returns="AnalysisResult",
        permission=Permission.ANALYTICS_WRITE,
        publishes="analysis.completed",
        event=_analysis_event,
    )
    async def record_analysis(context: RequestContext, arguments: RecordAnalysisArguments) -> Any:
        survey = await visible_survey(context, arguments.survey_id)
        return await context.services.analysis.record(
            survey.id,
            response_id=arguments.response_id,
            scores=arguments.scores,
            insights=arguments.insights,
        )


__all__ = ["register"]
