"""Helpers shared by resolver modules."""

from __future__ import annotations

from typing import Any

from ...models.entities import Survey, SurveyStatus, Tenant
from ...models.inputs import PageArguments
from ...utils.errors import NotFound
from ...utils.pagination import Pagination
from ..context import RequestContext


def page(context: RequestContext, arguments: PageArguments) -> Pagination:
    return Pagination.build(arguments.limit, arguments.offset, settings=context.settings.pagination)


async def visible_survey(context: RequestContext, survey_id: str) -> Survey:
    return await context.load_visible(context.loaders.surveys, survey_id, "Survey")


async def linked_survey(context: RequestContext, parent: Any) -> Survey:
    """Survey behind ``parent.survey_id``.

    Live surveys are public, as through ``publicSurvey``; any other survey is
    reported missing outside its tenant.
    """
    survey = await context.loaders.surveys.load(parent.survey_id)
    if survey is None:
        raise NotFound("Survey not found")
    if survey.status is SurveyStatus.ACTIVE or context.gate.can_access_tenant(survey.tenant_id):
        return survey
    raise NotFound("Survey not found")


async def survey_tenant(context: RequestContext, survey_id: str) -> str | None:
    survey = await context.loaders.surveys.load(survey_id)
    return survey.tenant_id if survey else context.tenant_id


def own_tenant(tenant: Tenant) -> str:
    """Tenant boundary of fields hanging off a ``Tenant`` parent."""
    return tenant.id


def row_tenant(parent: Any) -> str | None:
    return parent.tenant_id


def by_attribute(loader_name: str, attribute: str, label: str):
    """Field resolver loading ``parent.<attribute>`` through a request loader."""

    async def resolve(context: RequestContext, parent: Any) -> Any:
        key = getattr(parent, attribute)
        if key is None:
            return None
        loader = getattr(context.loaders, loader_name)
        value = await loader.load(key)
        if value is None:
            raise NotFound(f"{label} not found")
        return value

    return resolve


def children(loader_name: str, attribute: str = "id"):
    """Field resolver loading the children of ``parent.<attribute>``."""

    async def resolve(context: RequestContext, parent: Any) -> Any:
        loader = getattr(context.loaders, loader_name)
        return await loader.load(getattr(parent, attribute)) or ()

    return resolve


__all__ = [
    "by_attribute",
    "children",
    "linked_survey",
    "own_tenant",
    "page",
    "row_tenant",
    "survey_tenant",
    "visible_survey",
]
