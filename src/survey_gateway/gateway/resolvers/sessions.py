"""Respondent session operations and the ``Session`` object type.

Respondents may be anonymous. A session without an identity is held by
whoever knows its id; identified sessions belong to their identity and are
otherwise visible only to staff holding ``sessions:read`` in the survey's
tenant.
"""

from __future__ import annotations

from typing import Any

from ...auth.permissions import Permission
from ...models.entities import Session, Survey, SurveyStatus
from ...models.inputs import IdArguments, SessionListArguments, SurveyArguments
from ...utils.errors import NotFound, Unauthenticated
from ..context import RequestContext
from ..registry import FieldSpec, ObjectType, OperationRegistry, TypeRegistry
from .common import children, linked_survey, page, row_tenant, survey_tenant, visible_survey


async def _session_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    payload = {"id": value.id, "survey_id": value.survey_id, "status": value.status.value}
    return payload, await survey_tenant(context, value.survey_id)


async def _sessions_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    sessions = list(value)
    survey_id = sessions[0].survey_id if sessions else None
    payload = {"expired": [session.id for session in sessions], "survey_id": survey_id}
    tenant_id = await survey_tenant(context, survey_id) if survey_id else context.tenant_id
    return payload, tenant_id


# ==============================================================================
# PARTICIPATION RULES
# ==============================================================================


async def respondable_survey(context: RequestContext, survey_id: str) -> Survey:
    """Load a live survey the caller may answer.

    Anonymous callers need both the survey and its tenant to accept
    anonymous responses. Identified callers need ``responses:create`` in the
    survey's tenant unless the survey is open to anyone.
    """
    survey = await context.loaders.surveys.load(survey_id)
    if survey is None or survey.status is not SurveyStatus.ACTIVE:
        raise NotFound("Survey not found")
    tenant = await context.loaders.tenants.load(survey.tenant_id)
    open_to_anyone = (
        survey.settings.allow_anonymous
        and tenant is not None
        and tenant.settings.allow_anonymous_responses
    )
    if open_to_anyone:
        return survey
    if context.principal is None:
        raise Unauthenticated("This survey does not accept anonymous responses")
    context.gate.require_permission(Permission.RESPONSES_CREATE)
    if not context.gate.can_access_tenant(survey.tenant_id):
        raise NotFound("Survey not found")
    return survey


def holds_session(context: RequestContext, session: Session) -> bool:
    if session.identity_id is None:
        return True
    principal = context.principal
    return principal is not None and principal.identity_id == session.identity_id


async def accessible_session(
    context: RequestContext, session_id: str, *, staff_permission: str
) -> Session:
    """Load a session held by the caller, or one staff may reach with ``staff_permission``."""
    session = await context.loaders.sessions.load(session_id)
    if session is None:
        raise NotFound("Session not found")
    if holds_session(context, session):
        return session
    if context.gate.has_permission(staff_permission):
        tenant_id = await survey_tenant(context, session.survey_id)
        if context.gate.can_access_tenant(tenant_id):
            return session
    raise NotFound("Session not found")


def register(operations: OperationRegistry, types: TypeRegistry) -> None:
    session_type = types.register(ObjectType.from_model("Session", Session))
    session_type.add_field("survey", FieldSpec(linked_survey, "Survey"))

    async def session_responses(context: RequestContext, session: Session) -> Any:
        context.gate.require_tenant_scope(await survey_tenant(context, session.survey_id))
        return await context.loaders.responses_by_session.load(session.id) or ()

    session_type.add_field(
        "responses", FieldSpec(session_responses, "Response", permission=Permission.RESPONSES_READ)
    )
    types.add_field(
        "Survey",
        "sessions",
        FieldSpec(
            children("sessions_by_survey"),
            "Session",
            permission=Permission.SESSIONS_READ,
            tenant_boundary=row_tenant,
        ),
    )

    @operations.query("session", IdArguments, returns="Session")
    async def session(context: RequestContext, arguments: IdArguments) -> Any:
        return await accessible_session(
            context, arguments.id, staff_permission=Permission.SESSIONS_READ
        )

    @operations.query(
        "sessions", SessionListArguments, returns="Session", permission=Permission.SESSIONS_READ
    )
    async def sessions(context: RequestContext, arguments: SessionListArguments) -> Any:
        survey = await visible_survey(context, arguments.survey_id)
        return await context.services.sessions.find_many(
            page(context, arguments), survey_id=survey.id, status=arguments.status
        )

    @operations.mutation(
        "startSession",
        SurveyArguments,
        returns="Session",
        requires_auth=False,
        publishes="session.updated",
        event=_session_event,
    )
    async def start_session(context: RequestContext, arguments: SurveyArguments) -> Any:
        survey = await respondable_survey(context, arguments.survey_id)
        identity_id = context.principal.identity_id if context.principal else None
        return await context.services.sessions.start(survey.id, identity_id)

    @operations.mutation(
        "abandonSession",
        IdArguments,
        returns="Session",
        requires_auth=False,
        publishes="session.updated",
        event=_session_event,
    )
    async def abandon_session(context: RequestContext, arguments: IdArguments) -> Any:
        target = await accessible_session(
            context, arguments.id, staff_permission=Permission.SESSIONS_MANAGE
        )
        return await context.services.sessions.abandon(target.id)

    @operations.mutation(
        "expireSessions",
        SurveyArguments,
        returns="Session",
        permission=Permission.SESSIONS_MANAGE,
        publishes="session.updated",
        event=_sessions_event,
    )
    async def expire_sessions(context: RequestContext, arguments: SurveyArguments) -> Any:
        survey = await visible_survey(context, arguments.survey_id)
        return await context.services.sessions.expire_stale(survey.id)


__all__ = ["accessible_session", "holds_session", "register", "respondable_survey"]
