"""Response operations and the ``Response`` object type."""

from __future__ import annotations

from typing import Any

from ...auth.permissions import Permission
from ...models.entities import Deletion, Response
from ...models.inputs import (
    IdArguments,
    ResponseListArguments,
    SubmitResponseArguments,
    UpdateResponseArguments,
)
from ...utils.errors import NotFound
from ..context import RequestContext
from ..registry import FieldSpec, ObjectType, OperationRegistry, TypeRegistry
from .common import by_attribute, page, survey_tenant, visible_survey
from .sessions import accessible_session, holds_session, respondable_survey


async def _response_event(context: RequestContext, value: Any) -> tuple[dict[str, Any], str | None]:
    if isinstance(value, Deletion):
        return {"id": value.id}, value.tenant_id
    payload = {"id": value.id, "session_id": value.session_id, "survey_id": value.survey_id}
    return payload, await survey_tenant(context, value.survey_id)


async def visible_response(context: RequestContext, response_id: str) -> Response:
    response = await context.loaders.responses.load(response_id)
    if response is None:
        raise NotFound("Response not found")
    survey = await context.loaders.surveys.load(response.survey_id)
    if survey is None or not context.gate.can_access_tenant(survey.tenant_id):
        raise NotFound("Response not found")
    return response


def register(operations: OperationRegistry, types: TypeRegistry) -> None:
    response_type = types.register(ObjectType.from_model("Response", Response))
    response_type.add_field(
        "question", FieldSpec(by_attribute("questions", "question_id", "Question"), "Question")
    )

    async def response_session(context: RequestContext, response: Response) -> Any:
        return await accessible_session(
            context, response.session_id, staff_permission=Permission.SESSIONS_READ
        )

    response_type.add_field("session", FieldSpec(response_session, "Session"))

    @operations.query(
        "response", IdArguments, returns="Response", permission=Permission.RESPONSES_READ
    )
    async def response(context: RequestContext, arguments: IdArguments) -> Any:
        return await visible_response(context, arguments.id)

    @operations.query(
        "responses", ResponseListArguments, returns="Response", permission=Permission.RESPONSES_READ
    )
    async def responses(context: RequestContext, arguments: ResponseListArguments) -> Any:
        survey_id = arguments.survey_id
        if arguments.session_id is not None:
            session = await context.loaders.sessions.load(arguments.session_id)
            if session is None:
                raise NotFound("Session not found")
            survey_id = survey_id or session.survey_id
            if session.survey_id != survey_id:
                return []
        survey = await visible_survey(context, survey_id)
        return await context.services.responses.find_many(
            page(context, arguments), survey_id=survey.id, session_id=arguments.session_id
        )

    @operations.mutation(
        "submitResponse",
        SubmitResponseArguments,
        returns="Response",
        requires_auth=False,
        publishes="response.submitted",
        event=_response_event,
    )
    async def submit_response(context: RequestContext, arguments: SubmitResponseArguments) -> Any:
        session = await context.loaders.sessions.load(arguments.session_id)
        if session is None or not holds_session(context, session):
            raise NotFound("Session not found")
        await respondable_survey(context, session.survey_id)
        return await context.services.responses.submit(
            session.id, arguments.question_id, arguments.answer
        )

    @operations.mutation(
        "updateResponse",
        UpdateResponseArguments,
        returns="Response",
        permission=Permission.RESPONSES_UPDATE,
        publishes="response.updated",
        event=_response_event,
    )
    async def update_response(context: RequestContext, arguments: UpdateResponseArguments) -> Any:
        target = await visible_response(context, arguments.id)
        return await context.services.responses.update(target.id, arguments.answer)

    @operations.mutation(
        "deleteResponse",
        IdArguments,
        returns="Deletion",
        permission=Permission.RESPONSES_DELETE,
        publishes="response.updated",
        event=_response_event,
    )
    async def delete_response(context: RequestContext, arguments: IdArguments) -> Any:
        target = await visible_response(context, arguments.id)
        return await context.services.responses.delete(target.id)


__all__ = ["register", "visible_response"]
