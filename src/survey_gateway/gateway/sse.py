"""Server-Sent Event endpoint relaying notification bus events."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from ..auth.permissions import Permission
from ..events.bus import BusEvent, Predicate, Subscription
from ..utils.errors import Unauthenticated
from ..utils.logging import get_logger
from .context import RequestContext

logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["sse"])


def format_event(event: BusEvent) -> str:
    payload = event.model_dump(mode="json")
    return "".join(
        [
            f"id: {event.event_id}\n",
            f"event: {event.topic}\n",
            f"data: {json.dumps(payload)}\n\n",
        ]
    )


def tenant_predicate(context: RequestContext) -> Predicate | None:
    """Restrict delivery to the caller's tenant unless they may see every tenant."""
    if context.gate.has_permission(Permission.CROSS_TENANT):
        return None
    tenant_id = context.tenant_id

    def same_tenant(event: BusEvent) -> bool:
        return tenant_id is not None and event.tenant_id == tenant_id

    return same_tenant


async def event_stream(subscription: Subscription) -> AsyncIterator[bytes]:
    async with subscription:
        async for event in subscription:
            yield format_event(event).encode("utf-8")


def parse_topics(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(topic.strip() for topic in raw.split(",") if topic.strip())


@router.get("/events", response_class=StreamingResponse, response_model=None)
async def stream_events(
    request: Request, topics: str | None = Query(default=None)
) -> StreamingResponse | JSONResponse:
    context = await request.app.state.contexts.build(
        request.headers.get("authorization"),
        client_ip=request.client.host if request.client else None,
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    if context.principal is None:
        error = Unauthenticated().payload()
        return JSONResponse(
            {"data": None, "errors": [error.as_json()]},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    subscription = await context.bus.subscribe(parse_topics(topics), tenant_predicate(context))
    logger.info(
        "gateway.events.subscribed",
        identity_id=context.principal.identity_id,
        topics=list(subscription.topics),
    )
    return StreamingResponse(
        event_stream(subscription),
        status_code=status.HTTP_200_OK,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


__all__ = ["event_stream", "format_event", "parse_topics", "router", "tenant_predicate"]
