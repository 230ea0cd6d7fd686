"""FastAPI route for the streaming chat endpoint.

POST /api/v1/chat validates the request, resolves the project's connection
and then streams orchestration events as Server-Sent Events. Errors found
before streaming starts are returned as JSON ``{error, error_code}`` by the
QueryDeskError handler in main; errors after that arrive as a final
``error`` record in the stream.
"""

import json
import logging
from typing import AsyncGenerator

import anyio
from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from querydesk.api.dependencies import get_orchestration_loop, get_settings
from querydesk.config import QueryDeskConfig
from querydesk.errors import ValidationError
from querydesk.orchestrator.cancellation import CancellationToken
from querydesk.orchestrator.loop import ChatContext, OrchestrationLoop
from querydesk.orchestrator.stream_encoder import encode_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


async def _event_generator(
    request: Request,
    loop: OrchestrationLoop,
    ctx: ChatContext,
    cancel: CancellationToken,
) -> AsyncGenerator[dict, None]:
    """Generate SSE records from the orchestration run.

    Checks for client disconnect before each record. On disconnect, the
    cancellation token stops the loop before its next step and closing the
    run generator releases the tool gateway.

    Args:
        request: FastAPI request object for disconnect detection.
        loop: Orchestration loop.
        ctx: Prepared chat context.
        cancel: Token shared with the loop.

    Yields:
        Record dicts with 'event' and 'data' keys.
    """
    events = loop.run(ctx, cancel)
    try:
        async for event in events:
            if await request.is_disconnected():
                cancel.cancel("client disconnected")
                logger.info("Client disconnected from chat stream for %s", ctx.instance_ref)
                break
            yield encode_event(event)
    finally:
        # The task may already be cancelled by the SSE response; the gateway
        # must still be closed.
        with anyio.CancelScope(shield=True):
            await events.aclose()


@router.post("/chat")
async def chat(
    request: Request,
    loop: OrchestrationLoop = Depends(get_orchestration_loop),
    settings: QueryDeskConfig = Depends(get_settings),
) -> EventSourceResponse:
    """Answer a question about a project's data as a stream of events.

    Args:
        request: FastAPI request; body is
            ``{messages: [{role, content}], apiKey, projectRef}``.
        loop: Orchestration loop dependency.
        settings: Application configuration dependency.

    Returns:
        EventSourceResponse streaming text-update, tool-execution,
        step-progress and a final conversation-summary (or error) record.

    Raises:
        QueryDeskError: Any failure before streaming starts.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Request body must be valid JSON") from e

    access_token = request.cookies.get(settings.server.session_cookie)
    ctx = await loop.prepare(payload, access_token)
    logger.info("Starting chat stream for %s", ctx.instance_ref)

    return EventSourceResponse(
        _event_generator(request, loop, ctx, CancellationToken()),
        media_type="text/event-stream",
    )
