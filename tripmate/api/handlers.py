"""
API handlers: read the request body, call the agent/chat layer, map results and errors to HTTP.

Every non-streaming response and every error uses the ChatResponse envelope.
Validation happens before any streaming starts, so a bad request is always a plain 4xx.
"""

import asyncio
import logging

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from tripmate.agent.chat import chat, chat_stream
from tripmate.agent.graph import execute_agent
from tripmate.agent.orchestrator import AgentDeps, execute_agent_stream
from tripmate.api.sse import content_only_events, event_stream_response
from tripmate.core.cancellation import CancellationToken
from tripmate.core.errors import InvalidRequestError, ServiceUnavailableError
from tripmate.schemas.chat import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

INVALID_JSON_MESSAGE = "Invalid JSON body"


def envelope(status_code: int, *, message: str | None = None, error: str | None = None) -> JSONResponse:
    body = ChatResponse(success=error is None, message=message, error=error)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0] if e.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()))
    msg = first.get("msg", "invalid value")
    return f"Invalid request: {loc}: {msg}" if loc else f"Invalid request: {msg}"


async def parse_chat_request(request: Request) -> ChatRequest:
    """
    Raises:
        InvalidRequestError: malformed_json=True if the body is not JSON, else for field errors.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        raise InvalidRequestError(INVALID_JSON_MESSAGE, malformed_json=True) from e
    if not isinstance(payload, dict):
        raise InvalidRequestError("Invalid request: body must be a JSON object")
    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidRequestError(_validation_message(e)) from e


async def handle_chat(request: Request, deps: AgentDeps) -> Response:
    try:
        body = await parse_chat_request(request)
    except InvalidRequestError as e:
        logger.info("[api:handle_chat] rejected: %s", e.message)
        return envelope(400, error=e.message)

    logger.info("[api:handle_chat] IN  message=%r history_len=%d stream=%s use_agent=%s",
                body.message[:80], len(body.history), body.stream, body.use_agent)
    try:
        if body.stream:
            token = CancellationToken()
            if body.use_agent:
                events = execute_agent_stream(body.message, body.history, deps, token)
            else:
                events = content_only_events(chat_stream(body.message, body.history, deps.model))
            return event_stream_response(events, token)

        if body.use_agent:
            result = await execute_agent(body.message, body.history, deps)
        else:
            result = await chat(body.message, body.history, deps.model)
    except Exception as e:
        logger.exception("[api:handle_chat] failed")
        return envelope(500, error=str(e) or "Internal server error")

    if not result.success:
        return envelope(500, error=result.error or "Agent failed")
    logger.info("[api:handle_chat] OUT answer_len=%d", len(result.content))
    return envelope(200, message=result.content)


async def handle_knowledge_stats(deps: AgentDeps) -> Response:
    if deps.index is None:
        return envelope(503, error="Knowledge index is not configured")
    try:
        stats = await asyncio.to_thread(deps.index.stats)
    except ServiceUnavailableError as e:
        return envelope(503, error=e.message)
    except Exception as e:
        logger.warning("[api:handle_knowledge_stats] failed: %s", e)
        return envelope(503, error=f"Knowledge index unavailable: {e}")
    return JSONResponse(
        content={
            "totalDocuments": stats.total_documents,
            "totalCities": stats.total_cities,
            "cities": stats.cities,
        }
    )
