"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from tripmate.agent.orchestrator import AgentDeps
from tripmate.api.handlers import handle_chat, handle_knowledge_stats

logger = logging.getLogger(__name__)
router = APIRouter()


def get_deps(request: Request) -> AgentDeps:
    return request.app.state.deps


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Tripmate travel assistant running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Chat ---

@router.post(
    "/api/chat",
    tags=["chat"],
    summary="Chat with the travel assistant",
    description=(
        "Body follows ChatRequest. stream=true returns text/event-stream frames "
        "(thinking, tool_start, tool_end, content, error, done); stream=false returns "
        "{success, message}. 400 on malformed JSON or invalid fields, 500 on failure."
    ),
)
async def post_chat(request: Request, deps: AgentDeps = Depends(get_deps)) -> Response:
    # Body is parsed by the handler so malformed JSON and bad fields map to distinct 400s
    return await handle_chat(request, deps)


# --- Knowledge ---

@router.get("/knowledge/stats", tags=["knowledge"], summary="Knowledge base statistics")
async def knowledge_stats(deps: AgentDeps = Depends(get_deps)) -> Response:
    return await handle_knowledge_stats(deps)
