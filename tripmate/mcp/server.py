"""
Minimal tool server: exposes knowledge-base lookup over the HTTP tool-server
protocol consumed by CapabilityRegistry, so an agent (this one via
TOOL_SERVERS="kb=http://host:8000/mcp", or any other) can search on demand.

    GET  /tools          -> manifest
    POST /tools/{name}   body {"arguments": {...}} -> {"output": str} | {"error": str}
"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tripmate.services.retrieval_service import retrieve_knowledge

logger = logging.getLogger(__name__)

# Tool manifest for discovery
tools = [
    {
        "name": "search_knowledge",
        "description": (
            "Search the travel knowledge base (attractions, reviews, opening hours). "
            "Optionally restrict to one city."
        ),
        "display_name": "Search travel knowledge",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to look for"},
                "city": {"type": "string", "description": "Optional city name, e.g. 成都"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "knowledge_stats",
        "description": "Knowledge base status: number of entries and the cities covered.",
        "display_name": "Knowledge base status",
        "parameters": {"type": "object", "properties": {}},
    },
]

mcp_router = APIRouter(tags=["mcp"])


class ToolCallRequest(BaseModel):
    """Request body for a tool invocation."""
    arguments: dict[str, Any] = Field(default_factory=dict)


@mcp_router.get("/tools", summary="Tool manifest")
def list_tools() -> list[dict[str, Any]]:
    return tools


async def _search_knowledge(index, arguments: dict[str, Any]) -> str:
    query = (arguments.get("query") or "").strip()
    if not query:
        return "No query given."
    context = await retrieve_knowledge(query, index, city=(arguments.get("city") or "").strip() or None)
    return context.formatted_context


async def _knowledge_stats(index, arguments: dict[str, Any]) -> str:
    stats = await asyncio.to_thread(index.stats)
    cities = ", ".join(stats.cities) or "none"
    return f"Entries: {stats.total_documents}\nCities ({stats.total_cities}): {cities}"


_HANDLERS = {
    "search_knowledge": _search_knowledge,
    "knowledge_stats": _knowledge_stats,
}


@mcp_router.post(
    "/tools/{name}",
    summary="Invoke a tool",
    description="Tool errors are reported as {error} with status 200; unknown tools are 404.",
)
async def call_tool(name: str, body: ToolCallRequest, request: Request):
    handler = _HANDLERS.get(name)
    if handler is None:
        return JSONResponse(status_code=404, content={"error": f"Unknown tool: {name}"})
    index = getattr(request.app.state.deps, "index", None)
    if index is None:
        return {"error": "Knowledge index is not configured"}
    logger.info("MCP tool called: %s", name)
    try:
        return {"output": await handler(index, body.arguments)}
    except Exception as e:
        logger.warning("[mcp:call_tool] %s failed: %s", name, e)
        return {"error": str(e) or type(e).__name__}
