"""
Shared fakes: scripted chat model, in-memory capability set, and knowledge index.

None of them touch the network, Milvus or an LLM API.
"""

import asyncio
from typing import Any

import pytest

from tripmate.agent.orchestrator import AgentDeps
from tripmate.agent.tools import Tool
from tripmate.schemas.knowledge import KnowledgeStats, SearchHit
from tripmate.schemas.events import DoneEvent, ErrorEvent, ToolEndEvent, ToolStartEvent


class FakeModel:
    """
    Scripted ChatModel. Each entry of rounds is one stream_with_tools call: a list of
    the tuples the real model yields; an Exception instance in the list is raised.
    """

    def __init__(self, rounds: list[list[Any]] | None = None, text: list[str] | None = None) -> None:
        self.rounds = list(rounds or [])
        self.text = list(text or [])
        self.calls: list[list[dict[str, Any]]] = []
        self.tool_names: list[list[str]] = []
        self.closed = False

    async def stream_with_tools(self, messages, tools):
        self.calls.append([dict(m) for m in messages])
        self.tool_names.append([t["function"]["name"] for t in tools])
        script = self.rounds.pop(0) if self.rounds else [("content_done",)]
        for item in script:
            if isinstance(item, Exception):
                raise item
            await asyncio.sleep(0)
            yield item

    async def stream_text(self, messages):
        self.calls.append([dict(m) for m in messages])
        for item in self.text:
            if isinstance(item, Exception):
                raise item
            await asyncio.sleep(0)
            yield item

    async def complete(self, messages):
        self.calls.append([dict(m) for m in messages])
        return "".join(t for t in self.text if isinstance(t, str))

    async def shutdown(self) -> None:
        self.closed = True


class FakeCapabilities:
    def __init__(self, tools: list[Tool] | None = None) -> None:
        self.tools = {t.name: t for t in tools or []}

    async def ensure_initialized(self) -> None:
        return None

    def list_tools(self) -> list[Tool]:
        return list(self.tools.values())

    def get(self, name: str) -> Tool | None:
        return self.tools.get(name)

    async def shutdown(self) -> None:
        return None


class FakeIndex:
    """KnowledgeIndex stand-in; records every similarity_search call."""

    def __init__(self, hits: list[SearchHit] | None = None, error: Exception | None = None) -> None:
        self.hits = hits or []
        self.error = error
        self.searches: list[dict[str, Any]] = []

    def similarity_search(self, query, *, top_k, threshold, city=None):
        self.searches.append({"query": query, "top_k": top_k, "threshold": threshold, "city": city})
        if self.error is not None:
            raise self.error
        return list(self.hits)

    def stats(self) -> KnowledgeStats:
        cities = sorted({h.metadata.get("city") for h in self.hits if h.metadata.get("city")})
        return KnowledgeStats(total_documents=len(self.hits), total_cities=len(cities), cities=cities)

    def shutdown(self) -> None:
        return None


def make_hit(name: str, city: str, similarity: float, content: str = "", **meta: Any) -> SearchHit:
    return SearchHit(
        id=name,
        content=content or f"{name} in {city}",
        metadata={"name": name, "city": city, **meta},
        similarity=similarity,
    )


def make_tool(name: str, handler, display_name: str | None = None) -> Tool:
    return Tool(name=name, description=f"{name} tool", handler=handler, display_name=display_name)


def assert_well_formed(events: list) -> None:
    """No orphan tool_end, nothing after done, and the stream ends with done."""
    started: set[str] = set()
    for i, event in enumerate(events):
        if isinstance(event, ToolStartEvent):
            started.add(event.id)
        elif isinstance(event, ToolEndEvent):
            assert event.id in started, f"tool_end {event.id} without tool_start"
        if isinstance(event, DoneEvent):
            assert i == len(events) - 1, "events after done"
        if isinstance(event, ErrorEvent):
            assert all(isinstance(e, DoneEvent) for e in events[i + 1:]), "events after error"
    assert events and isinstance(events[-1], DoneEvent)


@pytest.fixture
def make_deps():
    def _make(rounds=None, tools=None, index=None, text=None) -> AgentDeps:
        return AgentDeps(model=FakeModel(rounds, text), capabilities=FakeCapabilities(tools), index=index)

    return _make
