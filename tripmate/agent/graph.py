"""
LangGraph agent for non-streaming callers: gate → (retrieve) → reason → END.

Collaborators travel in config["configurable"]["deps"], so the compiled graph
is built once and shared.
"""

import logging
from dataclasses import dataclass
from typing import Literal, TypedDict

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from tripmate.agent.orchestrator import AgentDeps, build_messages
from tripmate.agent.runtime import run_agent_to_completion
from tripmate.schemas.knowledge import RetrievalContext
from tripmate.services.retrieval_gate import classify_query, extract_city_from_query
from tripmate.services.retrieval_service import retrieve_knowledge

logger = logging.getLogger(__name__)


class AgentState(TypedDict):
    query: str
    history: list
    should_retrieve: bool
    context: RetrievalContext | None
    answer: str


@dataclass
class AgentResult:
    content: str
    success: bool
    error: str | None = None


def _deps(config: RunnableConfig) -> AgentDeps:
    return config["configurable"]["deps"]


def _gate(state: AgentState, config: RunnableConfig) -> dict:
    """Node 1: decide whether to look up the knowledge base."""
    decision = classify_query(state["query"])
    retrieve = decision.retrieve and _deps(config).index is not None
    logger.info("[graph:gate] query=%r retrieve=%s reason=%s", state["query"][:80], retrieve, decision.reason)
    return {"should_retrieve": retrieve}


async def _retrieve(state: AgentState, config: RunnableConfig) -> dict:
    """Node 2: thresholded knowledge lookup, filtered by the city in the query."""
    query = state["query"]
    context = await retrieve_knowledge(query, _deps(config).index, city=extract_city_from_query(query))
    logger.info("[graph:retrieve] OUT results=%d", len(context.results))
    return {"context": context}


async def _reason(state: AgentState, config: RunnableConfig) -> dict:
    """Node 3: tool-using model loop until a final answer."""
    deps = _deps(config)
    await deps.capabilities.ensure_initialized()
    messages = build_messages(state["query"], state["history"], state.get("context"))
    answer = await run_agent_to_completion(deps.model, deps.capabilities.list_tools(), messages)
    logger.info("[graph:reason] OUT answer_len=%d", len(answer))
    return {"answer": answer}


def _route_after_gate(state: AgentState) -> Literal["retrieve", "reason"]:
    return "retrieve" if state.get("should_retrieve") else "reason"


def build_graph():
    graph = StateGraph(AgentState)

    graph.add_node("gate", _gate)
    graph.add_node("retrieve", _retrieve)
    graph.add_node("reason", _reason)

    graph.set_entry_point("gate")
    graph.add_conditional_edges("gate", _route_after_gate)
    graph.add_edge("retrieve", "reason")
    graph.add_edge("reason", END)

    return graph.compile()


_compiled = None


def get_graph():
    global _compiled
    if _compiled is None:
        _compiled = build_graph()
    return _compiled


async def execute_agent(input: str, history: list, deps: AgentDeps) -> AgentResult:
    """Run one agent turn to completion. Failures are reported in the result, not raised."""
    logger.info("[graph:execute_agent] START input=%r history_len=%d", input[:80], len(history))
    initial: AgentState = {
        "query": input,
        "history": list(history),
        "should_retrieve": False,
        "context": None,
        "answer": "",
    }
    try:
        final = await get_graph().ainvoke(initial, config={"configurable": {"deps": deps}})
    except Exception as e:
        logger.exception("[graph:execute_agent] agent run failed")
        return AgentResult(content="", success=False, error=str(e) or type(e).__name__)
    answer = (final.get("answer") or "").strip()
    logger.info("[graph:execute_agent] END answer_len=%d", len(answer))
    return AgentResult(content=answer, success=True)
