"""
Agent orchestrator: one user turn → ordered stream of AgentEvents.

gate → (retrieve) → reasoning/tool loop. Runtime signals are translated into
the public event protocol here; tool invocations get their own step ids so
repeated or parallel calls to the same tool stay distinguishable.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

from tripmate.agent.capabilities import CapabilityRegistry
from tripmate.agent.llm import ChatModel
from tripmate.agent.prompts import build_system_prompt
from tripmate.agent.runtime import stream_agent_run
from tripmate.agent.tools import get_tool_display_name
from tripmate.core.cancellation import CancellationToken
from tripmate.core.config import MAX_AGENTIC_ROUNDS
from tripmate.core.errors import OperationCancelled
from tripmate.schemas.events import (
    AgentEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from tripmate.schemas.knowledge import RetrievalContext
from tripmate.schemas.messages import HistoryMessage
from tripmate.services.retrieval_gate import extract_city_from_query, should_retrieve
from tripmate.services.retrieval_service import retrieve_knowledge
from tripmate.services.vector_store import KnowledgeIndex

logger = logging.getLogger(__name__)

THINKING_TEXT = "Thinking..."


@dataclass
class AgentDeps:
    """Long-lived collaborators, built once at startup and passed explicitly."""

    model: ChatModel
    capabilities: CapabilityRegistry
    index: KnowledgeIndex | None = None


def build_default_deps() -> AgentDeps:
    return AgentDeps(model=ChatModel(), capabilities=CapabilityRegistry(), index=KnowledgeIndex())


async def shutdown(deps: AgentDeps) -> None:
    await deps.model.shutdown()
    await deps.capabilities.shutdown()
    if deps.index is not None:
        deps.index.shutdown()


def retrieval_thinking_text(context: RetrievalContext) -> str:
    return f"Searching the travel knowledge base (found {len(context.results)} references)..."


async def prepare_context(
    query: str, deps: AgentDeps, token: CancellationToken | None = None
) -> RetrievalContext | None:
    """Run the gate and, when it passes, the retriever. None when retrieval was skipped."""
    if deps.index is None or not should_retrieve(query):
        return None
    return await retrieve_knowledge(query, deps.index, city=extract_city_from_query(query), token=token)


def build_messages(
    query: str,
    history: Sequence[HistoryMessage | dict[str, Any]],
    context: RetrievalContext | None,
    *,
    tools: bool = True,
) -> list[dict[str, Any]]:
    """System prompt, prior turns (role-tagged, oldest first), then the new user turn."""
    formatted = context.formatted_context if context and context.has_results else None
    messages: list[dict[str, Any]] = [{"role": "system", "content": build_system_prompt(formatted, tools=tools)}]
    for m in history:
        if isinstance(m, HistoryMessage):
            role, content = m.role, m.content
        else:
            role, content = (m.get("role") or "user"), (m.get("content") or "")
        if role in ("user", "assistant", "system") and content.strip():
            messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": query})
    return messages


async def execute_agent_stream(
    input: str,
    history: Sequence[HistoryMessage | dict[str, Any]],
    deps: AgentDeps,
    token: CancellationToken | None = None,
    max_rounds: int = MAX_AGENTIC_ROUNDS,
) -> AsyncIterator[AgentEvent]:
    """
    Yield the events of one agent turn.

    Ends with done on success, error then done on failure. Cancellation stops
    the stream silently.
    """
    token = token or CancellationToken()
    logger.info("[orchestrator:execute_agent_stream] IN  input=%r history_len=%d", input[:80], len(history))
    try:
        context = await prepare_context(input, deps, token)
        token.raise_if_cancelled()
        if context is not None and context.has_results:
            yield ThinkingEvent(content=retrieval_thinking_text(context))

        await deps.capabilities.ensure_initialized()
        tools = deps.capabilities.list_tools()
        messages = build_messages(input, history, context)

        # runtime run_id -> step id exposed to clients
        step_ids: dict[str, str] = {}
        async for signal in stream_agent_run(deps.model, tools, messages, token, max_rounds):
            token.raise_if_cancelled()
            if signal.kind == "chat_model_start":
                yield ThinkingEvent(content=THINKING_TEXT)
            elif signal.kind == "chat_model_stream":
                if signal.text:
                    yield ContentEvent(content=signal.text)
            elif signal.kind == "tool_start":
                step_id = uuid.uuid4().hex[:12]
                step_ids[signal.run_id] = step_id
                tool = deps.capabilities.get(signal.name)
                yield ToolStartEvent(
                    id=step_id,
                    name=signal.name,
                    display_name=tool.display_name if tool else get_tool_display_name(signal.name),
                    input=signal.input or {},
                )
            elif signal.kind == "tool_end":
                step_id = step_ids.pop(signal.run_id, None)
                if step_id is None:
                    logger.warning("[orchestrator:execute_agent_stream] tool_end for unknown run %s dropped",
                                   signal.run_id)
                    continue
                yield ToolEndEvent(id=step_id, name=signal.name, output=signal.output, error=signal.error)
        yield DoneEvent()
        logger.info("[orchestrator:execute_agent_stream] END")
    except OperationCancelled:
        logger.info("[orchestrator:execute_agent_stream] cancelled")
    except Exception as e:
        logger.exception("[orchestrator:execute_agent_stream] agent run failed")
        yield ErrorEvent(message=str(e) or type(e).__name__)
        yield DoneEvent()
