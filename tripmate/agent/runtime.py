"""
Reasoning/tool-use loop.

stream_agent_run drives rounds of model inference; when the model asks for
tools, all calls of that round run concurrently and their results are fed
back for the next round. Progress is reported as low-level RuntimeSignals,
each tagged with the runtime's own run_id; tripmate.agent.orchestrator maps
them onto the public event protocol.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal

from tripmate.agent.llm import ChatModel
from tripmate.agent.tools import Tool
from tripmate.core.cancellation import CancellationToken
from tripmate.core.config import MAX_AGENTIC_ROUNDS

logger = logging.getLogger(__name__)

SignalKind = Literal["chat_model_start", "chat_model_stream", "chat_model_end", "tool_start", "tool_end"]

ROUND_LIMIT_TEXT = "I could not finish within the allowed number of tool calls. Please try a narrower question."


@dataclass
class RuntimeSignal:
    kind: SignalKind
    run_id: str
    name: str = ""
    text: str = ""
    input: dict[str, Any] | None = None
    output: str = ""
    error: str | None = None


def _run_id() -> str:
    return uuid.uuid4().hex


async def _invoke_tool(tool: Tool | None, name: str, arguments: dict[str, Any]) -> tuple[str, str | None]:
    """Returns (output, error). Never raises for tool failures."""
    if tool is None:
        return "", f"Unknown tool: {name}"
    try:
        return await tool.invoke(arguments), None
    except Exception as e:
        logger.warning("[runtime:invoke_tool] %s failed: %s", name, e)
        return "", str(e) or type(e).__name__


async def _next_unless_cancelled(
    queue: asyncio.Queue, cancelled: asyncio.Event, token: CancellationToken
) -> Any:
    """Wait for the next queued item, raising OperationCancelled as soon as the token fires."""
    getter = asyncio.ensure_future(queue.get())
    waiter = asyncio.ensure_future(cancelled.wait())
    try:
        await asyncio.wait({getter, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not getter.done():
            getter.cancel()
    token.raise_if_cancelled()
    return getter.result()


async def stream_agent_run(
    model: ChatModel,
    tools: list[Tool],
    messages: list[dict[str, Any]],
    token: CancellationToken | None = None,
    max_rounds: int = MAX_AGENTIC_ROUNDS,
) -> AsyncIterator[RuntimeSignal]:
    token = token or CancellationToken()
    tool_map = {t.name: t for t in tools}
    openai_tools = [t.to_openai() for t in tools]
    convo = list(messages)
    cancelled = asyncio.Event()
    token.add_callback(cancelled.set)

    for round_no in range(1, max_rounds + 1):
        token.raise_if_cancelled()
        model_run = _run_id()
        yield RuntimeSignal("chat_model_start", model_run)
        calls: list[dict[str, Any]] | None = None
        content = ""
        async for item in model.stream_with_tools(convo, openai_tools):
            token.raise_if_cancelled()
            if item[0] == "content_delta":
                yield RuntimeSignal("chat_model_stream", model_run, text=item[1])
            elif item[0] == "tool_calls":
                calls, content = item[1], item[2] or ""
        yield RuntimeSignal("chat_model_end", model_run)
        if not calls:
            logger.info("[runtime:stream_agent_run] END rounds=%d", round_no)
            return

        logger.info("[runtime:stream_agent_run] round=%d tool_calls=%s", round_no, [c["name"] for c in calls])
        convo.append({
            "role": "assistant",
            "content": content,
            "tool_calls": [
                {"id": c["id"], "type": "function",
                 "function": {"name": c["name"], "arguments": json.dumps(c.get("arguments") or {}, ensure_ascii=False)}}
                for c in calls
            ],
        })

        # Every start is reported before any tool runs; ends arrive in completion order
        run_ids = [_run_id() for _ in calls]
        for call, run_id in zip(calls, run_ids):
            yield RuntimeSignal("tool_start", run_id, name=call["name"], input=call.get("arguments") or {})

        queue: asyncio.Queue[tuple[int, str, str | None]] = asyncio.Queue()

        async def _run(i: int, call: dict[str, Any]) -> None:
            output, error = await _invoke_tool(tool_map.get(call["name"]), call["name"], call.get("arguments") or {})
            await queue.put((i, output, error))

        tasks = [asyncio.create_task(_run(i, c)) for i, c in enumerate(calls)]
        results: dict[int, tuple[str, str | None]] = {}
        try:
            while len(results) < len(calls):
                i, output, error = await _next_unless_cancelled(queue, cancelled, token)
                results[i] = (output, error)
                yield RuntimeSignal("tool_end", run_ids[i], name=calls[i]["name"], output=output, error=error)
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()

        for i, call in enumerate(calls):
            output, error = results[i]
            convo.append({
                "role": "tool",
                "tool_call_id": call["id"],
                "content": output if error is None else f"Error: {error}",
            })

    logger.warning("[runtime:stream_agent_run] reached max_rounds=%d", max_rounds)
    final_run = _run_id()
    yield RuntimeSignal("chat_model_start", final_run)
    yield RuntimeSignal("chat_model_stream", final_run, text=ROUND_LIMIT_TEXT)
    yield RuntimeSignal("chat_model_end", final_run)


async def run_agent_to_completion(
    model: ChatModel,
    tools: list[Tool],
    messages: list[dict[str, Any]],
    token: CancellationToken | None = None,
    max_rounds: int = MAX_AGENTIC_ROUNDS,
) -> str:
    """Run the loop without streaming; returns the text of the final model round."""
    parts: list[str] = []
    async for signal in stream_agent_run(model, tools, messages, token, max_rounds):
        if signal.kind == "chat_model_start":
            parts = []
        elif signal.kind == "chat_model_stream":
            parts.append(signal.text)
    return "".join(parts).strip()
