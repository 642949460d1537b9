"""Plain chat: travel-assistant prompt, history, no tools and no retrieval."""

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

from tripmate.agent.llm import ChatModel
from tripmate.agent.orchestrator import build_messages
from tripmate.schemas.messages import HistoryMessage

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    content: str
    success: bool
    error: str | None = None


async def chat(
    message: str, history: Sequence[HistoryMessage | dict[str, Any]], model: ChatModel
) -> ChatResult:
    try:
        content = await model.complete(build_messages(message, history, None, tools=False))
    except Exception as e:
        logger.exception("[chat:chat] completion failed")
        return ChatResult(content="", success=False, error=str(e) or type(e).__name__)
    return ChatResult(content=content, success=True)


async def chat_stream(
    message: str, history: Sequence[HistoryMessage | dict[str, Any]], model: ChatModel
) -> AsyncIterator[str]:
    """Yield answer fragments. Errors propagate to the caller."""
    async for fragment in model.stream_text(build_messages(message, history, None, tools=False)):
        yield fragment
