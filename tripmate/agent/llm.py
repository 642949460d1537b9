"""
Chat model client over any OpenAI-compatible endpoint (AsyncOpenAI).

One ChatModel per process; the underlying client is created on first use and
closed in the app lifespan.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from tripmate.core.config import (
    AGENT_MAX_TOKENS,
    LLM_API_TIMEOUT,
    LLM_TEMPERATURE,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    OPENAI_LLM_MODEL,
)
from tripmate.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


class ChatModel:
    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        base_url: str = OPENAI_BASE_URL,
        model: str = OPENAI_LLM_MODEL,
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = AGENT_MAX_TOKENS,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None

    def ensure_initialized(self):
        if self._client is None:
            if not self.api_key:
                raise ServiceUnavailableError("OPENAI_API_KEY must be set in .env")
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url or None,
                timeout=LLM_API_TIMEOUT,
            )
            logger.info("[llm:ensure_initialized] model=%s base_url=%s", self.model, self.base_url or "default")
        return self._client

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        """Single non-streaming completion without tools."""
        client = self.ensure_initialized()
        response = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        msg = response.choices[0].message if response.choices else None
        out = ((msg.content if msg else None) or "").strip()
        logger.info("[llm:complete] OUT response_len=%d", len(out))
        return out

    async def stream_text(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        """Stream answer text fragments, no tools."""
        client = self.ensure_initialized()
        stream = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content

    async def stream_with_tools(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[tuple]:
        """
        Chat with tools and stream the response. Yields:
        - ('content_delta', str) for each fragment of answer text;
        - ('content_done',) when the answer is complete (no tool_calls);
        - ('tool_calls', list[dict], content_str) when the model called tools.
        """
        client = self.ensure_initialized()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools
        stream = await client.chat.completions.create(**kwargs)
        content_parts: list[str] = []
        tool_calls_accum: dict[int, dict[str, Any]] = {}
        async for chunk in stream:
            if not chunk.choices:
                continue
            d = chunk.choices[0].delta
            if getattr(d, "content", None):
                content_parts.append(d.content)
                yield ("content_delta", d.content)
            for tc in getattr(d, "tool_calls", None) or []:
                idx = getattr(tc, "index", 0)
                acc = tool_calls_accum.setdefault(idx, {"id": "", "name": "", "arguments": ""})
                if getattr(tc, "id", None):
                    acc["id"] = tc.id
                fn = getattr(tc, "function", None)
                if fn is not None:
                    if getattr(fn, "name", None):
                        acc["name"] = fn.name
                    if getattr(fn, "arguments", None):
                        acc["arguments"] += fn.arguments
        full_content = "".join(content_parts)
        if tool_calls_accum:
            calls = []
            for i in sorted(tool_calls_accum):
                t = tool_calls_accum[i]
                try:
                    args = json.loads(t["arguments"]) if t["arguments"] else {}
                except json.JSONDecodeError:
                    args = {}
                calls.append({"id": t["id"], "name": t["name"], "arguments": args})
            logger.info("[llm:stream_with_tools] OUT tool_calls=%s", [c["name"] for c in calls])
            yield ("tool_calls", calls, full_content)
        else:
            logger.info("[llm:stream_with_tools] OUT content_done len=%d", len(full_content))
            yield ("content_done",)
