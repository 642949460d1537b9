"""
HTTP client for the chat endpoint (httpx).

stream_chat always ends with done for transport failures (error then done),
so a reducer never waits on a dead stream. Cancellation ends it silently.
"""

import logging
from collections.abc import AsyncIterator, Sequence

import httpx

from tripmate.core.cancellation import CancellationToken
from tripmate.core.config import API_BASE, CHAT_TIMEOUT
from tripmate.schemas.chat import ChatResponse
from tripmate.schemas.events import AgentEvent, DoneEvent, ErrorEvent
from tripmate.schemas.messages import HistoryMessage
from tripmate.client.sse_parser import SSEFrameParser

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"


def _error_from_body(raw: bytes, status_code: int) -> str:
    try:
        return ChatResponse.model_validate_json(raw).error or f"HTTP {status_code}"
    except ValueError:
        return f"HTTP {status_code}"


class ChatApiClient:
    def __init__(
        self,
        base_url: str = API_BASE,
        timeout: float = CHAT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _payload(message: str, history: Sequence[HistoryMessage], stream: bool, use_agent: bool) -> dict:
        return {
            "message": message,
            "history": [h.model_dump() for h in history],
            "stream": stream,
            "useAgent": use_agent,
        }

    async def stream_chat(
        self,
        message: str,
        history: Sequence[HistoryMessage],
        token: CancellationToken | None = None,
        *,
        use_agent: bool = True,
    ) -> AsyncIterator[AgentEvent]:
        parser = SSEFrameParser()
        try:
            async with self._client.stream(
                "POST", CHAT_PATH, json=self._payload(message, history, True, use_agent)
            ) as response:
                if response.status_code != 200:
                    error = _error_from_body(await response.aread(), response.status_code)
                    logger.warning("[chat_client:stream_chat] status=%d error=%s", response.status_code, error)
                    yield ErrorEvent(message=error)
                    yield DoneEvent()
                    return
                async for chunk in response.aiter_bytes():
                    if token is not None and token.cancelled:
                        return
                    for event in parser.feed(chunk):
                        yield event
                for event in parser.flush():
                    yield event
        except httpx.HTTPError as e:
            if token is not None and token.cancelled:
                return
            logger.warning("[chat_client:stream_chat] transport failed: %s", e)
            yield ErrorEvent(message=f"Network error: {e}")
            yield DoneEvent()

    async def send(
        self, message: str, history: Sequence[HistoryMessage], *, use_agent: bool = True
    ) -> ChatResponse:
        """Non-streaming request. Error envelopes are returned, not raised."""
        response = await self._client.post(CHAT_PATH, json=self._payload(message, history, False, use_agent))
        try:
            return ChatResponse.model_validate_json(response.content)
        except ValueError:
            return ChatResponse(success=False, error=f"HTTP {response.status_code}")
