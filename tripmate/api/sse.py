"""
Server side of the event transport: AgentEvents → `data: <json>\\n\\n` frames.

The producer (agent run) and the response writer are decoupled by an
EventChannel. Once the channel is closed, writes are dropped instead of
raising, so a late event after client disconnect is harmless.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi.responses import StreamingResponse

from tripmate.core.cancellation import CancellationToken
from tripmate.schemas.events import AgentEvent, ContentEvent, DoneEvent, ErrorEvent, event_to_json

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(event: AgentEvent) -> str:
    return f"data: {event_to_json(event)}\n\n"


class EventChannel:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: AgentEvent) -> bool:
        """Queue one frame. Returns False (and drops it) if the channel is closed."""
        if self._closed:
            return False
        self._queue.put_nowait(encode_frame(event))
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        """Yield queued frames until the channel is closed and drained."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


async def pump_events(
    events: AsyncIterator[AgentEvent], channel: EventChannel, token: CancellationToken
) -> None:
    """Copy events into the channel until they run out, the token fires, or the channel closes."""
    try:
        async for event in events:
            if token.cancelled or not channel.write(event):
                break
    except Exception as e:
        logger.exception("[sse:pump_events] event source failed")
        channel.write(ErrorEvent(message=str(e) or type(e).__name__))
        channel.write(DoneEvent())
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
        channel.close()


def event_stream_response(events: AsyncIterator[AgentEvent], token: CancellationToken) -> StreamingResponse:
    """
    Stream events as SSE. If the client goes away before the run finishes, the
    token is cancelled and the producer task stopped.
    """
    channel = EventChannel()

    async def body() -> AsyncIterator[str]:
        producer = asyncio.create_task(pump_events(events, channel, token))
        try:
            async for frame in channel.frames():
                yield frame
        finally:
            if not producer.done():
                logger.info("[sse:event_stream_response] client disconnected; cancelling run")
                token.cancel()
                producer.cancel()
            channel.close()

    return StreamingResponse(body(), media_type="text/event-stream", headers=SSE_HEADERS)


async def content_only_events(fragments: AsyncIterator[str]) -> AsyncIterator[AgentEvent]:
    """Wrap a plain text stream: content events, then done (error then done on failure)."""
    try:
        async for fragment in fragments:
            if fragment:
                yield ContentEvent(content=fragment)
    except Exception as e:
        logger.exception("[sse:content_only_events] text stream failed")
        yield ErrorEvent(message=str(e) or type(e).__name__)
    yield DoneEvent()
