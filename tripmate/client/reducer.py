"""
Client stream reducer: turns one event stream into the state of one assistant message.

ChatSession owns a conversation's message list and at most one active stream.
Cancelling freezes the placeholder as it is: content and tool-call steps
accumulated so far stay, nothing is rolled back, nothing more is applied.
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

from tripmate.core.cancellation import CancellationToken
from tripmate.schemas.events import (
    AgentEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from tripmate.schemas.messages import ChatMessage, HistoryMessage, ToolCallStep, utcnow

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Sequence[HistoryMessage], CancellationToken], AsyncIterator[AgentEvent]]
PersistFn = Callable[[ChatMessage], Awaitable[None] | None]
EventHook = Callable[[ChatMessage, AgentEvent], None]

DEFAULT_ERROR_TEXT = "Sorry, something went wrong while answering. Please try again."

_FINISHED = ("done", "cancelled", "errored")


def apply_event(message: ChatMessage, event: AgentEvent, error_text: str = DEFAULT_ERROR_TEXT) -> None:
    """Apply one event to a placeholder message in place."""
    if message.status == "pending":
        message.status = "streaming"

    if isinstance(event, DoneEvent):
        message.is_streaming = False
        if message.status not in ("errored", "cancelled"):
            message.status = "done"
        return
    if message.status in _FINISHED:
        return

    if isinstance(event, ThinkingEvent):
        return
    if isinstance(event, ToolStartEvent):
        message.tool_calls.append(
            ToolCallStep(
                id=event.id,
                tool_name=event.name,
                display_name=event.display_name,
                input=dict(event.input),
                status="running",
            )
        )
    elif isinstance(event, ToolEndEvent):
        step = next((s for s in message.tool_calls if s.id == event.id), None)
        if step is None or step.status in ("success", "error"):
            logger.debug("[reducer:apply_event] tool_end %s ignored", event.id)
            return
        step.output = event.output
        step.error = event.error
        step.status = "error" if event.error else "success"
        step.end_time = utcnow()
    elif isinstance(event, ContentEvent):
        message.content += event.content
    elif isinstance(event, ErrorEvent):
        if not message.content:
            message.content = error_text
        else:
            message.error = event.message
        message.is_streaming = False
        message.status = "errored"


class StreamHandle:
    """Handle on one in-flight assistant message."""

    def __init__(self, session: "ChatSession", message: ChatMessage, token: CancellationToken) -> None:
        self._session = session
        self.message = message
        self.token = token
        self.task: asyncio.Task | None = None

    @property
    def message_id(self) -> str:
        return self.message.id

    @property
    def done(self) -> bool:
        return self.task is None or self.task.done()

    def cancel(self) -> None:
        self._session._cancel_handle(self)

    async def wait(self) -> ChatMessage:
        if self.task is not None:
            await asyncio.wait({self.task})
        return self.message


class ChatSession:
    def __init__(
        self,
        send: SendFn,
        persist: PersistFn | None = None,
        on_event: EventHook | None = None,
        error_text: str = DEFAULT_ERROR_TEXT,
    ) -> None:
        self._send = send
        self._persist = persist
        self._on_event = on_event
        self.error_text = error_text
        self.messages: list[ChatMessage] = []
        self._active: StreamHandle | None = None

    @property
    def active(self) -> StreamHandle | None:
        return self._active

    def history(self, upto: int | None = None) -> list[HistoryMessage]:
        msgs = self.messages if upto is None else self.messages[:upto]
        return [m.to_history() for m in msgs if m.content]

    def start(self, content: str) -> StreamHandle:
        """Append the user turn and a placeholder, then stream into it. Must run inside an event loop."""
        self.cancel()
        history = self.history()
        self.messages.append(ChatMessage(role="user", content=content))
        return self._start_stream(content, history)

    async def send_message(self, content: str) -> ChatMessage:
        return await self.start(content).wait()

    def regenerate(self, message_id: str) -> StreamHandle:
        """
        Drop the target assistant message and everything after it, then answer
        its user turn again using only the history before that turn.
        """
        idx = next((i for i, m in enumerate(self.messages) if m.id == message_id), None)
        if idx is None:
            raise KeyError(message_id)
        user_idx = next((i for i in range(idx - 1, -1, -1) if self.messages[i].role == "user"), None)
        if self.messages[idx].role != "assistant" or user_idx is None:
            raise ValueError(f"message {message_id} is not an answer to a user turn")
        self.cancel()
        content = self.messages[user_idx].content
        history = self.history(user_idx)
        del self.messages[idx:]
        return self._start_stream(content, history)

    def cancel(self) -> None:
        if self._active is not None:
            self._cancel_handle(self._active)

    def _start_stream(self, content: str, history: list[HistoryMessage]) -> StreamHandle:
        placeholder = ChatMessage(role="assistant", content="", is_streaming=True, status="pending")
        self.messages.append(placeholder)
        handle = StreamHandle(self, placeholder, CancellationToken())
        self._active = handle
        handle.task = asyncio.get_running_loop().create_task(self._consume(handle, content, history))
        return handle

    def _cancel_handle(self, handle: StreamHandle) -> None:
        if handle.token.cancelled:
            return
        handle.token.cancel()
        msg = handle.message
        if msg.status not in ("done", "errored"):
            msg.is_streaming = False
            msg.status = "cancelled"
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        if self._active is handle:
            self._active = None
        logger.info("[reducer:cancel] message=%s frozen content_len=%d", msg.id, len(msg.content))

    def _apply(self, handle: StreamHandle, event: AgentEvent) -> None:
        apply_event(handle.message, event, self.error_text)
        if self._on_event is not None:
            self._on_event(handle.message, event)

    async def _consume(self, handle: StreamHandle, content: str, history: list[HistoryMessage]) -> None:
        msg = handle.message
        token = handle.token
        try:
            async with contextlib.aclosing(self._send(content, history, token)) as events:
                async for event in events:
                    if token.cancelled:
                        return
                    self._apply(handle, event)
                    if isinstance(event, DoneEvent):
                        await self._persist_message(msg)
                        return
            if not token.cancelled and msg.is_streaming:
                # Stream closed without done
                msg.is_streaming = False
                if msg.status not in _FINISHED:
                    msg.status = "done"
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
        except Exception as e:
            if token.cancelled:
                return
            logger.warning("[reducer:consume] send failed: %s", e)
            self._apply(handle, ErrorEvent(message=str(e) or type(e).__name__))
        finally:
            if self._active is handle:
                self._active = None

    async def _persist_message(self, msg: ChatMessage) -> None:
        if self._persist is None:
            return
        try:
            result = self._persist(msg)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("[reducer:persist] hook failed for %s: %s", msg.id, e)
