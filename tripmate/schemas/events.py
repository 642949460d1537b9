"""
Agent event protocol: the closed set of events one agent turn emits, in order.

Wire shape is one JSON object per SSE frame, tagged by "type". The plain
(non-agent) chat path also produces untagged {"content"}, {"error"} and
{"done": true} payloads; parse_event accepts both.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ThinkingEvent(_Event):
    type: Literal["thinking"] = "thinking"
    content: str


class ToolStartEvent(_Event):
    type: Literal["tool_start"] = "tool_start"
    id: str = Field(..., description="Correlation id for this invocation, unique within the turn.")
    name: str
    display_name: str = Field(..., alias="displayName")
    input: dict[str, Any] = Field(default_factory=dict)


class ToolEndEvent(_Event):
    type: Literal["tool_end"] = "tool_end"
    id: str
    name: str
    output: str = ""
    error: str | None = None


class ContentEvent(_Event):
    """Incremental answer fragment; consumers append, never replace."""

    type: Literal["content"] = "content"
    content: str


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str


class DoneEvent(_Event):
    """Terminal event: nothing follows it."""

    type: Literal["done"] = "done"
    done: Literal[True] = True


AgentEvent = Annotated[
    Union[ThinkingEvent, ToolStartEvent, ToolEndEvent, ContentEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(AgentEvent)


def event_to_json(event: _Event) -> str:
    """Serialize with wire aliases (displayName), dropping unset optionals such as tool_end.error."""
    return event.model_dump_json(by_alias=True, exclude_none=True)


def parse_event(payload: Any) -> AgentEvent | None:
    """Build an event from a decoded frame payload. Returns None for shapes that are not events."""
    if not isinstance(payload, dict):
        return None
    if "type" in payload:
        try:
            return _event_adapter.validate_python(payload)
        except ValidationError:
            return None
    # Untagged shapes from the plain chat path
    if payload.get("done") is True:
        return DoneEvent()
    if isinstance(payload.get("error"), str):
        return ErrorEvent(message=payload["error"])
    if isinstance(payload.get("content"), str):
        return ContentEvent(content=payload["content"])
    return None
