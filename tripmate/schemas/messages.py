"""Conversation messages and tool-call steps as held by a client."""

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]
ToolCallStatus = Literal["pending", "running", "success", "error"]
MessageStatus = Literal["pending", "streaming", "done", "cancelled", "errored"]


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryMessage(BaseModel):
    """History entry as sent over the wire: role and content only."""

    role: Role
    content: str


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    role: Role
    content: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    def to_history(self) -> HistoryMessage:
        return HistoryMessage(role=self.role, content=self.content)


class ToolCallStep(BaseModel):
    """One tool invocation shown under an assistant message. Updated to success/error exactly once."""

    id: str
    tool_name: str
    display_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: str | None = None
    error: str | None = None
    status: ToolCallStatus = "running"
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None


class ChatMessage(Message):
    tool_calls: list[ToolCallStep] = Field(default_factory=list)
    is_streaming: bool = False
    status: MessageStatus = "done"
    # Set when an error arrives after content has already streamed
    error: str | None = None
