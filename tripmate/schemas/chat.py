"""Schemas for the chat endpoint."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tripmate.schemas.messages import HistoryMessage


class ChatRequest(BaseModel):
    """Request body for POST /api/chat. History is sent by the client on every turn."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., description="User message; trimmed, must not be empty.")
    history: list[HistoryMessage] = Field(default_factory=list, description="Prior turns, oldest first.")
    stream: bool = Field(True, description="Stream events over SSE instead of returning one JSON body.")
    use_agent: bool = Field(True, alias="useAgent", description="Run the tool-using agent; false uses plain chat.")

    @field_validator("message")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message must not be empty")
        return v


class ChatResponse(BaseModel):
    """Non-streaming response envelope, also used for every error response."""

    success: bool
    message: str | None = None
    error: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"success": True, "message": "Day 1: visit the old town."},
                {"success": False, "error": "Invalid JSON body"},
            ]
        }
    }
