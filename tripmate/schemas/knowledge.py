"""Knowledge-base records, search hits and per-turn retrieval context."""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class POIRecord(BaseModel):
    """One line of knowledge.jsonl: a point of interest with reviews."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    city: str
    intro: str
    tags: list[str] = Field(default_factory=list)
    rating: float | None = None
    review_count: int | None = Field(None, alias="reviewCount")
    play_time: str | None = Field(None, alias="playTime")
    open_time: str | None = Field(None, alias="openTime")
    top_comments: list[str] = Field(default_factory=list, alias="topComments")

    @field_validator("name", "city", "intro")
    @classmethod
    def _required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


@dataclass
class Document:
    page_content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchHit:
    id: Any
    content: str
    metadata: dict[str, Any]
    similarity: float


@dataclass
class RetrievalSource:
    name: str
    city: str
    rating: float | None = None
    tags: list[str] | None = None


@dataclass
class RetrievalResult:
    content: str
    similarity: float
    source: RetrievalSource


@dataclass
class RetrievalContext:
    """Built once per turn before the agent runs; only ever injected into the system prompt."""

    query: str
    has_results: bool
    results: list[RetrievalResult]
    formatted_context: str


@dataclass
class KnowledgeStats:
    total_documents: int
    total_cities: int
    cities: list[str]
