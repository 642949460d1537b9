# POI knowledge loader. No embeddings, no vector DB, no chunking; text is only tidied.
# Single place for "knowledge.jsonl line → Document".

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from tripmate.core.config import KNOWLEDGE_FILE
from tripmate.schemas.knowledge import Document, POIRecord
from tripmate.services.text_processing import clean_text

logger = logging.getLogger(__name__)

SOURCE_NAME = "knowledge.jsonl"


@dataclass
class LoadResult:
    documents: list[Document] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def format_poi_content(poi: POIRecord) -> str:
    """Render a POI as the markdown text that gets embedded."""
    lines = [f"# {poi.name}（{poi.city}）", "", "## 基本信息"]
    if poi.tags:
        lines.append(f"- 标签：{'、'.join(poi.tags)}")
    if poi.rating is not None:
        reviews = f"（{poi.review_count} 条评论）" if poi.review_count is not None else ""
        lines.append(f"- 评分：{poi.rating:g} 分{reviews}")
    if poi.play_time:
        lines.append(f"- 建议游玩时长：{poi.play_time}")
    if poi.open_time:
        lines.append(f"- 开放时间：{poi.open_time}")
    lines.append("")

    lines.extend(["## 景点介绍", clean_text(poi.intro), ""])

    comments = [c for c in (clean_text(c) for c in poi.top_comments) if c]
    if comments:
        lines.append("## 游客评价")
        for i, comment in enumerate(comments):
            lines.append(comment)
            if i < len(comments) - 1:
                lines.append("---")
    return "\n".join(lines)


def extract_metadata(poi: POIRecord) -> dict:
    return {
        "name": poi.name,
        "city": poi.city,
        "tags": list(poi.tags),
        "rating": poi.rating,
        "review_count": poi.review_count,
        "source": SOURCE_NAME,
    }


def load_poi_documents(path: str | Path = KNOWLEDGE_FILE) -> LoadResult:
    """
    Parse a JSONL file of POIs. Bad lines (invalid JSON, missing name/city/intro)
    are recorded in errors and skipped.

    Raises:
        FileNotFoundError: If path does not exist.
    """
    target = Path(path)
    if not target.is_file():
        raise FileNotFoundError(f"Knowledge file not found: {target}")

    result = LoadResult()
    with target.open(encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                poi = POIRecord.model_validate(json.loads(line))
            except json.JSONDecodeError as e:
                result.errors.append(f"line {line_no}: invalid JSON ({e.msg})")
                continue
            except ValidationError as e:
                fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
                result.errors.append(f"line {line_no}: invalid record ({', '.join(fields) or 'unknown'})")
                continue
            result.documents.append(
                Document(page_content=format_poi_content(poi), metadata=extract_metadata(poi))
            )

    logger.info("[loader:load_poi_documents] OUT path=%s documents=%d errors=%d",
                target, len(result.documents), len(result.errors))
    if result.errors:
        logger.warning("First load errors: %s", "; ".join(result.errors[:5]))
    return result


def get_city_list(documents: list[Document]) -> list[str]:
    return sorted({d.metadata.get("city") for d in documents if d.metadata.get("city")})
