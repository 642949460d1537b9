"""
Knowledge retrieval: thresholded similarity search and prompt-context formatting.

Retrieval never fails a turn: any embedding or index error degrades to an
empty context.
"""

import asyncio
import logging

from tripmate.core.cancellation import CancellationToken
from tripmate.core.config import MAX_CONTEXT_CHARS, RETRIEVAL_THRESHOLD, RETRIEVAL_TOP_K
from tripmate.schemas.knowledge import RetrievalContext, RetrievalResult, RetrievalSource, SearchHit
from tripmate.services.vector_store import KnowledgeIndex

logger = logging.getLogger(__name__)

NO_RESULTS_TEXT = "No relevant travel knowledge found."
UNAVAILABLE_TEXT = "Knowledge retrieval is temporarily unavailable."
BLOCK_SEPARATOR = "\n\n---\n\n"


def _to_result(hit: SearchHit) -> RetrievalResult:
    meta = hit.metadata
    tags = meta.get("tags")
    if isinstance(tags, str):
        tags = [t for t in tags.split(",") if t]
    rating = meta.get("rating")
    return RetrievalResult(
        content=hit.content,
        similarity=hit.similarity,
        source=RetrievalSource(
            name=meta.get("name") or "",
            city=meta.get("city") or "",
            rating=float(rating) if rating else None,
            tags=tags or None,
        ),
    )


def format_results_as_context(results: list[RetrievalResult]) -> str:
    if not results:
        return NO_RESULTS_TEXT
    blocks: list[str] = []
    for i, r in enumerate(results, start=1):
        content = r.content
        if len(content) > MAX_CONTEXT_CHARS:
            content = content[:MAX_CONTEXT_CHARS] + "..."
        rating = r.source.rating if r.source.rating is not None else "n/a"
        blocks.append(
            f"### Reference {i}: {r.source.name} ({r.source.city})\n"
            f"> Relevance: {round(r.similarity * 100)}% | Rating: {rating}\n\n"
            f"{content}"
        )
    return BLOCK_SEPARATOR.join(blocks)


async def retrieve_knowledge(
    query: str,
    index: KnowledgeIndex,
    *,
    top_k: int = RETRIEVAL_TOP_K,
    threshold: float = RETRIEVAL_THRESHOLD,
    city: str | None = None,
    token: CancellationToken | None = None,
) -> RetrievalContext:
    """
    Search the index for query and build the per-turn context.

    Hits below threshold are dropped; at most top_k remain, best first. The
    blocking index call runs in a worker thread.
    """
    logger.info("[retrieval:retrieve_knowledge] IN  query=%r city=%s", query[:80], city)
    try:
        hits = await asyncio.to_thread(
            index.similarity_search, query, top_k=top_k, threshold=threshold, city=city
        )
    except Exception as e:
        logger.warning("[retrieval:retrieve_knowledge] retrieval failed, continuing without context: %s", e)
        return RetrievalContext(query=query, has_results=False, results=[], formatted_context=UNAVAILABLE_TEXT)
    if token is not None:
        token.raise_if_cancelled()

    kept = sorted((h for h in hits if h.similarity >= threshold), key=lambda h: -h.similarity)[:top_k]
    results = [_to_result(h) for h in kept]
    logger.info("[retrieval:retrieve_knowledge] OUT results=%d sources=%s",
                len(results), [r.source.name for r in results])
    return RetrievalContext(
        query=query,
        has_results=bool(results),
        results=results,
        formatted_context=format_results_as_context(results),
    )
