"""
Knowledge ingestion: load POIs, chunk, and write to the index in retried batches.

Called by scripts/ingest_knowledge.py; no HTTP or FastAPI here.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from tenacity import RetryCallState, Retrying, stop_after_attempt, wait_exponential

from tripmate.core.config import (
    CHUNK_OVERLAP,
    CHUNK_SIZE,
    EMBED_BATCH_SIZE,
    INGEST_BATCH_PAUSE,
    INGEST_MAX_RETRIES,
    INGEST_RETRY_DELAY,
    KNOWLEDGE_FILE,
)
from tripmate.ingest.loader import get_city_list, load_poi_documents
from tripmate.schemas.knowledge import Document
from tripmate.services.text_processing import chunk_text, estimate_chunk_count
from tripmate.services.vector_store import KnowledgeIndex

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class InsertReport:
    success: int = 0
    failed: int = 0


@dataclass
class IngestionReport:
    """Result of one ingestion run."""

    documents: int
    chunks: int
    estimated_chunks: int
    embedding_calls: int
    cities: list[str]
    load_errors: list[str] = field(default_factory=list)
    inserted: int = 0
    failed: int = 0
    cleared: bool = False
    dry_run: bool = False


def split_documents(
    documents: list[Document], chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP
) -> list[Document]:
    """Chunk each document; every chunk carries a copy of its parent's metadata plus chunk_index."""
    chunks: list[Document] = []
    for doc in documents:
        for i, piece in enumerate(chunk_text(doc.page_content, chunk_size=chunk_size, overlap=overlap)):
            chunks.append(Document(page_content=piece, metadata={**doc.metadata, "chunk_index": i}))
    logger.info("[ingestion:split_documents] documents=%d → chunks=%d", len(documents), len(chunks))
    return chunks


def _log_retry(start: int) -> Callable[[RetryCallState], None]:
    def log(state: RetryCallState) -> None:
        logger.warning("[ingestion:add_documents] batch at %d attempt %d failed (%s); retrying in %.1fs",
                       start, state.attempt_number, state.outcome.exception(), state.next_action.sleep)
    return log


def add_documents(
    index: KnowledgeIndex,
    chunks: list[Document],
    on_progress: ProgressCallback | None = None,
    *,
    batch_size: int = EMBED_BATCH_SIZE,
    max_retries: int = INGEST_MAX_RETRIES,
    retry_delay: float = INGEST_RETRY_DELAY,
    batch_pause: float = INGEST_BATCH_PAUSE,
) -> InsertReport:
    """
    Insert chunks in fixed-size batches.

    Each batch is tried up to max_retries times, waiting retry_delay * 2**(attempt-1)
    between attempts. A batch that still fails is counted in failed and the run
    moves on. on_progress(done, total) is called after every batch.
    """
    report = InsertReport()
    total = len(chunks)
    done = 0
    for start in range(0, total, batch_size):
        batch = chunks[start : start + batch_size]
        retrying = Retrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=retry_delay),
            before_sleep=_log_retry(start),
            reraise=True,
        )
        try:
            report.success += retrying(index.insert_batch, batch)
        except Exception as e:
            logger.error("[ingestion:add_documents] batch at %d failed after %d attempts: %s",
                         start, max_retries, e)
            report.failed += len(batch)
        done += len(batch)
        if on_progress:
            on_progress(done, total)
        if done < total and batch_pause > 0:
            time.sleep(batch_pause)
    logger.info("[ingestion:add_documents] OUT success=%d failed=%d", report.success, report.failed)
    return report


def ingest_knowledge(
    path: str | Path = KNOWLEDGE_FILE,
    *,
    index: KnowledgeIndex | None = None,
    clear: bool = False,
    dry_run: bool = False,
    on_progress: ProgressCallback | None = None,
) -> IngestionReport:
    """
    Full pipeline: load → split → (clear) → insert.

    A dry run stops after splitting and never touches the index.
    """
    loaded = load_poi_documents(path)
    chunks = split_documents(loaded.documents)
    report = IngestionReport(
        documents=len(loaded.documents),
        chunks=len(chunks),
        estimated_chunks=estimate_chunk_count([d.page_content for d in loaded.documents]),
        embedding_calls=-(-len(chunks) // EMBED_BATCH_SIZE),
        cities=get_city_list(loaded.documents),
        load_errors=loaded.errors,
        dry_run=dry_run,
    )
    if dry_run or not chunks:
        return report

    index = index or KnowledgeIndex()
    if clear and not index.is_empty():
        index.clear()
        report.cleared = True
    inserted = add_documents(index, chunks, on_progress)
    index.flush()
    report.inserted = inserted.success
    report.failed = inserted.failed
    return report
