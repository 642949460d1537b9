#!/usr/bin/env python3
"""
Load the POI knowledge file, chunk it, and write it to the Milvus index.

Run from project root:

    python scripts/ingest_knowledge.py
    python scripts/ingest_knowledge.py --file data/knowledge/knowledge.jsonl --clear
    python scripts/ingest_knowledge.py --dry-run

--dry-run only loads and splits: it reports document/chunk counts and the
number of embedding calls a real run would make, and needs no index or API key.
"""

import argparse
import logging
import sys
from pathlib import Path

# Project root on path so "tripmate" resolves without installing
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from tripmate.core.config import KNOWLEDGE_FILE, LOG_LEVEL
from tripmate.services.ingestion_service import IngestionReport, ingest_knowledge


def _print_progress(done: int, total: int) -> None:
    print(f"  progress: {done}/{total} chunks ({done * 100 // max(total, 1)}%)")


def _print_report(report: IngestionReport) -> None:
    print(f"Documents loaded: {report.documents}")
    if report.load_errors:
        print(f"Lines skipped: {len(report.load_errors)}")
        for err in report.load_errors[:5]:
            print(f"  - {err}")
    print(f"Cities: {len(report.cities)} ({', '.join(report.cities)})")
    print(f"Chunks: {report.chunks} (estimated {report.estimated_chunks})")
    print(f"Embedding calls: {report.embedding_calls}")
    if report.dry_run:
        print("Dry run: nothing written.")
        return
    if report.cleared:
        print("Existing index cleared.")
    print(f"Inserted: {report.inserted}  Failed: {report.failed}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Ingest POI knowledge into the vector index.")
    parser.add_argument("--file", default=KNOWLEDGE_FILE, help="Path to knowledge.jsonl")
    parser.add_argument("--clear", action="store_true", help="Clear a non-empty index before inserting.")
    parser.add_argument("--dry-run", action="store_true", help="Load and split only; write nothing.")
    args = parser.parse_args()

    logging.basicConfig(level=LOG_LEVEL)
    try:
        report = ingest_knowledge(
            args.file,
            clear=args.clear,
            dry_run=args.dry_run,
            on_progress=_print_progress,
        )
    except Exception as e:
        print(f"Ingestion failed: {e}", file=sys.stderr)
        return 1
    _print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
