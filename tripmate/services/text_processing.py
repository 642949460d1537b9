"""
Text processing for the knowledge base: cleaning and chunking.

POI descriptions and reviews are mostly Chinese, so sentence boundaries include
CJK punctuation and lines; chunk boundaries never drop text.
"""

import math
import re

from tripmate.core.config import CHUNK_OVERLAP, CHUNK_SIZE

# Split after sentence punctuation (Latin or CJK) or at line breaks
_SENTENCE_SPLIT = re.compile(r"(?<=[。！？；])|(?<=[.!?])\s+|\n+")
_INLINE_SPACE = re.compile(r"[ \t\u00a0\u3000]+")
_INVISIBLE = re.compile(r"[\u200b-\u200d\ufeff]")


def clean_text(text: str) -> str:
    """
    Tidy scraped POI text (intros, visitor comments): drop zero-width characters,
    collapse spaces and ideographic spaces inside a line, and drop a line that
    repeats the one before it. Blank-line runs collapse the same way.
    CJK punctuation and full-width characters are kept as they are.
    """
    if not text or not text.strip():
        return ""
    text = _INVISIBLE.sub("", text.replace("\r\n", "\n"))
    kept: list[str] = []
    for raw in text.split("\n"):
        line = _INLINE_SPACE.sub(" ", raw).strip()
        if kept and kept[-1] == line:
            continue
        kept.append(line)
    return "\n".join(kept).strip()


def _split_units(text: str, chunk_size: int) -> list[str]:
    units = [u.strip() for u in _SENTENCE_SPLIT.split(text) if u and u.strip()]
    out: list[str] = []
    for u in units:
        if len(u) <= chunk_size:
            out.append(u)
            continue
        # No usable boundary: hard split
        out.extend(u[i : i + chunk_size] for i in range(0, len(u), chunk_size))
    return out


def _join(parts: list[str]) -> str:
    # CJK sentences join without a space; Latin ones need one
    text = ""
    for p in parts:
        if text and (p[:1].isascii() and text[-1:].isascii()):
            text += " "
        text += p
    return text


def chunk_text(text: str, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> list[str]:
    """
    Split text into chunks of at most chunk_size characters on sentence
    boundaries. The trailing sentences of each chunk (up to overlap chars) are
    repeated at the start of the next.
    """
    if not text or not text.strip():
        return []
    text = text.strip()
    if len(text) <= chunk_size:
        return [text]

    units = _split_units(text, chunk_size)
    chunks: list[str] = []
    current: list[str] = []

    for unit in units:
        candidate = _join(current + [unit])
        if len(candidate) <= chunk_size:
            current.append(unit)
            continue
        if current:
            chunks.append(_join(current))
            carried: list[str] = []
            for s in reversed(current):
                if len(_join([s] + carried)) > overlap:
                    break
                carried.insert(0, s)
            current = carried
            # Overlap may not leave room for the next unit
            while current and len(_join(current + [unit])) > chunk_size:
                current.pop(0)
        current.append(unit)

    if current:
        last = _join(current)
        if not chunks or last != chunks[-1]:
            chunks.append(last)
    return chunks


def estimate_chunk_count(texts: list[str], chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> int:
    """Rough chunk count used by dry runs: total chars / (chunk_size - overlap), rounded up."""
    total = sum(len(t) for t in texts)
    step = max(1, chunk_size - overlap)
    return math.ceil(total / step)
