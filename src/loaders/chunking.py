from __future__ import annotations

"""Text normalization and character-window chunking for indexing."""

import re
from typing import Any

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Normalize whitespace and line endings in text."""
    return _WHITESPACE_RE.sub(" ", text.replace("\r\n", "\n")).strip()


def chunk_text(text: str, max_chars: int = 500, overlap: int = 50) -> list[str]:
    """Split text into overlapping character-based chunks."""
    cleaned = normalize_text(text)
    if not cleaned:
        return []
    if max_chars <= 0:
        return [cleaned]
    if overlap >= max_chars:
        overlap = max(0, max_chars // 4)

    chunks: list[str] = []
    start = 0
    length = len(cleaned)
    while start < length:
        end = min(length, start + max_chars)
        chunk = cleaned[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= length:
            break
        start = max(0, end - overlap)
    return chunks


def chunk_id(source_id: str, index: int) -> str:
    """Return the stable id of a chunk derived from a CMS document."""
    return f"{source_id}_chunk_{index}"


def chunk_metadata(metadata: dict[str, Any], index: int, total: int) -> dict[str, Any]:
    """Copy document metadata and annotate chunk position."""
    annotated = dict(metadata)
    annotated.update({"chunk_index": index, "total_chunks": total})
    return annotated
