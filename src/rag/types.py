from __future__ import annotations

"""Core data types for chunks, queries, retrieval and chat messages."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DocumentChunk:
    """Indexed content chunk with its precomputed embedding."""
    chunk_id: str
    content: str
    source: str
    embedding: list[float] = field(default_factory=list, repr=False)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievalResult:
    """Search hit with cosine-style similarity score."""
    chunk: DocumentChunk
    score: float


@dataclass(frozen=True)
class ProcessedQuery:
    """Preprocessed user question ready for retrieval."""
    original: str
    normalized: str
    expanded: str
    entities: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ChatMessage:
    """Single conversation turn."""
    role: str
    content: str
