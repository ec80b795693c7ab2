from __future__ import annotations

"""In-memory vector store for local testing and small datasets."""

import math
from dataclasses import dataclass, field
from typing import Iterable

from src.rag.types import DocumentChunk, RetrievalResult
from src.vectorstore.base import VectorStoreError


@dataclass
class InMemoryVectorStore:
    """Simple in-memory vector store with cosine similarity search."""
    dimension: int | None = None
    chunks: list[DocumentChunk] = field(default_factory=list)

    def add_chunks(self, chunks: Iterable[DocumentChunk]) -> int:
        """Store chunks, enforcing a single embedding dimension."""
        added = 0
        for chunk in chunks:
            if not chunk.embedding:
                raise VectorStoreError(f"Chunk {chunk.chunk_id} has no embedding")
            if self.dimension is None:
                self.dimension = len(chunk.embedding)
            elif len(chunk.embedding) != self.dimension:
                raise VectorStoreError(
                    f"Embedding dimension mismatch: expected {self.dimension}, "
                    f"got {len(chunk.embedding)}"
                )
            self.chunks.append(chunk)
            added += 1
        return added

    def search(
        self, query_vector: list[float], top_k: int, min_score: float
    ) -> list[RetrievalResult]:
        """Return chunks at or above min_score, best first, capped at top_k."""
        if not self.chunks or top_k <= 0:
            return []
        if self.dimension is not None and len(query_vector) != self.dimension:
            raise VectorStoreError(
                f"Query dimension mismatch: expected {self.dimension}, got {len(query_vector)}"
            )
        scored = [
            RetrievalResult(chunk=chunk, score=self._cosine_similarity(query_vector, chunk.embedding))
            for chunk in self.chunks
        ]
        scored = [result for result in scored if result.score >= min_score]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:top_k]

    def _cosine_similarity(self, a: list[float], b: list[float]) -> float:
        """Compute cosine similarity between two vectors."""
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(y * y for y in b))
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        return dot / (norm_a * norm_b)

    def find_by_source_id(self, source_id: str) -> list[DocumentChunk]:
        """Return chunks whose metadata source_id matches."""
        return [chunk for chunk in self.chunks if chunk.metadata.get("source_id") == source_id]

    def delete_by_source_id(self, source_id: str) -> int:
        """Delete chunks whose metadata source_id matches."""
        kept = [chunk for chunk in self.chunks if chunk.metadata.get("source_id") != source_id]
        removed = len(self.chunks) - len(kept)
        self.chunks = kept
        return removed

    def source_ids(self) -> set[str]:
        """Return distinct source ids of stored chunks."""
        return {
            str(chunk.metadata["source_id"])
            for chunk in self.chunks
            if chunk.metadata.get("source_id")
        }

    def stats(self) -> dict[str, int | str | None]:
        """Return basic stats for the vector store."""
        return {
            "backend": "memory",
            "chunk_count": len(self.chunks),
            "source_count": len(self.source_ids()),
            "embedding_dimension": self.dimension,
        }

    def health(self) -> dict[str, str | bool]:
        """Return health information for the vector store."""
        return {
            "backend": "memory",
            "ok": True,
        }
