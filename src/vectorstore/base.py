from __future__ import annotations

"""Document store contract shared by vector store backends."""

from typing import Iterable, Protocol

from src.rag.types import DocumentChunk, RetrievalResult


class VectorStoreError(RuntimeError):
    """Raised when a document store operation fails."""
    pass


class DocumentStore(Protocol):
    """Nearest-neighbor search over precomputed chunk embeddings."""

    def search(
        self, query_vector: list[float], top_k: int, min_score: float
    ) -> list[RetrievalResult]:
        """Return hits with score >= min_score, best first, at most top_k."""
        raise NotImplementedError

    def add_chunks(self, chunks: Iterable[DocumentChunk]) -> int:
        """Store chunks with their embeddings."""
        raise NotImplementedError

    def find_by_source_id(self, source_id: str) -> list[DocumentChunk]:
        """Return stored chunks derived from a CMS document."""
        raise NotImplementedError

    def delete_by_source_id(self, source_id: str) -> int:
        """Delete stored chunks derived from a CMS document."""
        raise NotImplementedError

    def source_ids(self) -> set[str]:
        """Return the CMS document ids present in the store."""
        raise NotImplementedError
