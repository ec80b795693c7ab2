from __future__ import annotations

"""Retrieval orchestration: embed the expanded query and search the store."""

import asyncio
import logging
from dataclasses import dataclass, replace

from src.rag.embeddings import EmbeddingProvider
from src.rag.types import RetrievalResult
from src.vectorstore.base import DocumentStore

logger = logging.getLogger(__name__)


class RetrievalError(RuntimeError):
    """Raised when embedding or search fails during retrieval."""
    pass


@dataclass
class Retriever:
    """Embed a query once and run a single similarity search."""
    embedder: EmbeddingProvider
    store: DocumentStore
    top_k: int = 30
    min_score: float = 0.25

    async def retrieve(
        self,
        expanded_query: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[RetrievalResult]:
        """Return store results for the query, failing loudly on upstream errors."""
        limit = self.top_k if top_k is None else top_k
        threshold = self.min_score if min_score is None else min_score
        try:
            vector = await asyncio.to_thread(self.embedder.embed, expanded_query)
        except Exception as exc:
            logger.error("embedding_failed", extra={"error": type(exc).__name__})
            raise RetrievalError(f"Embedding failed: {exc}") from exc
        try:
            results = await asyncio.to_thread(self.store.search, vector, limit, threshold)
        except Exception as exc:
            logger.error("search_failed", extra={"error": type(exc).__name__})
            raise RetrievalError(f"Search failed: {exc}") from exc
        logger.info(
            "retrieval_complete",
            extra={
                "results": len(results),
                "query_length": len(expanded_query),
                "top_k": limit,
                "min_score": threshold,
            },
        )
        return results


def rerank_results(
    results: list[RetrievalResult],
    original_query: str,
    entities: list[str],
) -> list[RetrievalResult]:
    """Reorder results by heuristic boosts; the rank score lands in metadata."""
    query = original_query.lower()
    ranked: list[tuple[float, RetrievalResult]] = []
    for result in results:
        content = result.chunk.content.lower()
        boost = 1.0
        if query and query in content:
            boost *= 1.5
        for entity in entities:
            if entity.lower() in content:
                boost *= 1.2
        if result.chunk.content.startswith("Q:") or "**Q:" in result.chunk.content:
            boost *= 1.3
        if "faq" in result.chunk.source.lower():
            boost *= 1.4
        chunk = replace(result.chunk, metadata={**result.chunk.metadata, "rank_score": boost})
        ranked.append((boost, RetrievalResult(chunk=chunk, score=result.score)))
    ranked.sort(key=lambda item: item[0], reverse=True)
    return [result for _, result in ranked]
