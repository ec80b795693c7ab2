from __future__ import annotations

"""Supabase (PostgREST + pgvector) document store."""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

from src.rag.types import DocumentChunk, RetrievalResult
from src.vectorstore.base import VectorStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupabaseConfig:
    """Connection settings for the Supabase REST API."""
    url: str
    api_key: str
    table: str = "documents"
    match_function: str = "match_documents"
    timeout: float = 15.0


@dataclass
class SupabaseVectorStore:
    """Document store backed by a match_documents RPC over pgvector."""
    config: SupabaseConfig
    client: httpx.Client | None = None
    _client: httpx.Client = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration and create the HTTP client."""
        if not self.config.url:
            raise VectorStoreError("SUPABASE_URL is required for SupabaseVectorStore")
        if not self.config.api_key:
            raise VectorStoreError("SUPABASE_SERVICE_ROLE_KEY is required for SupabaseVectorStore")
        headers = {
            "apikey": self.config.api_key,
            "Authorization": f"Bearer {self.config.api_key}",
        }
        if self.client is not None:
            self.client.headers.update(headers)
            self._client = self.client
        else:
            self._client = httpx.Client(
                base_url=f"{self.config.url.rstrip('/')}/rest/v1",
                headers=headers,
                timeout=self.config.timeout,
            )

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a REST request and decode the JSON body."""
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise VectorStoreError(str(exc)) from exc
        if not response.content:
            return None
        return response.json()

    def search(
        self, query_vector: list[float], top_k: int, min_score: float
    ) -> list[RetrievalResult]:
        """Run the match RPC and return hits best first."""
        if top_k <= 0:
            return []
        rows = self._request(
            "POST",
            f"/rpc/{self.config.match_function}",
            json={
                "query_embedding": query_vector,
                "match_count": top_k,
                "match_threshold": min_score,
            },
        )
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise VectorStoreError("Invalid match response from Supabase")
        results: list[RetrievalResult] = []
        for row in rows:
            score = float(row.get("similarity", 0.0))
            if score < min_score:
                continue
            results.append(RetrievalResult(chunk=self._row_to_chunk(row), score=score))
        results.sort(key=lambda item: item.score, reverse=True)
        logger.debug("supabase_search", extra={"rows": len(rows), "results": len(results)})
        return results[:top_k]

    def add_chunks(self, chunks: Iterable[DocumentChunk]) -> int:
        """Insert chunks with their embeddings."""
        rows = [
            {
                "content": chunk.content,
                "embedding": chunk.embedding,
                "metadata": {**chunk.metadata, "source": chunk.source, "chunk_id": chunk.chunk_id},
            }
            for chunk in chunks
        ]
        if not rows:
            return 0
        self._request(
            "POST",
            f"/{self.config.table}",
            json=rows,
            headers={"Prefer": "return=minimal"},
        )
        return len(rows)

    def find_by_source_id(self, source_id: str) -> list[DocumentChunk]:
        """Return chunks whose metadata source_id matches."""
        rows = self._request(
            "GET",
            f"/{self.config.table}",
            params={"select": "id,content,metadata", "metadata->>source_id": f"eq.{source_id}"},
        )
        return [self._row_to_chunk(row) for row in rows or []]

    def delete_by_source_id(self, source_id: str) -> int:
        """Delete chunks whose metadata source_id matches."""
        rows = self._request(
            "DELETE",
            f"/{self.config.table}",
            params={"metadata->>source_id": f"eq.{source_id}"},
            headers={"Prefer": "return=representation"},
        )
        return len(rows or [])

    def source_ids(self) -> set[str]:
        """Return distinct source ids of stored chunks."""
        rows = self._request(
            "GET",
            f"/{self.config.table}",
            params={"select": "source_id:metadata->>source_id"},
        )
        return {str(row["source_id"]) for row in rows or [] if row.get("source_id")}

    def stats(self) -> dict[str, int | str | None]:
        """Return basic stats for the store."""
        rows = self._request("GET", f"/{self.config.table}", params={"select": "id"})
        return {
            "backend": "supabase",
            "chunk_count": len(rows or []),
            "source_count": len(self.source_ids()),
            "embedding_dimension": None,
        }

    def health(self) -> dict[str, str | bool]:
        """Return health information for the store."""
        try:
            self._request("GET", f"/{self.config.table}", params={"select": "id", "limit": "1"})
        except VectorStoreError as exc:
            return {"backend": "supabase", "ok": False, "detail": str(exc)}
        return {"backend": "supabase", "ok": True}

    def _row_to_chunk(self, row: dict[str, Any]) -> DocumentChunk:
        """Convert a REST row into a DocumentChunk."""
        metadata = dict(row.get("metadata") or {})
        return DocumentChunk(
            chunk_id=str(metadata.get("chunk_id") or row.get("id", "")),
            content=str(row.get("content", "")),
            source=str(metadata.get("source") or "Unknown"),
            metadata=metadata,
        )
