from __future__ import annotations

"""Incremental content sync from the CMS into the document store."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from src.loaders.chunking import chunk_id, chunk_metadata, chunk_text
from src.loaders.sanity import SanityDocument
from src.rag.embeddings import EmbeddingProvider
from src.rag.types import DocumentChunk
from src.vectorstore.base import DocumentStore

logger = logging.getLogger(__name__)

SyncAction = Literal["added", "updated", "deleted", "unchanged"]

# Bumped by every CMS publish, even when indexed fields are untouched.
_UNHASHED_METADATA = frozenset({"updated_at"})


class ContentSource(Protocol):
    def fetch_all(self) -> list[SanityDocument]:
        raise NotImplementedError


def generate_content_hash(content: str) -> str:
    """Return the SHA-256 hex digest of content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _sort_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sort_keys(value[key]) for key in sorted(value)}
    return value


def generate_document_hash(content: str, metadata: dict[str, Any] | None = None) -> str:
    """Hash content together with key-sorted metadata."""
    metadata_string = (
        json.dumps(_sort_keys(metadata), separators=(",", ":"), ensure_ascii=False)
        if metadata
        else ""
    )
    return generate_content_hash(f"{content}::{metadata_string}")


def fingerprint(document: SanityDocument) -> str:
    """Document hash used to decide whether a CMS document must be re-indexed."""
    metadata = {
        key: value
        for key, value in document.metadata.items()
        if key not in _UNHASHED_METADATA
    }
    return generate_document_hash(document.content, metadata)


@dataclass(frozen=True)
class SyncChange:
    source_id: str
    title: str
    action: SyncAction
    chunk_count: int | None = None


@dataclass
class SyncResult:
    """Counts and per-document changes of one sync run."""
    added: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    total_chunks: int = 0
    changes: list[SyncChange] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.added + self.updated + self.deleted + self.unchanged

    def record(self, change: SyncChange) -> None:
        setattr(self, change.action, getattr(self, change.action) + 1)
        self.total_chunks += change.chunk_count or 0
        self.changes.append(change)


class ContentSync:
    """Keep the document store aligned with CMS content by document hash."""
    def __init__(
        self,
        source: ContentSource,
        embedder: EmbeddingProvider,
        store: DocumentStore,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
    ) -> None:
        self._source = source
        self._embedder = embedder
        self._store = store
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    def __enter__(self) -> ContentSync:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Release the content source's resources, if it holds any."""
        close = getattr(self._source, "close", None)
        if close is not None:
            close()

    def build_chunks(self, document: SanityDocument) -> list[DocumentChunk]:
        """Chunk and embed one CMS document."""
        pieces = chunk_text(document.content, self._chunk_size, self._chunk_overlap)
        base = {
            **document.metadata,
            "content_hash": generate_content_hash(document.content),
            "document_hash": fingerprint(document),
        }
        source = str(document.metadata.get("source") or "Unknown")
        return [
            DocumentChunk(
                chunk_id=chunk_id(document.source_id, index),
                content=piece,
                source=source,
                embedding=self._embedder.embed(piece),
                metadata=chunk_metadata(base, index, len(pieces)),
            )
            for index, piece in enumerate(pieces)
        ]

    def sync_all(self) -> SyncResult:
        """Add new, replace changed and delete vanished CMS documents."""
        documents = self._source.fetch_all()
        result = SyncResult()
        for document in documents:
            result.record(self._sync_one(document))

        current = {document.source_id for document in documents}
        for stale in sorted(self._store.source_ids() - current):
            self._store.delete_by_source_id(stale)
            result.record(SyncChange(source_id=stale, title="Deleted document", action="deleted"))

        logger.info(
            "content_sync_complete",
            extra={
                "added": result.added,
                "updated": result.updated,
                "deleted": result.deleted,
                "unchanged": result.unchanged,
                "total_chunks": result.total_chunks,
            },
        )
        return result

    def sync_document(self, source_id: str) -> SyncResult:
        """Sync a single CMS document, deleting it when it no longer exists."""
        result = SyncResult()
        document = next(
            (item for item in self._source.fetch_all() if item.source_id == source_id),
            None,
        )
        if document is None:
            if self._store.find_by_source_id(source_id):
                self._store.delete_by_source_id(source_id)
                result.record(
                    SyncChange(source_id=source_id, title="Deleted document", action="deleted")
                )
            return result
        result.record(self._sync_one(document))
        return result

    def _sync_one(self, document: SanityDocument) -> SyncChange:
        source_id = document.source_id
        title = str(document.metadata.get("title") or source_id)
        existing = self._store.find_by_source_id(source_id)
        if existing and existing[0].metadata.get("document_hash") == fingerprint(document):
            logger.debug("content_unchanged", extra={"source_id": source_id})
            return SyncChange(source_id=source_id, title=title, action="unchanged")

        chunks = self.build_chunks(document)
        if existing:
            self._store.delete_by_source_id(source_id)
        self._store.add_chunks(chunks)
        action: SyncAction = "updated" if existing else "added"
        logger.info(
            "content_synced",
            extra={"source_id": source_id, "action": action, "chunks": len(chunks)},
        )
        return SyncChange(source_id=source_id, title=title, action=action, chunk_count=len(chunks))


def format_sync_summary(result: SyncResult) -> str:
    """Render a human-readable sync report."""
    lines = [
        "Sync summary:",
        f"  added: {result.added} documents ({result.total_chunks} chunks)",
        f"  updated: {result.updated} documents",
        f"  deleted: {result.deleted} documents",
        f"  unchanged: {result.unchanged} documents",
        f"  total processed: {result.processed} documents",
    ]
    changed = [change for change in result.changes if change.action != "unchanged"]
    if changed:
        lines.append("  changes:")
        for change in changed:
            chunks = f" ({change.chunk_count} chunks)" if change.chunk_count else ""
            lines.append(f"    {change.action.upper()}: {change.title}{chunks}")
    return "\n".join(lines)
