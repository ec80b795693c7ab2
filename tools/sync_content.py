from __future__ import annotations

"""CLI utility to sync CMS content into the configured document store."""

import argparse

from src.app.dependencies import build_content_sync
from src.loaders.sanity import SanityFetchError
from src.rag.embeddings import EmbeddingError
from src.rag.sync import format_sync_summary
from src.vectorstore.base import VectorStoreError


def main() -> None:
    """Run a full smart sync, or a single-document sync with --source-id."""
    parser = argparse.ArgumentParser(description="Sync Sanity content into the document store.")
    parser.add_argument(
        "--source-id",
        default=None,
        help="Sync only this Sanity document id.",
    )
    args = parser.parse_args()

    try:
        with build_content_sync() as sync:
            if args.source_id:
                result = sync.sync_document(args.source_id)
            else:
                result = sync.sync_all()
    except (SanityFetchError, EmbeddingError, VectorStoreError) as exc:
        raise SystemExit(f"Sync failed: {exc}") from exc
    print(format_sync_summary(result))


if __name__ == "__main__":
    main()
