from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["RAG_VECTORSTORE"] = "memory"
os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIMENSION"] = "256"
os.environ["RAG_LLM_PROVIDER"] = "anthropic"
os.environ["ANTHROPIC_API_KEY"] = "test-key"
os.environ.pop("RAG_CHAT_LOG_DB_URI", None)
os.environ.pop("OPENAI_API_KEY", None)
os.environ.setdefault("RAG_RERANK", "false")

import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"
