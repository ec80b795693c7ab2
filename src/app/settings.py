from __future__ import annotations

import os
from dataclasses import dataclass

try:
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - optional in minimal setups
    load_dotenv = None

if load_dotenv is not None:
    load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    top_k: int = int(os.getenv("RAG_TOP_K", "30"))
    min_score: float = float(os.getenv("RAG_MIN_SCORE", "0.25"))
    rerank: bool = _flag("RAG_RERANK", "false")
    vectorstore_backend: str = os.getenv("RAG_VECTORSTORE", "memory")
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_service_role_key: str | None = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    supabase_match_function: str = os.getenv("SUPABASE_MATCH_FUNCTION", "match_documents")
    supabase_table: str = os.getenv("SUPABASE_TABLE", "documents")
    supabase_timeout: float = float(os.getenv("SUPABASE_TIMEOUT", "15"))
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "256"))
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_embedding_model: str | None = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_embedding_model: str | None = os.getenv("GEMINI_EMBEDDING_MODEL", "models/text-embedding-004")
    llm_provider: str = os.getenv("RAG_LLM_PROVIDER", "anthropic")
    anthropic_api_key: str | None = os.getenv("ANTHROPIC_API_KEY")
    anthropic_base_url: str = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    chat_model: str = os.getenv("RAG_CHAT_MODEL", "claude-3-5-haiku-20241022")
    chat_temperature: float = float(os.getenv("RAG_CHAT_TEMPERATURE", "0.7"))
    chat_max_tokens: int = int(os.getenv("RAG_CHAT_MAX_TOKENS", "1024"))
    llm_timeout_raw: str | None = os.getenv("RAG_LLM_TIMEOUT")
    chunk_size: int = int(os.getenv("RAG_CHUNK_SIZE", "500"))
    chunk_overlap: int = int(os.getenv("RAG_CHUNK_OVERLAP", "50"))
    sanity_project_id: str | None = os.getenv("SANITY_PROJECT_ID")
    sanity_dataset: str = os.getenv("SANITY_DATASET", "production")
    sanity_api_version: str = os.getenv("SANITY_API_VERSION", "2024-01-01")
    sanity_token: str | None = os.getenv("SANITY_TOKEN")
    chat_log_db_uri_raw: str | None = os.getenv("RAG_CHAT_LOG_DB_URI")
    metrics_enabled: bool = _flag("RAG_METRICS_ENABLED", "true")
    log_level_raw: str = os.getenv("RAG_LOG_LEVEL", "INFO")

    @property
    def chat_log_db_uri(self) -> str | None:
        return os.getenv("RAG_CHAT_LOG_DB_URI", self.chat_log_db_uri_raw or "") or None

    @property
    def llm_timeout(self) -> float | None:
        raw = os.getenv("RAG_LLM_TIMEOUT", self.llm_timeout_raw or "").strip()
        return float(raw) if raw else None

    @property
    def log_level(self) -> str:
        return os.getenv("RAG_LOG_LEVEL", self.log_level_raw).upper()

    @property
    def embedding_model(self) -> str | None:
        provider = self.embedding_provider.lower().strip()
        if provider == "openai":
            return self.openai_embedding_model
        if provider in {"gemini", "google"}:
            return self.gemini_embedding_model
        return None


settings = Settings()
