from __future__ import annotations

import logging
from functools import lru_cache

from src.app.settings import settings
from src.loaders.sanity import SanityConfig, SanityContentFetcher
from src.metadata.conversation_log import ConversationLogError, ConversationLogger
from src.rag.dispatcher import CompletionDispatcher
from src.rag.embeddings import (
    EmbeddingConfigError,
    EmbeddingConfigReport,
    EmbeddingProvider,
    GeminiEmbedder,
    HashEmbedder,
    OpenAIEmbedder,
    build_embedding_config_report,
)
from src.rag.llm import CompletionClient, build_completion_client
from src.rag.pipeline import ChatPipeline
from src.rag.retriever import Retriever
from src.rag.sync import ContentSync
from src.vectorstore.inmemory import InMemoryVectorStore
from src.vectorstore.supabase import SupabaseConfig, SupabaseVectorStore

logger = logging.getLogger(__name__)


@lru_cache
def get_pipeline() -> ChatPipeline:
    retriever = Retriever(
        embedder=get_embedder(),
        store=get_vectorstore(),
        top_k=settings.top_k,
        min_score=settings.min_score,
    )
    dispatcher = CompletionDispatcher(
        client=build_llm_client(),
        model=settings.chat_model,
        temperature=settings.chat_temperature,
        conversation_log=get_conversation_logger(),
    )
    return ChatPipeline(retriever=retriever, dispatcher=dispatcher, rerank=settings.rerank)


def reset_pipeline_cache() -> None:
    get_pipeline.cache_clear()
    get_embedder.cache_clear()
    get_vectorstore.cache_clear()
    get_conversation_logger.cache_clear()


@lru_cache
def get_conversation_logger() -> ConversationLogger | None:
    """Return the conversation logger, or None when disabled or unreachable."""
    uri = settings.chat_log_db_uri
    if not uri:
        return None
    try:
        return ConversationLogger(uri)
    except ConversationLogError as exc:
        logger.warning("conversation_log_unavailable", extra={"error": str(exc)})
        return None


def get_embedding_config_report() -> EmbeddingConfigReport:
    return build_embedding_config_report(
        settings.embedding_provider, settings.embedding_model, settings.embedding_dimension
    )


@lru_cache
def get_embedder() -> EmbeddingProvider:
    return build_embedder()


def build_embedder() -> EmbeddingProvider:
    provider = settings.embedding_provider.lower().strip()
    if provider == "hash":
        return HashEmbedder(dimension=settings.embedding_dimension)
    if provider == "openai":
        return OpenAIEmbedder(
            api_key=settings.openai_api_key or "",
            model=settings.openai_embedding_model or "",
            dimension=settings.embedding_dimension,
        )
    if provider in {"gemini", "google"}:
        return GeminiEmbedder(
            api_key=settings.gemini_api_key or "",
            model=settings.gemini_embedding_model or "",
            dimension=settings.embedding_dimension,
        )
    raise EmbeddingConfigError(f"Unsupported embedding provider: {provider}")


@lru_cache
def get_vectorstore() -> InMemoryVectorStore | SupabaseVectorStore:
    return build_vectorstore()


def build_vectorstore() -> InMemoryVectorStore | SupabaseVectorStore:
    backend = settings.vectorstore_backend.lower().strip()
    if backend == "supabase":
        config = SupabaseConfig(
            url=settings.supabase_url or "",
            api_key=settings.supabase_service_role_key or "",
            table=settings.supabase_table,
            match_function=settings.supabase_match_function,
            timeout=settings.supabase_timeout,
        )
        return SupabaseVectorStore(config=config)
    return InMemoryVectorStore()


def build_llm_client() -> CompletionClient:
    return build_completion_client(
        settings.llm_provider,
        anthropic_api_key=settings.anthropic_api_key,
        anthropic_base_url=settings.anthropic_base_url,
        openai_api_key=settings.openai_api_key,
        openai_base_url=settings.openai_base_url,
        ollama_base_url=settings.ollama_base_url,
        max_tokens=settings.chat_max_tokens,
        timeout=settings.llm_timeout,
    )


def build_content_sync() -> ContentSync:
    fetcher = SanityContentFetcher(
        SanityConfig(
            project_id=settings.sanity_project_id or "",
            dataset=settings.sanity_dataset,
            api_version=settings.sanity_api_version,
            token=settings.sanity_token,
        )
    )
    return ContentSync(
        source=fetcher,
        embedder=get_embedder(),
        store=get_vectorstore(),
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )
