from __future__ import annotations

"""FastAPI application entrypoint for the portfolio chatbot service."""

import asyncio
import logging
import uuid
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from src.app.dependencies import (
    get_conversation_logger,
    get_embedding_config_report,
    get_pipeline,
    get_vectorstore,
)
from src.app.metrics import (
    metrics_middleware,
    metrics_response,
    record_retrieved_chunks,
    record_stream_outcome,
)
from src.app.schemas import (
    ChatRequest,
    EmbeddingHealthResponse,
    ErrorResponse,
    StatsHealthResponse,
    StatsResponse,
)
from src.app.settings import settings
from src.metadata.conversation_log import LogMessage, hash_ip
from src.rag.embeddings import EmbeddingConfigError
from src.rag.llm import LLMError
from src.rag.pipeline import ChatPipeline, ChatRequestError, PreparedChat, validate_messages
from src.rag.retriever import RetrievalError
from src.rag.types import ChatMessage
from src.vectorstore.base import VectorStoreError

logger = logging.getLogger(__name__)

app = FastAPI(title="Portfolio Chatbot", version="0.1.0")

SESSION_HEADER = "X-Session-Id"
STREAM_INTERRUPTED_NOTICE = "\n\n[Error: the answer was interrupted. Please try again.]"


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level = getattr(logging, settings.log_level, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _safe_error_message(exc: Exception) -> str:
    """Return a safe error type name for logs and responses."""
    return type(exc).__name__


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


async def _log_conversation(action: str, *args) -> None:
    """Run a conversation-log call off the event loop, swallowing failures."""
    try:
        conversation_log = get_conversation_logger()
        if conversation_log is None:
            return
        await asyncio.to_thread(getattr(conversation_log, action), *args)
    except Exception as exc:
        logger.warning(
            "conversation_log_failed",
            extra={"action": action, "error": _safe_error_message(exc)},
        )


def _build_pipeline(request_id: str) -> ChatPipeline:
    try:
        return get_pipeline()
    except (EmbeddingConfigError, LLMError, VectorStoreError) as exc:
        logger.error(
            "chat_pipeline_unavailable",
            extra={"request_id": request_id, "detail": _safe_error_message(exc)},
        )
        raise HTTPException(status_code=503, detail="Chat service is not configured") from exc


async def _stream_answer(
    stream: AsyncIterator[str], first: str | None, prepared: PreparedChat
) -> AsyncIterator[str]:
    """Forward answer tokens and record how the stream ended.

    A completion failure after the first token cannot change the status code,
    so the stream ends with STREAM_INTERRUPTED_NOTICE instead.
    """
    outcome = "aborted"
    try:
        if first is not None:
            yield first
            async for token in stream:
                yield token
        outcome = "completed"
    except Exception as exc:
        outcome = "failed"
        logger.error(
            "chat_stream_terminated",
            extra={"session_id": prepared.session_id, "detail": _safe_error_message(exc)},
        )
        yield STREAM_INTERRUPTED_NOTICE
    finally:
        await stream.aclose()
        record_stream_outcome(outcome)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.get("/stats", response_model=StatsResponse)
async def stats() -> StatsResponse:
    """Return document store stats."""
    try:
        payload = await asyncio.to_thread(get_vectorstore().stats)
    except VectorStoreError as exc:
        raise HTTPException(status_code=502, detail="Document store unavailable") from exc
    return StatsResponse(**payload)


@app.get("/stats/health", response_model=StatsHealthResponse)
async def stats_health() -> StatsHealthResponse:
    """Return document store health status."""
    try:
        store = get_vectorstore()
    except VectorStoreError as exc:
        return StatsHealthResponse(backend=settings.vectorstore_backend, ok=False, detail=str(exc))
    return StatsHealthResponse(**await asyncio.to_thread(store.health))


@app.get("/stats/embedding", response_model=EmbeddingHealthResponse)
async def embedding_health() -> EmbeddingHealthResponse:
    """Return embedding configuration health checks."""
    report = get_embedding_config_report()
    return EmbeddingHealthResponse(**report.__dict__)


@app.post(
    "/chat",
    response_class=StreamingResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def chat(request: ChatRequest, http_request: Request) -> StreamingResponse:
    """Stream a grounded answer to the latest user message."""
    request_id = getattr(http_request.state, "request_id", str(uuid.uuid4()))
    supplied = http_request.headers.get(SESSION_HEADER) or request.session_id
    session_id = supplied or str(uuid.uuid4())
    messages = [ChatMessage(role=message.role, content=message.text) for message in request.messages]

    try:
        question = validate_messages(messages)
    except ChatRequestError as exc:
        logger.info("chat_request_rejected", extra={"request_id": request_id, "detail": str(exc)})
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    pipeline = _build_pipeline(request_id)
    if not supplied:
        await _log_conversation(
            "start_session",
            session_id,
            hash_ip(_client_ip(http_request)),
            http_request.headers.get("user-agent"),
        )
    await _log_conversation("log_message", session_id, LogMessage(role="user", content=question))

    try:
        prepared = await pipeline.prepare(messages, session_id)
    except ChatRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RetrievalError as exc:
        record_stream_outcome("failed")
        logger.error(
            "chat_retrieval_failed",
            extra={"request_id": request_id, "detail": _safe_error_message(exc)},
        )
        raise HTTPException(status_code=502, detail="Retrieval failed") from exc
    record_retrieved_chunks(len(prepared.results))
    logger.info(
        "chat_prepared",
        extra={
            "request_id": request_id,
            "session_id": session_id,
            "results": len(prepared.results),
            "has_context": prepared.has_context,
        },
    )

    stream = pipeline.stream(prepared)
    try:
        first = await anext(stream)
    except StopAsyncIteration:
        first = None
    except LLMError as exc:
        await stream.aclose()
        record_stream_outcome("failed")
        logger.error(
            "chat_completion_failed",
            extra={"request_id": request_id, "detail": _safe_error_message(exc)},
        )
        raise HTTPException(status_code=502, detail="Completion failed") from exc

    return StreamingResponse(
        _stream_answer(stream, first, prepared),
        media_type="text/plain; charset=utf-8",
        headers={SESSION_HEADER: session_id},
    )
