from __future__ import annotations

"""Chat request orchestration: validate, preprocess, retrieve, assemble, dispatch."""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator

from src.rag.context import SYSTEM_PROMPT, assemble_context
from src.rag.dispatcher import CompletionDispatcher
from src.rag.preprocessor import preprocess
from src.rag.retriever import Retriever, rerank_results
from src.rag.types import ChatMessage, ProcessedQuery, RetrievalResult

logger = logging.getLogger(__name__)


class ChatRequestError(ValueError):
    """Raised when a chat request is malformed."""
    pass


class ChatState(str, Enum):
    """Lifecycle of a single chat request."""
    RECEIVED = "received"
    PREPROCESSED = "preprocessed"
    RETRIEVED = "retrieved"
    CONTEXT_ASSEMBLED = "context_assembled"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PreparedChat:
    """Retrieval output for one request, ready to be streamed."""
    session_id: str
    history: list[ChatMessage]
    query: ProcessedQuery
    results: list[RetrievalResult]
    context: str
    state: ChatState = ChatState.CONTEXT_ASSEMBLED

    @property
    def has_context(self) -> bool:
        return bool(self.results)


def validate_messages(messages: object) -> str:
    """Return the last user message text or raise ChatRequestError."""
    if not isinstance(messages, list) or not messages:
        raise ChatRequestError("Invalid request: messages must be a non-empty list")
    last = messages[-1]
    if not isinstance(last, ChatMessage) or last.role != "user":
        raise ChatRequestError("Invalid request: no user message")
    if not last.content:
        raise ChatRequestError("Invalid request: empty message")
    return last.content


@dataclass
class ChatPipeline:
    """Turn a conversation into a streamed, grounded answer."""
    retriever: Retriever
    dispatcher: CompletionDispatcher
    system_prompt: str = SYSTEM_PROMPT
    rerank: bool = False
    top_k: int | None = None
    min_score: float | None = None

    def _transition(self, session_id: str, state: ChatState) -> ChatState:
        logger.debug("chat_state", extra={"session_id": session_id, "state": state.value})
        return state

    async def prepare(self, messages: list[ChatMessage], session_id: str) -> PreparedChat:
        """Run every stage up to context assembly; errors propagate unchanged."""
        self._transition(session_id, ChatState.RECEIVED)
        try:
            question = validate_messages(messages)
        except ChatRequestError:
            self._transition(session_id, ChatState.FAILED)
            raise
        query = preprocess(question)
        self._transition(session_id, ChatState.PREPROCESSED)
        try:
            results = await self.retriever.retrieve(
                query.expanded, top_k=self.top_k, min_score=self.min_score
            )
        except Exception:
            self._transition(session_id, ChatState.FAILED)
            raise
        if self.rerank:
            results = rerank_results(results, query.original, query.entities)
        self._transition(session_id, ChatState.RETRIEVED)
        context = assemble_context(results)
        state = self._transition(session_id, ChatState.CONTEXT_ASSEMBLED)
        return PreparedChat(
            session_id=session_id,
            history=list(messages),
            query=query,
            results=results,
            context=context,
            state=state,
        )

    async def stream(self, prepared: PreparedChat) -> AsyncIterator[str]:
        """Stream the completion for a prepared request."""
        prepared.state = self._transition(prepared.session_id, ChatState.DISPATCHED)
        tokens = self.dispatcher.dispatch(
            self.system_prompt, prepared.context, prepared.history, prepared.session_id
        )
        try:
            async for token in tokens:
                if prepared.state is not ChatState.STREAMING:
                    prepared.state = self._transition(prepared.session_id, ChatState.STREAMING)
                yield token
        except (GeneratorExit, asyncio.CancelledError, Exception):
            prepared.state = self._transition(prepared.session_id, ChatState.FAILED)
            raise
        finally:
            await tokens.aclose()
        prepared.state = self._transition(prepared.session_id, ChatState.COMPLETED)

    async def run(self, messages: list[ChatMessage], session_id: str) -> AsyncIterator[str]:
        """Prepare and stream in one call."""
        prepared = await self.prepare(messages, session_id)
        async with aclosing(self.stream(prepared)) as tokens:
            async for token in tokens:
                yield token
