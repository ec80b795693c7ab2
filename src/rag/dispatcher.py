from __future__ import annotations

"""Completion dispatch with streaming output and post-completion logging."""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from src.metadata.conversation_log import LogMessage
from src.rag.context import build_system_prompt, is_redirect
from src.rag.llm import CompletionClient
from src.rag.types import ChatMessage

logger = logging.getLogger(__name__)


class MessageLog(Protocol):
    """Sink for finished conversation turns."""

    def log_message(self, session_id: str, message: LogMessage, is_redirect: bool = False) -> None:
        """Record one message for a session."""
        raise NotImplementedError


@dataclass
class CompletionDispatcher:
    """Stream a grounded completion and log the finished answer once."""
    client: CompletionClient
    model: str
    temperature: float = 0.7
    conversation_log: MessageLog | None = None

    async def dispatch(
        self,
        system_prompt_template: str,
        assembled_context: str,
        history: list[ChatMessage],
        session_id: str,
    ) -> AsyncIterator[str]:
        """Yield answer tokens as they arrive.

        The answer is logged only after the upstream stream ends normally;
        a stream that fails or is closed early by the consumer is not logged.
        """
        system_prompt = build_system_prompt(system_prompt_template, assembled_context)
        parts: list[str] = []
        stream = self.client.stream_complete(
            system_prompt, history, temperature=self.temperature, model=self.model
        )
        try:
            async with aclosing(stream) as tokens:
                async for token in tokens:
                    parts.append(token)
                    yield token
        except (GeneratorExit, asyncio.CancelledError):
            logger.info(
                "chat_stream_aborted",
                extra={"session_id": session_id, "tokens": len(parts)},
            )
            raise
        except Exception as exc:
            logger.error(
                "chat_stream_failed",
                extra={
                    "session_id": session_id,
                    "tokens": len(parts),
                    "error": type(exc).__name__,
                },
            )
            raise
        answer = "".join(parts)
        logger.info(
            "chat_stream_completed",
            extra={"session_id": session_id, "answer_length": len(answer)},
        )
        await self._log_answer(session_id, answer)

    async def _log_answer(self, session_id: str, answer: str) -> None:
        """Record the assistant answer, swallowing sink failures."""
        if self.conversation_log is None:
            return
        message = LogMessage(role="assistant", content=answer)
        try:
            await asyncio.to_thread(
                self.conversation_log.log_message,
                session_id,
                message,
                is_redirect(answer),
            )
        except Exception as exc:
            logger.warning(
                "conversation_log_failed",
                extra={"session_id": session_id, "error": type(exc).__name__},
            )
