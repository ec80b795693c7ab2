from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class MessagePart(BaseModel):
    type: str = "text"
    text: str | None = None


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str | None = None
    parts: list[MessagePart] | None = None

    @property
    def text(self) -> str:
        """Message text from content, or joined text parts."""
        if self.content is not None:
            return self.content
        return "".join(
            part.text or "" for part in self.parts or [] if part.type == "text"
        )


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(default_factory=list)
    session_id: str | None = Field(default=None, max_length=64)


class StatsResponse(BaseModel):
    backend: str
    chunk_count: int
    source_count: int
    embedding_dimension: int | None = None


class StatsHealthResponse(BaseModel):
    backend: str
    ok: bool
    detail: str | None = None


class EmbeddingHealthResponse(BaseModel):
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None = None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


class ErrorResponse(BaseModel):
    detail: Any
