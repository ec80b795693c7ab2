from __future__ import annotations

"""Streaming chat completion clients."""

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

import httpx

from src.rag.types import ChatMessage


class LLMError(RuntimeError):
    """Raised when completion requests fail or responses are invalid."""
    pass


class CompletionClient(Protocol):
    """Protocol for streaming completion services."""

    def stream_complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        temperature: float,
        model: str,
    ) -> AsyncIterator[str]:
        """Yield answer text fragments as they arrive."""
        raise NotImplementedError


@asynccontextmanager
async def _open_client(
    client: httpx.AsyncClient | None, timeout: float | None
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one owned by the call."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


def _conversation(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Convert chat history into role/content dicts, dropping empty turns."""
    converted: list[dict[str, str]] = []
    for message in messages:
        role = message.role.strip().lower()
        content = message.content.strip()
        if not content or role not in {"user", "assistant"}:
            continue
        converted.append({"role": role, "content": content})
    return converted


def _sse_data(line: str) -> str | None:
    """Return the payload of an SSE data line."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


@dataclass(frozen=True)
class AnthropicCompletionClient:
    """Streaming client for the Anthropic Messages API."""
    api_key: str
    base_url: str = "https://api.anthropic.com"
    max_tokens: int = 1024
    timeout: float | None = None
    api_version: str = "2023-06-01"
    client: httpx.AsyncClient | None = None

    async def stream_complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        temperature: float,
        model: str,
    ) -> AsyncIterator[str]:
        """Stream text deltas from the Messages API."""
        payload = {
            "model": model,
            "system": system_prompt,
            "messages": _conversation(messages),
            "temperature": temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }
        try:
            async with _open_client(self.client, self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url.rstrip('/')}/v1/messages",
                    json=payload,
                    headers=headers,
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        data = _sse_data(line)
                        if not data:
                            continue
                        event = json.loads(data)
                        event_type = event.get("type")
                        if event_type == "error":
                            detail = (event.get("error") or {}).get("message", "stream error")
                            raise LLMError(detail)
                        if event_type == "message_stop":
                            break
                        if event_type != "content_block_delta":
                            continue
                        delta = event.get("delta") or {}
                        text = delta.get("text")
                        if isinstance(text, str) and text:
                            yield text
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise LLMError("Invalid Anthropic stream event") from exc


@dataclass(frozen=True)
class OpenAICompletionClient:
    """Streaming client for OpenAI-compatible chat completions."""
    api_key: str
    base_url: str = "https://api.openai.com/v1"
    max_tokens: int = 1024
    timeout: float | None = None
    client: httpx.AsyncClient | None = None

    async def stream_complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        temperature: float,
        model: str,
    ) -> AsyncIterator[str]:
        """Stream content deltas from chat completions."""
        payload = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}, *_conversation(messages)],
            "temperature": temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with _open_client(self.client, self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url.rstrip('/')}/chat/completions",
                    json=payload,
                    headers=headers,
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        data = _sse_data(line)
                        if not data:
                            continue
                        if data == "[DONE]":
                            break
                        chunk = json.loads(data)
                        choices = chunk.get("choices") or []
                        if not choices:
                            continue
                        delta = choices[0].get("delta") or {}
                        content = delta.get("content")
                        if isinstance(content, str) and content:
                            yield content
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise LLMError("Invalid OpenAI stream chunk") from exc


@dataclass(frozen=True)
class OllamaCompletionClient:
    """Streaming client for the Ollama chat API."""
    base_url: str = "http://localhost:11434"
    max_tokens: int = 1024
    timeout: float | None = None
    client: httpx.AsyncClient | None = None

    async def stream_complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        temperature: float,
        model: str,
    ) -> AsyncIterator[str]:
        """Stream message fragments from newline-delimited JSON."""
        payload = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}, *_conversation(messages)],
            "stream": True,
            "options": {
                "temperature": temperature,
                "num_predict": self.max_tokens,
            },
        }
        try:
            async with _open_client(self.client, self.timeout) as client:
                async with client.stream(
                    "POST", f"{self.base_url.rstrip('/')}/api/chat", json=payload
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        chunk = json.loads(line)
                        if chunk.get("error"):
                            raise LLMError(str(chunk["error"]))
                        message = chunk.get("message") or {}
                        content = message.get("content")
                        if isinstance(content, str) and content:
                            yield content
                        if chunk.get("done"):
                            break
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise LLMError("Invalid Ollama stream line") from exc


def build_completion_client(
    provider: str,
    *,
    anthropic_api_key: str | None,
    anthropic_base_url: str,
    openai_api_key: str | None,
    openai_base_url: str,
    ollama_base_url: str,
    max_tokens: int,
    timeout: float | None,
) -> AnthropicCompletionClient | OpenAICompletionClient | OllamaCompletionClient:
    """Factory for completion clients based on provider."""
    normalized = provider.strip().lower()
    if normalized in {"", "anthropic", "claude"}:
        if not anthropic_api_key:
            raise LLMError("ANTHROPIC_API_KEY is required for Anthropic provider")
        return AnthropicCompletionClient(
            api_key=anthropic_api_key,
            base_url=anthropic_base_url,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized == "openai":
        if not openai_api_key:
            raise LLMError("OPENAI_API_KEY is required for OpenAI provider")
        return OpenAICompletionClient(
            api_key=openai_api_key,
            base_url=openai_base_url,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized == "ollama":
        return OllamaCompletionClient(
            base_url=ollama_base_url,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    raise LLMError(f"Unsupported LLM provider: {provider}")
