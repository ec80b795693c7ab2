from __future__ import annotations

"""Embedding providers and configuration validation."""

import hashlib
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class EmbeddingError(RuntimeError):
    """Raised when embeddings fail or are invalid."""
    pass


class EmbeddingConfigError(RuntimeError):
    """Raised when embedding configuration is invalid."""
    pass


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    dimension: int

    def embed(self, text: str) -> list[float]:
        """Return an embedding vector for the provided text."""
        raise NotImplementedError


def validate_vector(vector: list[float], dimension: int) -> list[float]:
    """Validate and normalize embedding vectors."""
    if len(vector) != dimension:
        raise EmbeddingError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = 256

    def embed(self, text: str) -> list[float]:
        """Embed text using token hashing and L2 normalization."""
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return validate_vector([0.0] * self.dimension, self.dimension)
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dimension
            vector[idx] += 1.0
        return validate_vector(self._l2_normalize(vector), self.dimension)

    def _l2_normalize(self, vector: list[float]) -> list[float]:
        """Normalize vector magnitude to 1.0."""
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]


_OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

_GEMINI_DIMENSIONS = {
    "models/text-embedding-004": 768,
    "text-embedding-004": 768,
    "models/embedding-001": 768,
}


_PROVIDER_MODEL_ENV = {
    "openai": "OPENAI_EMBEDDING_MODEL",
    "gemini": "GEMINI_EMBEDDING_MODEL",
}


def resolve_openai_dimension(model: str) -> int | None:
    return _OPENAI_DIMENSIONS.get(model)


def resolve_gemini_dimension(model: str) -> int | None:
    return _GEMINI_DIMENSIONS.get(model)


def _canonical_provider(provider: str) -> str:
    normalized = provider.lower().strip()
    if normalized in {"", "hash"}:
        return "hash"
    if normalized == "google":
        return "gemini"
    return normalized


@dataclass(frozen=True)
class EmbeddingConfigReport:
    """Validation report for embedding settings."""
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


def build_embedding_config_report(
    provider: str, model: str | None, dimension: int
) -> EmbeddingConfigReport:
    """Check that provider, model and dimension agree with each other.

    The query embedding must match the dimension of the vectors stored by the
    sync job, so a mismatch here means every search would fail.
    """
    name = _canonical_provider(provider)

    def report(
        ok: bool,
        status: str,
        expected: int | None = None,
        detail: str | None = None,
        action: str | None = None,
    ) -> EmbeddingConfigReport:
        return EmbeddingConfigReport(
            provider=name,
            model=model if name != "hash" else None,
            configured_dimension=dimension,
            expected_dimension=expected,
            ok=ok,
            status=status,
            detail=detail,
            action=action,
        )

    if name == "hash":
        if dimension <= 0:
            return report(
                False,
                "error",
                detail="EMBEDDING_DIMENSION must be greater than zero for hash embeddings.",
                action="Set EMBEDDING_DIMENSION to a positive integer.",
            )
        return report(True, "ok", expected=dimension)

    if name not in _PROVIDER_MODEL_ENV:
        return report(
            False,
            "error",
            detail="Unsupported embedding provider.",
            action="Set EMBEDDING_PROVIDER to hash, openai, or gemini.",
        )

    env_model = _PROVIDER_MODEL_ENV[name]
    if not model:
        return report(
            False,
            "error",
            detail=f"{env_model} is required for {name} embeddings.",
            action=f"Set {env_model} in .env.",
        )
    resolver = resolve_openai_dimension if name == "openai" else resolve_gemini_dimension
    expected = resolver(model)
    if expected is None:
        if dimension <= 0:
            return report(
                False,
                "error",
                detail=f"EMBEDDING_DIMENSION must be set for the configured {name} model.",
                action="Set EMBEDDING_DIMENSION based on the model documentation.",
            )
        return report(
            True,
            "warning",
            detail="Model dimension cannot be auto-validated. Confirm EMBEDDING_DIMENSION manually.",
        )
    if dimension != expected:
        return report(
            False,
            "error",
            expected=expected,
            detail=f"EMBEDDING_DIMENSION does not match the {name} model dimension.",
            action=f"Set EMBEDDING_DIMENSION to {expected}.",
        )
    return report(True, "ok", expected=expected)


def _checked_dimension(provider: str, model: str, dimension: int, expected: int | None) -> int:
    """Return the dimension to enforce, failing fast on a known mismatch."""
    if dimension <= 0:
        if expected is None:
            raise EmbeddingConfigError(
                f"EMBEDDING_DIMENSION must be set for {provider} model {model}"
            )
        return expected
    if expected is not None and dimension != expected:
        raise EmbeddingConfigError(f"EMBEDDING_DIMENSION should be {expected} for model {model}")
    return dimension


@dataclass
class OpenAIEmbedder:
    """Embedding provider backed by the OpenAI embeddings API."""
    api_key: str
    model: str
    dimension: int
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise EmbeddingConfigError("OPENAI_API_KEY is required for OpenAIEmbedder")
        if not self.model:
            raise EmbeddingConfigError("OPENAI_EMBEDDING_MODEL is required for OpenAIEmbedder")
        self.dimension = _checked_dimension(
            "openai", self.model, self.dimension, resolve_openai_dimension(self.model)
        )
        from openai import OpenAI

        self.client = OpenAI(api_key=self.api_key)

    def embed(self, text: str) -> list[float]:
        try:
            response = self.client.embeddings.create(model=self.model, input=text or " ")
        except Exception as exc:
            raise EmbeddingError(str(exc)) from exc
        return validate_vector(list(response.data[0].embedding), self.dimension)


@dataclass
class GeminiEmbedder:
    """Embedding provider backed by Google text embeddings (text-embedding-004 by default)."""
    api_key: str
    model: str
    dimension: int
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise EmbeddingConfigError("GEMINI_API_KEY is required for GeminiEmbedder")
        if not self.model:
            raise EmbeddingConfigError("GEMINI_EMBEDDING_MODEL is required for GeminiEmbedder")
        self.dimension = _checked_dimension(
            "gemini", self.model, self.dimension, resolve_gemini_dimension(self.model)
        )
        import google.generativeai as genai

        genai.configure(api_key=self.api_key)
        self.client = genai

    def embed(self, text: str) -> list[float]:
        try:
            result = self.client.embed_content(model=self.model, content=text or " ")
        except Exception as exc:
            raise EmbeddingError(str(exc)) from exc
        embedding = result.get("embedding") if isinstance(result, dict) else None
        if embedding is None:
            embedding = getattr(result, "embedding", None)
        if embedding is None:
            raise EmbeddingError("Gemini embedding response missing embedding vector")
        return validate_vector(list(embedding), self.dimension)
