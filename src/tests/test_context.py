from __future__ import annotations

"""Context assembly tests."""

from src.rag.context import (
    CONTEXT_HEADING,
    CONTEXT_SEPARATOR,
    NO_CONTEXT_FALLBACK,
    SYSTEM_PROMPT,
    assemble_context,
    build_system_prompt,
    is_redirect,
)
from src.rag.types import DocumentChunk, RetrievalResult


def make_result(content: str, source: str, score: float) -> RetrievalResult:
    return RetrievalResult(
        chunk=DocumentChunk(chunk_id=source, content=content, source=source),
        score=score,
    )


def test_empty_results_use_fallback() -> None:
    assert assemble_context([]) == NO_CONTEXT_FALLBACK


def test_results_rendered_in_order_verbatim() -> None:
    results = [
        make_result("Second best  text\nwith lines", "sanity_profile", 0.4),
        make_result("Best text", "sanity_project", 0.9),
    ]

    context = assemble_context(results)

    assert context == (
        "[Source: sanity_profile]\nSecond best  text\nwith lines"
        + CONTEXT_SEPARATOR
        + "[Source: sanity_project]\nBest text"
    )


def test_system_prompt_appends_context() -> None:
    prompt = build_system_prompt(SYSTEM_PROMPT, "ctx")

    assert prompt.startswith(SYSTEM_PROMPT)
    assert prompt.endswith(f"{CONTEXT_HEADING}\n\nctx")


def test_redirect_detection() -> None:
    assert is_redirect("I’m here to help with questions about Michael's professional background.")
    assert not is_redirect("Michael worked at Virgin America.")
