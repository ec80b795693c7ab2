from __future__ import annotations

"""Grounding context assembly and system prompt construction."""

from src.rag.types import RetrievalResult

CONTEXT_SEPARATOR = "\n\n---\n\n"
CONTEXT_HEADING = "**Context about Michael:**"

NO_CONTEXT_FALLBACK = (
    "No specific context available. Provide a general helpful response about "
    "Michael's professional background and suggest the user ask about his "
    "projects, experience or skills."
)

REDIRECT_PHRASE = "I'm here to help with questions about Michael"

SYSTEM_PROMPT = (
    "You are an AI assistant representing Michael Evans, an AI/ML expert and "
    "creative technologist.\n\n"
    "Your role is to:\n"
    "- Answer questions about Michael's professional experience, skills, projects, and background\n"
    "- Be helpful, professional, and conversational\n"
    "- Provide specific examples and details when available\n"
    "- If you don't know something, say so honestly\n"
    "- Stay focused on Michael's professional life and work\n\n"
    "Tone:\n"
    "- Professional but approachable\n"
    "- Knowledgeable without being arrogant\n"
    "- Clear and concise\n"
    "- Enthusiastic about technology\n\n"
    "Guidelines:\n"
    "- Use the context provided to give accurate, detailed answers\n"
    "- Cite specific projects or experiences when relevant\n"
    "- If asked about availability for work, be positive but direct them to contact Michael\n"
    "- Don't make up information not in the context\n"
    "- For off-topic questions, politely redirect by starting with "
    f"\"{REDIRECT_PHRASE}'s professional background.\""
)


def base_system_prompt() -> str:
    """Return the default instruction template for the chat assistant."""
    return SYSTEM_PROMPT


def render_result(result: RetrievalResult) -> str:
    """Render one hit with its source label."""
    return f"[Source: {result.chunk.source}]\n{result.chunk.content}"


def assemble_context(results: list[RetrievalResult]) -> str:
    """Join hits in the given order, or return the fallback sentence when empty."""
    if not results:
        return NO_CONTEXT_FALLBACK
    return CONTEXT_SEPARATOR.join(render_result(result) for result in results)


def build_system_prompt(template: str, context: str) -> str:
    """Append the assembled context to the instruction template."""
    return f"{template}\n\n{CONTEXT_HEADING}\n\n{context}"


def is_redirect(answer: str) -> bool:
    """Return True when the answer uses the off-topic redirect phrasing."""
    return REDIRECT_PHRASE.lower() in answer.replace("\u2019", "'").lower()
