from __future__ import annotations

"""End-to-end chat pipeline tests with in-memory collaborators."""

import pytest

from src.rag.context import NO_CONTEXT_FALLBACK
from src.rag.dispatcher import CompletionDispatcher
from src.rag.embeddings import HashEmbedder
from src.rag.pipeline import ChatPipeline, ChatRequestError, ChatState, validate_messages
from src.rag.retriever import RetrievalError, Retriever
from src.rag.types import ChatMessage, DocumentChunk
from src.vectorstore.inmemory import InMemoryVectorStore
from src.vectorstore.base import VectorStoreError

pytestmark = pytest.mark.anyio

CHUNKS = {
    "virgin": "Virgin America redesign of the airline website",
    "hbo": "HBO Go streaming app for Canadian Astral",
}


class FakeCompletionClient:
    def __init__(self, tokens: list[str]) -> None:
        self.tokens = tokens
        self.system_prompts: list[str] = []

    async def stream_complete(self, system_prompt, messages, temperature, model):
        self.system_prompts.append(system_prompt)
        for token in self.tokens:
            yield token


class RecordingLog:
    def __init__(self) -> None:
        self.entries: list[tuple] = []

    def log_message(self, session_id, message, is_redirect=False) -> None:
        self.entries.append((session_id, message, is_redirect))


class BrokenStore:
    def search(self, query_vector, top_k, min_score):
        raise VectorStoreError("timeout")


def build_pipeline(
    client: FakeCompletionClient,
    log: RecordingLog | None = None,
    min_score: float = 0.25,
) -> ChatPipeline:
    embedder = HashEmbedder()
    store = InMemoryVectorStore()
    store.add_chunks(
        DocumentChunk(
            chunk_id=chunk_id,
            content=text,
            source="sanity_project",
            embedding=embedder.embed(text),
            metadata={"source_id": chunk_id},
        )
        for chunk_id, text in CHUNKS.items()
    )
    retriever = Retriever(embedder=embedder, store=store, min_score=min_score)
    dispatcher = CompletionDispatcher(client=client, model="m", conversation_log=log)
    return ChatPipeline(retriever=retriever, dispatcher=dispatcher)


def user(text: str) -> list[ChatMessage]:
    return [ChatMessage(role="user", content=text)]


async def test_grounded_answer_includes_source_block() -> None:
    client = FakeCompletionClient(["Michael ", "redesigned it."])
    pipeline = build_pipeline(client)

    prepared = await pipeline.prepare(user("Tell me about Virgin America"), "s1")
    tokens = [token async for token in pipeline.stream(prepared)]

    assert prepared.query.entities == ["Virgin America"]
    assert prepared.results[0].chunk.chunk_id == "virgin"
    assert prepared.has_context
    assert f"[Source: sanity_project]\n{CHUNKS['virgin']}" in prepared.context
    assert CHUNKS["virgin"] in client.system_prompts[0]
    assert "".join(tokens) == "Michael redesigned it."
    assert prepared.state is ChatState.COMPLETED


class RecordingPipeline(ChatPipeline):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.states: list[ChatState] = []

    def _transition(self, session_id: str, state: ChatState) -> ChatState:
        self.states.append(state)
        return super()._transition(session_id, state)


async def test_empty_question_is_rejected() -> None:
    base = build_pipeline(FakeCompletionClient([]))
    pipeline = RecordingPipeline(retriever=base.retriever, dispatcher=base.dispatcher)

    with pytest.raises(ChatRequestError):
        await pipeline.prepare(user(""), "s1")
    assert pipeline.states == [ChatState.RECEIVED, ChatState.FAILED]
    with pytest.raises(ChatRequestError):
        validate_messages([])
    with pytest.raises(ChatRequestError):
        validate_messages([ChatMessage(role="assistant", content="hi")])


async def test_high_threshold_uses_fallback_context() -> None:
    client = FakeCompletionClient(["General answer."])
    pipeline = build_pipeline(client, min_score=0.9)

    prepared = await pipeline.prepare(user("What restaurant did he work on?"), "s1")
    tokens = [token async for token in pipeline.stream(prepared)]

    assert prepared.results == []
    assert not prepared.has_context
    assert prepared.context == NO_CONTEXT_FALLBACK
    assert client.system_prompts[0].endswith(NO_CONTEXT_FALLBACK)
    assert tokens == ["General answer."]


async def test_aborted_stream_skips_logging() -> None:
    log = RecordingLog()
    pipeline = build_pipeline(FakeCompletionClient(["a", "b", "c"]), log=log)

    prepared = await pipeline.prepare(user("Tell me about HBO"), "s1")
    stream = pipeline.stream(prepared)
    assert await stream.__anext__() == "a"
    await stream.aclose()

    assert log.entries == []
    assert prepared.state is ChatState.FAILED


async def test_run_logs_completed_answer() -> None:
    log = RecordingLog()
    pipeline = build_pipeline(FakeCompletionClient(["done"]), log=log)

    tokens = [token async for token in pipeline.run(user("Tell me about HBO"), "s9")]

    assert tokens == ["done"]
    assert [entry[0] for entry in log.entries] == ["s9"]


async def test_retrieval_failure_surfaces() -> None:
    client = FakeCompletionClient(["never"])
    pipeline = build_pipeline(client)
    pipeline.retriever = Retriever(embedder=HashEmbedder(), store=BrokenStore())

    with pytest.raises(RetrievalError):
        await pipeline.prepare(user("Tell me about HBO"), "s1")
    assert client.system_prompts == []


async def test_whitespace_question_reaches_retrieval() -> None:
    client = FakeCompletionClient(["Ask me about Michael."])
    pipeline = build_pipeline(client)

    prepared = await pipeline.prepare(user("   "), "s1")
    tokens = [token async for token in pipeline.stream(prepared)]

    assert prepared.query.normalized == ""
    assert prepared.context == NO_CONTEXT_FALLBACK
    assert tokens == ["Ask me about Michael."]
    assert prepared.state is ChatState.COMPLETED
