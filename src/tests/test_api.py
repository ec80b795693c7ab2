from __future__ import annotations

import httpx
import pytest
from prometheus_client import REGISTRY

from src.app import dependencies
from src.app.dependencies import (
    get_conversation_logger,
    get_pipeline,
    get_vectorstore,
    reset_pipeline_cache,
)
from src.app.main import STREAM_INTERRUPTED_NOTICE, _stream_answer, app
from src.metadata.conversation_log import ConversationLogError
from src.rag.embeddings import HashEmbedder
from src.rag.llm import LLMError
from src.rag.pipeline import ChatState
from src.rag.types import ChatMessage, DocumentChunk
from src.vectorstore.base import VectorStoreError

pytestmark = pytest.mark.anyio


class FakeCompletionClient:
    def __init__(self, tokens: list[str] | None = None, error: Exception | None = None) -> None:
        self.tokens = tokens or []
        self.error = error
        self.system_prompts: list[str] = []

    async def stream_complete(self, system_prompt, messages, temperature, model):
        self.system_prompts.append(system_prompt)
        for token in self.tokens:
            yield token
        if self.error is not None:
            raise self.error


class BrokenStore:
    def search(self, query_vector, top_k, min_score):
        raise VectorStoreError("connection refused")


class RecordingLog:
    def __init__(self) -> None:
        self.entries: list[tuple] = []

    def start_session(self, session_id, ip_hash=None, user_agent=None) -> None:
        self.entries.append(("start", session_id))

    def log_message(self, session_id, message, is_redirect=False) -> None:
        self.entries.append((message.role, session_id))


class FailingLog:
    def start_session(self, session_id, ip_hash=None, user_agent=None) -> None:
        raise ConversationLogError("database is locked")

    def log_message(self, session_id, message, is_redirect=False) -> None:
        raise ConversationLogError("database is locked")


def install_client(monkeypatch, client: FakeCompletionClient) -> None:
    monkeypatch.setattr(dependencies, "build_llm_client", lambda: client)


def install_conversation_log(monkeypatch, log) -> None:
    monkeypatch.setenv("RAG_CHAT_LOG_DB_URI", "sqlite://")
    monkeypatch.setattr(dependencies, "ConversationLogger", lambda uri: log)


def stream_outcomes(outcome: str) -> float:
    return REGISTRY.get_sample_value("chat_streams_total", {"outcome": outcome}) or 0.0


def seed_store() -> None:
    embedder = HashEmbedder(dimension=256)
    text = "Michael grew up in Eugene Oregon in a purple house"
    get_vectorstore().add_chunks(
        [
            DocumentChunk(
                chunk_id="profile_chunk_0",
                content=text,
                source="sanity_profile",
                embedding=embedder.embed(text),
                metadata={"source_id": "profile"},
            )
        ]
    )


def get_client() -> httpx.AsyncClient:
    reset_pipeline_cache()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def chat_body(text: str, **extra) -> dict:
    return {"messages": [{"role": "user", "content": text}], **extra}


async def test_health_endpoint() -> None:
    async with get_client() as client:
        response = await client.get("/health", headers={"X-Request-ID": "req-1"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"] == "req-1"


async def test_chat_streams_grounded_answer(monkeypatch) -> None:
    fake = FakeCompletionClient(["Eugene", ", Oregon."])
    install_client(monkeypatch, fake)
    async with get_client() as client:
        seed_store()
        response = await client.post("/chat", json=chat_body("Where did Michael grow up?"))
    assert response.status_code == 200
    assert response.text == "Eugene, Oregon."
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["X-Session-Id"]
    assert response.headers["X-Request-ID"]
    assert "[Source: sanity_profile]" in fake.system_prompts[0]


async def test_chat_echoes_supplied_session(monkeypatch) -> None:
    install_client(monkeypatch, FakeCompletionClient(["ok"]))
    async with get_client() as client:
        from_header = await client.post(
            "/chat", json=chat_body("Hi"), headers={"X-Session-Id": "header-session"}
        )
        from_body = await client.post("/chat", json=chat_body("Hi", session_id="body-session"))
    assert from_header.headers["X-Session-Id"] == "header-session"
    assert from_body.headers["X-Session-Id"] == "body-session"


async def test_chat_accepts_message_parts(monkeypatch) -> None:
    fake = FakeCompletionClient(["ok"])
    install_client(monkeypatch, fake)
    payload = {"messages": [{"role": "user", "parts": [{"type": "text", "text": "Tell me about HBO"}]}]}
    async with get_client() as client:
        response = await client.post("/chat", json=payload)
    assert response.status_code == 200
    assert response.text == "ok"


async def test_chat_without_context_uses_fallback(monkeypatch) -> None:
    fake = FakeCompletionClient(["General answer."])
    install_client(monkeypatch, fake)
    async with get_client() as client:
        response = await client.post("/chat", json=chat_body("Favorite color?"))
    assert response.status_code == 200
    assert "No specific context available." in fake.system_prompts[0]


@pytest.mark.parametrize(
    "payload",
    [
        {"messages": []},
        {"messages": [{"role": "assistant", "content": "Hello"}]},
        {"messages": [{"role": "user", "content": ""}]},
    ],
)
async def test_chat_rejects_malformed_messages(monkeypatch, payload) -> None:
    fake = FakeCompletionClient(["never"])
    install_client(monkeypatch, fake)
    async with get_client() as client:
        response = await client.post("/chat", json=payload)
    assert response.status_code == 400
    assert fake.system_prompts == []


async def test_chat_rejects_unknown_role() -> None:
    async with get_client() as client:
        response = await client.post("/chat", json={"messages": [{"role": "tool", "content": "x"}]})
    assert response.status_code == 422


async def test_chat_retrieval_failure_returns_502(monkeypatch) -> None:
    fake = FakeCompletionClient(["never"])
    install_client(monkeypatch, fake)
    monkeypatch.setattr(dependencies, "build_vectorstore", lambda: BrokenStore())
    async with get_client() as client:
        response = await client.post("/chat", json=chat_body("Where did Michael grow up?"))
    assert response.status_code == 502
    assert fake.system_prompts == []


async def test_chat_completion_failure_returns_502(monkeypatch) -> None:
    install_client(monkeypatch, FakeCompletionClient(error=LLMError("unauthorized")))
    async with get_client() as client:
        response = await client.post("/chat", json=chat_body("Hi"))
    assert response.status_code == 502
    assert response.json()["detail"] == "Completion failed"


async def test_chat_logs_conversation(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("RAG_CHAT_LOG_DB_URI", f"sqlite:///{tmp_path / 'chat.db'}")
    install_client(monkeypatch, FakeCompletionClient(["Eugene."]))
    async with get_client() as client:
        response = await client.post(
            "/chat",
            json=chat_body("Where did Michael grow up?"),
            headers={"User-Agent": "pytest-agent", "X-Forwarded-For": "203.0.113.9"},
        )
    session_id = response.headers["X-Session-Id"]
    record = get_conversation_logger().get_session(session_id)
    reset_pipeline_cache()
    assert record is not None
    assert [message.role for message in record.messages] == ["user", "assistant"]
    assert record.messages[1].content == "Eugene."
    assert record.user_agent == "pytest-agent"
    assert record.ip_hash and record.ip_hash != "203.0.113.9"


async def test_stats_endpoints() -> None:
    async with get_client() as client:
        seed_store()
        stats = await client.get("/stats")
        health = await client.get("/stats/health")
        embedding = await client.get("/stats/embedding")
    assert stats.status_code == 200
    assert stats.json()["backend"] == "memory"
    assert stats.json()["chunk_count"] == 1
    assert health.json()["ok"] is True
    assert embedding.json()["provider"] == "hash"
    assert embedding.json()["ok"] is True


async def test_metrics_endpoint(monkeypatch) -> None:
    install_client(monkeypatch, FakeCompletionClient(["ok"]))
    async with get_client() as client:
        await client.post("/chat", json=chat_body("Hi"))
        response = await client.get("/metrics")
    assert response.status_code == 200
    assert "chat_streams_total" in response.text
    assert "http_requests_total" in response.text


async def test_chat_accepts_whitespace_question(monkeypatch) -> None:
    fake = FakeCompletionClient(["Ask me about Michael."])
    install_client(monkeypatch, fake)
    async with get_client() as client:
        response = await client.post("/chat", json=chat_body("   "))
    assert response.status_code == 200
    assert response.text == "Ask me about Michael."
    assert "No specific context available." in fake.system_prompts[0]


async def test_chat_mid_stream_failure_ends_with_notice(monkeypatch) -> None:
    log = RecordingLog()
    install_conversation_log(monkeypatch, log)
    install_client(
        monkeypatch,
        FakeCompletionClient(["Michael grew up in "], error=LLMError("connection reset")),
    )
    failed_before = stream_outcomes("failed")
    async with get_client() as client:
        response = await client.post("/chat", json=chat_body("Where did Michael grow up?"))
    assert response.status_code == 200
    assert response.text == "Michael grew up in " + STREAM_INTERRUPTED_NOTICE
    assert stream_outcomes("failed") == failed_before + 1
    assert "assistant" not in [entry[0] for entry in log.entries]


async def test_chat_survives_unreachable_log_database(monkeypatch, tmp_path) -> None:
    missing = tmp_path / "missing" / "sub" / "chat.db"
    monkeypatch.setenv("RAG_CHAT_LOG_DB_URI", f"sqlite:///{missing}")
    install_client(monkeypatch, FakeCompletionClient(["ok"]))
    async with get_client() as client:
        response = await client.post("/chat", json=chat_body("Hi"))
    assert get_conversation_logger() is None
    reset_pipeline_cache()
    assert response.status_code == 200
    assert response.text == "ok"


async def test_chat_survives_failing_conversation_log(monkeypatch) -> None:
    install_conversation_log(monkeypatch, FailingLog())
    install_client(monkeypatch, FakeCompletionClient(["Eugene."]))
    async with get_client() as client:
        response = await client.post("/chat", json=chat_body("Where did Michael grow up?"))
    reset_pipeline_cache()
    assert response.status_code == 200
    assert response.text == "Eugene."


async def test_client_abort_records_outcome_without_logging(monkeypatch) -> None:
    log = RecordingLog()
    install_conversation_log(monkeypatch, log)
    install_client(monkeypatch, FakeCompletionClient(["Michael ", "grew ", "up"]))
    reset_pipeline_cache()
    pipeline = get_pipeline()
    prepared = await pipeline.prepare([ChatMessage(role="user", content="Where?")], "abort-1")
    stream = pipeline.stream(prepared)
    first = await stream.__anext__()
    aborted_before = stream_outcomes("aborted")

    body = _stream_answer(stream, first, prepared)
    assert await body.__anext__() == "Michael "
    await body.aclose()
    reset_pipeline_cache()

    assert stream_outcomes("aborted") == aborted_before + 1
    assert log.entries == []
    assert prepared.state is ChatState.FAILED
