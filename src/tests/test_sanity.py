from __future__ import annotations

"""Sanity CMS fetcher tests."""

import httpx
import pytest

from src.loaders.sanity import (
    AI_PROJECTS_QUERY,
    PROFILE_QUERY,
    PROJECTS_QUERY,
    SanityConfig,
    SanityContentFetcher,
    SanityFetchError,
    portable_text_to_plain_text,
)

BLOCKS = [
    {"_type": "block", "children": [{"text": "First "}, {"text": "paragraph."}]},
    {"_type": "image", "asset": {"_ref": "image-1"}},
    {"_type": "block", "children": [{"text": "Second paragraph."}]},
]

RESULTS = {
    PROJECTS_QUERY: [
        {
            "_id": "project-1",
            "_updatedAt": "2024-05-01T00:00:00Z",
            "title": "Virgin America",
            "slug": {"current": "virgin-america"},
            "category": "case-study",
            "summary": "Airline website redesign.",
            "content": BLOCKS,
            "metrics": [{"label": "Conversion", "value": "+14%"}],
            "technologies": ["React", "Node"],
        }
    ],
    PROFILE_QUERY: {
        "_id": "profile",
        "_updatedAt": "2024-05-02T00:00:00Z",
        "name": "Michael Evans",
        "heroHeadline": "Creative technologist",
        "skills": [{"category": "AI", "skills": ["RAG", "LLMs"]}],
        "sections": [{"heading": "Early years", "content": BLOCKS}],
    },
    AI_PROJECTS_QUERY: [
        {
            "_id": "ai-1",
            "title": "Portfolio Chatbot",
            "status": "live",
            "overview": {"problem": "Visitors have questions."},
            "techStack": ["Python", "FastAPI"],
        }
    ],
}


def build_fetcher(handler) -> SanityContentFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SanityContentFetcher(SanityConfig(project_id="abc123", token="token"), client=client)


def query_handler(request: httpx.Request) -> httpx.Response:
    assert request.url.host == "abc123.api.sanity.io"
    assert request.url.path == "/v2024-01-01/data/query/production"
    assert request.headers["Authorization"] == "Bearer token"
    return httpx.Response(200, json={"result": RESULTS[request.url.params["query"]]})


def test_portable_text_flattening() -> None:
    assert portable_text_to_plain_text(BLOCKS) == "First paragraph.\n\nSecond paragraph."
    assert portable_text_to_plain_text(None) == ""


def test_fetch_all_builds_documents() -> None:
    documents = build_fetcher(query_handler).fetch_all()

    by_id = {document.source_id: document for document in documents}
    assert set(by_id) == {"project-1", "profile", "profile_section_0", "ai-1"}

    project = by_id["project-1"]
    assert project.metadata["source"] == "sanity_project"
    assert project.metadata["slug"] == "virgin-america"
    assert project.content.startswith("# Virgin America")
    assert "First paragraph." in project.content
    assert "- Conversion: +14%" in project.content
    assert "Technologies: React, Node" in project.content

    profile = by_id["profile"]
    assert profile.metadata["source"] == "sanity_profile"
    assert "RAG, LLMs" in profile.content
    assert by_id["profile_section_0"].metadata["category"] == "profile_section"

    ai_project = by_id["ai-1"]
    assert ai_project.metadata["source"] == "sanity_ai_project"
    assert "Status: live" in ai_project.content
    assert "Visitors have questions." in ai_project.content


def test_http_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(SanityFetchError):
        build_fetcher(handler).fetch_projects()


def test_missing_result_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ms": 4})

    with pytest.raises(SanityFetchError):
        build_fetcher(handler).fetch_projects()


def test_project_id_required() -> None:
    with pytest.raises(SanityFetchError):
        SanityContentFetcher(SanityConfig(project_id=""))


def test_close_releases_owned_client_only() -> None:
    injected = httpx.Client(transport=httpx.MockTransport(query_handler))
    SanityContentFetcher(SanityConfig(project_id="abc123"), client=injected).close()
    assert not injected.is_closed
    injected.close()

    owned = SanityContentFetcher(SanityConfig(project_id="abc123"))
    owned.close()
    assert owned._client.is_closed
