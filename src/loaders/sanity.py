from __future__ import annotations

"""Fetch portfolio content from the Sanity CMS and flatten it into documents."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

PROJECTS_QUERY = """*[_type == "project"] {
  _id, _updatedAt, title, slug, category, summary, description,
  content, metrics, achievements, technologies, publishedAt
}"""

PROFILE_QUERY = """*[_type == "profile"][0] {
  _id, _updatedAt, name, heroHeadline, heroSubheadline, heroIntro,
  quickFacts, capabilities, sections, selectedProjects, technologies,
  bio, skills, experience
}"""

AI_PROJECTS_QUERY = """*[_type == "aiProject"] {
  _id, _updatedAt, title, slug, subtitle, description, category, status,
  overview, metrics, techStack, aiComponents, developmentProcess,
  learnings, achievements
}"""


class SanityFetchError(RuntimeError):
    """Raised when the Sanity query API fails or returns invalid data."""
    pass


@dataclass(frozen=True)
class SanityConfig:
    project_id: str
    dataset: str = "production"
    api_version: str = "2024-01-01"
    token: str | None = None
    timeout: float = 15.0


@dataclass(frozen=True)
class SanityDocument:
    """Plain-text rendition of one CMS record, ready for chunking."""
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def source_id(self) -> str:
        return str(self.metadata["source_id"])


def portable_text_to_plain_text(blocks: Any) -> str:
    """Flatten Portable Text blocks to paragraphs, skipping non-text blocks."""
    if not isinstance(blocks, list):
        return ""
    paragraphs: list[str] = []
    for block in blocks:
        if not isinstance(block, dict) or block.get("_type") != "block":
            continue
        children = block.get("children") or []
        text = "".join(
            str(child.get("text", "")) for child in children if isinstance(child, dict)
        )
        if text:
            paragraphs.append(text)
    return "\n\n".join(paragraphs)


def _bullets(parts: list[str], heading: str, items: list[str]) -> None:
    if not items:
        return
    parts.append(f"\n## {heading}")
    parts.extend(f"- {item}" for item in items)


def _labelled(items: Any) -> list[str]:
    return [f"{item.get('label')}: {item.get('value')}" for item in items or []]


def _slug(record: dict[str, Any]) -> str | None:
    slug = record.get("slug")
    return slug.get("current") if isinstance(slug, dict) else None


def project_to_document(project: dict[str, Any]) -> SanityDocument:
    parts = [f"# {project.get('title')}"]
    if project.get("category"):
        parts.append(f"Category: {project['category']}")
    for key in ("summary", "description"):
        if project.get(key):
            parts.append(project[key])
    body = portable_text_to_plain_text(project.get("content"))
    if body:
        parts.append(body)
    _bullets(parts, "Key Metrics", _labelled(project.get("metrics")))
    _bullets(parts, "Key Achievements", list(project.get("achievements") or []))
    technologies = project.get("technologies") or []
    if technologies:
        parts.append(f"\nTechnologies: {', '.join(technologies)}")
    return SanityDocument(
        content="\n\n".join(parts),
        metadata={
            "source": "sanity_project",
            "source_id": project["_id"],
            "title": project.get("title"),
            "category": project.get("category"),
            "slug": _slug(project),
            "updated_at": project.get("_updatedAt"),
            "technologies": technologies,
        },
    )


def profile_to_documents(profile: dict[str, Any] | None) -> list[SanityDocument]:
    """Render the profile plus one document per profile section."""
    if not profile:
        return []
    parts = [f"# {profile.get('name')}"]
    for key in ("heroHeadline", "heroSubheadline", "heroIntro"):
        if profile.get(key):
            parts.append(profile[key])
    _bullets(parts, "Quick Facts", _labelled(profile.get("quickFacts")))

    capabilities = profile.get("capabilities") or []
    if capabilities:
        parts.append("\n## Capabilities")
        for capability in capabilities:
            parts.append(f"\n### {capability.get('title')}")
            if capability.get("description"):
                parts.append(capability["description"])

    bio = portable_text_to_plain_text(profile.get("bio"))
    if bio:
        parts.append("\n## Background")
        parts.append(bio)

    skills = profile.get("skills") or []
    if skills:
        parts.append("\n## Skills")
        for group in skills:
            parts.append(f"\n### {group.get('category')}")
            parts.append(", ".join(group.get("skills") or []))

    technologies = profile.get("technologies")
    if isinstance(technologies, dict):
        parts.append("\n## Technologies & Tools")
        for category, techs in technologies.items():
            if techs:
                parts.append(f"\n### {category}")
                parts.append(", ".join(techs))

    experience = profile.get("experience") or []
    if experience:
        parts.append("\n## Experience")
        for entry in experience:
            parts.append(f"\n### {entry.get('role')} at {entry.get('company')}")
            if entry.get("description"):
                parts.append(entry["description"])

    updated_at = profile.get("_updatedAt")
    documents = [
        SanityDocument(
            content="\n\n".join(parts),
            metadata={
                "source": "sanity_profile",
                "source_id": profile["_id"],
                "title": "Profile",
                "category": "profile",
                "updated_at": updated_at,
            },
        )
    ]
    for index, section in enumerate(profile.get("sections") or []):
        section_parts = [f"# {section.get('heading')}"]
        text = portable_text_to_plain_text(section.get("content"))
        if text:
            section_parts.append(text)
        for subsection in section.get("subsections") or []:
            section_parts.append(f"\n## {subsection.get('heading')}")
            sub_text = portable_text_to_plain_text(subsection.get("content"))
            if sub_text:
                section_parts.append(sub_text)
        documents.append(
            SanityDocument(
                content="\n\n".join(section_parts),
                metadata={
                    "source": "sanity_profile",
                    "source_id": f"{profile['_id']}_section_{index}",
                    "title": section.get("heading"),
                    "category": "profile_section",
                    "updated_at": updated_at,
                },
            )
        )
    return documents


def ai_project_to_document(project: dict[str, Any]) -> SanityDocument:
    parts = [f"# {project.get('title')}"]
    if project.get("subtitle"):
        parts.append(project["subtitle"])
    if project.get("status"):
        parts.append(f"Status: {project['status']}")
    if project.get("category"):
        parts.append(f"Category: {project['category']}")
    if project.get("description"):
        parts.append(project["description"])

    overview = project.get("overview") or {}
    if overview.get("problem"):
        parts.extend(["\n## Problem", overview["problem"]])
    if overview.get("solution"):
        parts.extend(["\n## Solution", overview["solution"]])
    if overview.get("role"):
        parts.append(f"\n**Role:** {overview['role']}")
    if overview.get("timeline"):
        parts.append(f"**Timeline:** {overview['timeline']}")

    _bullets(parts, "Key Metrics", _labelled(project.get("metrics")))
    tech_stack = project.get("techStack") or []
    if tech_stack:
        parts.append(f"\nTech Stack: {', '.join(tech_stack)}")

    components = project.get("aiComponents") or []
    if components:
        parts.append("\n## AI Components")
        for component in components:
            parts.append(f"\n### {component.get('name')} ({component.get('technology')})")
            parts.append(component.get("description") or "")

    phases = project.get("developmentProcess") or []
    if phases:
        parts.append("\n## Development Process")
        for phase in phases:
            parts.append(f"\n### {phase.get('phase')}")
            parts.append(phase.get("description") or "")
            outcomes = phase.get("outcomes") or []
            if outcomes:
                parts.append("**Outcomes:**")
                parts.extend(f"- {outcome}" for outcome in outcomes)

    _bullets(parts, "Key Learnings", list(project.get("learnings") or []))
    _bullets(parts, "Achievements", list(project.get("achievements") or []))
    return SanityDocument(
        content="\n\n".join(parts),
        metadata={
            "source": "sanity_ai_project",
            "source_id": project["_id"],
            "title": project.get("title"),
            "category": project.get("category"),
            "slug": _slug(project),
            "status": project.get("status"),
            "updated_at": project.get("_updatedAt"),
            "techStack": tech_stack,
        },
    )


class SanityContentFetcher:
    """Run GROQ queries against the Sanity HTTP query API."""
    def __init__(self, config: SanityConfig, client: httpx.Client | None = None) -> None:
        if not config.project_id:
            raise SanityFetchError("SANITY_PROJECT_ID is required")
        self._config = config
        headers = {}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.timeout)
        self._headers = headers

    @property
    def query_url(self) -> str:
        config = self._config
        return (
            f"https://{config.project_id}.api.sanity.io/"
            f"v{config.api_version}/data/query/{config.dataset}"
        )

    def query(self, groq: str) -> Any:
        """Execute a GROQ query and return its result payload."""
        try:
            response = self._client.get(
                self.query_url, params={"query": groq}, headers=self._headers
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise SanityFetchError(str(exc)) from exc
        except ValueError as exc:
            raise SanityFetchError("Invalid Sanity response") from exc
        if not isinstance(payload, dict) or "result" not in payload:
            raise SanityFetchError("Sanity response missing result")
        return payload["result"]

    def fetch_projects(self) -> list[SanityDocument]:
        return [project_to_document(item) for item in self.query(PROJECTS_QUERY) or []]

    def fetch_profile(self) -> list[SanityDocument]:
        return profile_to_documents(self.query(PROFILE_QUERY))

    def fetch_ai_projects(self) -> list[SanityDocument]:
        return [ai_project_to_document(item) for item in self.query(AI_PROJECTS_QUERY) or []]

    def fetch_all(self) -> list[SanityDocument]:
        """Fetch every indexed content type."""
        projects = self.fetch_projects()
        profile = self.fetch_profile()
        ai_projects = self.fetch_ai_projects()
        logger.info(
            "sanity_content_fetched",
            extra={
                "projects": len(projects),
                "profile_sections": len(profile),
                "ai_projects": len(ai_projects),
            },
        )
        return [*projects, *profile, *ai_projects]

    def close(self) -> None:
        """Close the HTTP client when this fetcher created it."""
        if self._owns_client:
            self._client.close()
