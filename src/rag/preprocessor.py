from __future__ import annotations

"""Query normalization, entity/keyword extraction and expansion for retrieval."""

import logging
import re

from src.rag.types import ProcessedQuery

logger = logging.getLogger(__name__)

# Applied in order, each at most once.
_QUESTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^(what|where|when|who|how|why|tell me about|describe|explain|can you|could you|please)\s+",
        re.IGNORECASE,
    ),
    re.compile(r"\?$"),
    re.compile(r"^(i want to know|i'd like to know|i need to know)\s+", re.IGNORECASE),
    re.compile(r"^(show me|give me|provide)\s+", re.IGNORECASE),
)

_STOP_WORDS = frozenset(
    {"the", "a", "an", "is", "are", "was", "were", "has", "have", "had", "does", "do", "did"}
)
_STOP_WORD_MAX_LEN = 2

SUBJECT_ENTITY = "Michael"

KNOWN_ENTITIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("michael", ("Michael Evans", "Michael")),
    ("eugene", ("Eugene, Oregon",)),
    ("colorado", ("University of Colorado", "Boulder")),
    ("virgin", ("Virgin America",)),
    ("casa bonita", ("Casa Bonita", "Trey Parker", "Matt Stone")),
    ("target", ("Target",)),
    ("hbo", ("HBO", "HBO Go")),
    ("lyft", ("Lyft",)),
    ("portland", ("Portland", "Work & Co")),
    ("before launcher", ("Before Launcher", "Before Labs")),
    ("huge", ("Huge",)),
    ("work & co", ("Work & Co",)),
    ("work and co", ("Work & Co",)),
)

TOPIC_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("education", ("college", "university", "study", "studied", "degree", "major")),
    ("background", ("grow up", "grew up", "childhood", "hometown", "born", "raised")),
    ("career", ("first job", "career", "work", "worked", "position", "role")),
    ("projects", ("project", "built", "created", "developed", "designed")),
    ("tech", ("technology", "programming", "coding", "software", "computer")),
    ("ai", ("ai", "artificial intelligence", "machine learning", "ml", "neural")),
)

TOPIC_EXPANSIONS: dict[str, str] = {
    "education": "college university degree major studied English political science Colorado Boulder",
    "background": "childhood hometown grew up Eugene Oregon purple house hippies raised",
    "career": "job work position role company agency consultant",
    "projects": "built created developed designed implementation product",
    "tech": "technology programming coding software development computer",
    "ai": "artificial intelligence machine learning ML neural networks AI",
}

QUERY_CONTEXT: tuple[tuple[str, str], ...] = (
    ("grow up", "Eugene Oregon childhood hometown purple house"),
    ("college", "University Colorado Boulder English political science"),
    ("first job", "Symantec customer data analyst business analyst first tech job career"),
    ("restaurant", "Casa Bonita cliff diving Denver Trey Parker Matt Stone"),
    ("hbo", "HBO Go Canadian Astral streaming mobile app"),
    ("portland", "Portland office Work Co Joe Stewart opened"),
    ("launcher", "Before Launcher Android home screen replacement Microsoft"),
    ("current", "PostPal consulting current now working"),
)

_SUBJECT_NAME_RE = re.compile(r"michael(?:'s)?(?:\s+evans)?", re.IGNORECASE)
_FIRST_PERSON = "I my me"

ALTERNATIVE_QUERY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"where did (.*) grow up", re.IGNORECASE), r"childhood hometown \1"),
    (re.compile(r"what did (.*) study", re.IGNORECASE), r"college major degree \1"),
    (re.compile(r"tell me about (.*)", re.IGNORECASE), r"\1 describe explain"),
    (re.compile(r"what is (.*) working on", re.IGNORECASE), r"\1 current projects now"),
    (re.compile(r"(.*)'s first job", re.IGNORECASE), r"first job career start \1"),
)


def _dedupe(values: list[str]) -> list[str]:
    """Drop repeated values while keeping first-occurrence order."""
    return list(dict.fromkeys(values))


def normalize_query(query: str) -> str:
    """Lower-case, strip question phrasing and drop short stop-words."""
    normalized = query.lower()
    for pattern in _QUESTION_PATTERNS:
        normalized = pattern.sub("", normalized, count=1)
    # A stop-word longer than two characters is kept.
    words = [
        word
        for word in normalized.split()
        if word not in _STOP_WORDS or len(word) > _STOP_WORD_MAX_LEN
    ]
    return " ".join(words).strip()


def extract_entities(query: str) -> list[str]:
    """Return canonical entities whose trigger occurs in the raw query."""
    lowered = query.lower()
    entities: list[str] = []
    for trigger, values in KNOWN_ENTITIES:
        if trigger in lowered:
            entities.extend(values)
    return _dedupe(entities)


def extract_keywords(normalized: str) -> list[str]:
    """Return topic categories and the trigger phrases that matched them."""
    keywords: list[str] = []
    for topic, triggers in TOPIC_KEYWORDS:
        for trigger in triggers:
            if trigger in normalized:
                keywords.append(topic)
                keywords.append(trigger)
    return _dedupe(keywords)


def expand_query(normalized: str, entities: list[str], keywords: list[str]) -> str:
    """Enrich the normalized query with entities and contextual terms."""
    parts = [normalized]
    if entities:
        parts.append(" ".join(entities))
    if any(SUBJECT_ENTITY in entity for entity in entities):
        parts.append(_SUBJECT_NAME_RE.sub(_FIRST_PERSON, normalized))
    for keyword in keywords:
        expansion = TOPIC_EXPANSIONS.get(keyword)
        if expansion:
            parts.append(expansion)
    for pattern, context in QUERY_CONTEXT:
        if pattern in normalized:
            parts.append(context)
    tokens = " ".join(parts).split()
    return " ".join(_dedupe(tokens))


def preprocess(query: str) -> ProcessedQuery:
    """Run the full preprocessing chain for a raw user question."""
    normalized = normalize_query(query)
    entities = extract_entities(query)
    keywords = extract_keywords(normalized)
    expanded = expand_query(normalized, entities, keywords)
    logger.debug(
        "query_preprocessed",
        extra={
            "query_length": len(query),
            "expanded_length": len(expanded),
            "entities": len(entities),
            "keywords": len(keywords),
        },
    )
    return ProcessedQuery(
        original=query,
        normalized=normalized,
        expanded=expanded,
        entities=entities,
        keywords=keywords,
    )


def generate_alternative_queries(query: str) -> list[str]:
    """Return the query plus pattern-based rephrasings of it."""
    alternatives = [query]
    lowered = query.lower()
    for pattern, template in ALTERNATIVE_QUERY_PATTERNS:
        if pattern.search(lowered):
            alternatives.append(pattern.sub(template, lowered, count=1))
    return alternatives
