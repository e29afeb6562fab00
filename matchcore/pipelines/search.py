"""Candidate search: weighted multi-source text index and boolean filtering.

Every candidate is turned into a ``CandidateDocument`` (one lowercased text
per data source). Free-text queries are scored against it with a fixed
source-weight table. Every non-blank query is also evaluated as a boolean
filter (``and`` / ``or`` / ``not``) over one concatenated string, a separate
stage that runs before scoring.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from matchcore import models
from matchcore.config import settings
from matchcore.errors import BadRequestError
from matchcore.pipelines.normalization import as_list, dict_entries, extract_plain_text
from matchcore.store import EntityStore

logger = logging.getLogger(__name__)


SOURCE_WEIGHTS: dict[str, int] = {
    "name": 10,
    "skills": 9,
    "headline": 8,
    "experience_title": 7,
    "resume_metadata": 7,
    "experience_company": 6,
    "resume_text": 6,
    "bio": 5,
    "certifications": 5,
    "experience_description": 5,
    "education": 4,
    "location": 3,
}

SOURCE_LABELS: dict[str, str] = {
    "name": "Name",
    "headline": "Job Title",
    "skills": "Skills",
    "experience_title": "Past Job Title",
    "experience_company": "Company",
    "experience_description": "Experience Details",
    "bio": "Profile Bio",
    "resume_text": "Resume",
    "resume_metadata": "Resume",
    "education": "Education",
    "certifications": "Certifications",
    "location": "Location",
}

BOOLEAN_KEYWORDS = frozenset({"and", "or", "not"})

_PHRASE_PATTERN = re.compile(r'"([^"]+)"')
_KEYWORD_PATTERN = re.compile(r"\b(?:AND|OR|NOT)\b", re.IGNORECASE)


class SearchError(Exception):
    """Raised when the search pipeline fails."""
    pass


@dataclass
class CandidateDocument:
    """Per-candidate text index, rebuilt for every query."""
    candidate_id: int | None
    sources: dict[str, str] = field(default_factory=dict)
    full_text: str = ""


@dataclass
class SearchMatch:
    """Why a candidate matched: one entry per source at most."""
    source: str
    label: str
    term: str
    snippet: str


@dataclass
class SearchResult:
    """Scored search hit."""
    candidate: models.Candidate
    user: models.User | None
    score: int
    matches: list[SearchMatch] = field(default_factory=list)


@dataclass
class SearchFilters:
    """Structured pre-filters applied before any text matching."""
    experience_level: str | None = None
    industry: str | None = None
    location: str | None = None
    min_experience: int | None = None
    max_experience: int | None = None
    exclude_not_looking: bool = False


def source_weight(source: str) -> int:
    return SOURCE_WEIGHTS.get(source, 1)


def count_occurrences(term: str, text: str) -> int:
    """Case-insensitive count of non-overlapping literal occurrences."""
    if not term or not text:
        return 0
    return text.lower().count(term.lower())


def _parse_metadata(raw: Any, candidate_id: int | None) -> dict | None:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed resume metadata for candidate {candidate_id}: {e}")
            return None
        if isinstance(decoded, dict):
            return decoded
    logger.warning(f"Skipping resume metadata of type {type(raw).__name__} for candidate {candidate_id}")
    return None


def _joined(parts: Iterable[Any]) -> str:
    return " ".join(str(p) for p in parts if p)


def build_candidate_document(
    candidate: models.Candidate,
    user: models.User | None = None,
) -> CandidateDocument:
    """Build the multi-source text index for one candidate.

    Absent fields are omitted. Malformed JSON fields (undecodable metadata,
    non-object entries, wrongly typed lists) are logged and skipped; they
    never fail the whole document.
    """
    sources: dict[str, str] = {}
    owner = f"candidate {candidate.id}"

    if user is not None and user.full_name:
        sources["name"] = user.full_name.lower()
    if candidate.headline:
        sources["headline"] = candidate.headline.lower()
    skills = as_list(candidate.skills, "skills", owner)
    if skills:
        sources["skills"] = _joined(skills).lower()
    if candidate.bio:
        sources["bio"] = extract_plain_text(candidate.bio).lower()
    if candidate.location:
        sources["location"] = candidate.location.lower()

    titles, companies, descriptions = [], [], []
    for entry in dict_entries(candidate.experience, "experience", owner):
        if entry.get("title"):
            titles.append(str(entry["title"]).lower())
        if entry.get("company"):
            companies.append(str(entry["company"]).lower())
        if entry.get("description"):
            descriptions.append(extract_plain_text(entry["description"]).lower())
    if titles:
        sources["experience_title"] = " ".join(titles)
    if companies:
        sources["experience_company"] = " ".join(companies)
    if descriptions:
        sources["experience_description"] = " ".join(descriptions)

    education = dict_entries(candidate.education, "education", owner)
    if education:
        sources["education"] = " ".join(
            f"{edu.get('degree') or ''} {edu.get('major') or ''} "
            f"{edu.get('university') or edu.get('school') or ''}".lower()
            for edu in education
        )

    certifications = dict_entries(candidate.certifications, "certifications", owner)
    if certifications:
        sources["certifications"] = " ".join(
            f"{cert.get('name') or ''} {cert.get('issuer') or ''}".lower()
            for cert in certifications
        )

    if candidate.resume_parsed_text:
        sources["resume_text"] = candidate.resume_parsed_text.lower()

    if candidate.resume_parsed_metadata:
        metadata = _parse_metadata(candidate.resume_parsed_metadata, candidate.id)
        if metadata is not None:
            sources["resume_metadata"] = _joined([
                metadata.get("summary") or "",
                *as_list(metadata.get("skills"), "resume metadata skills", owner),
                *as_list(metadata.get("experience_highlights"), "resume metadata experience_highlights", owner),
                *as_list(metadata.get("education_highlights"), "resume metadata education_highlights", owner),
            ]).lower()

    return CandidateDocument(
        candidate_id=candidate.id,
        sources=sources,
        full_text=" ".join(sources.values()),
    )


def extract_search_terms(query: str, min_length: int | None = None) -> list[str]:
    """Split a free-text query into scoring terms.

    Quoted phrases come first (verbatim, case-folded), then the remaining
    words longer than two characters with boolean keywords and parentheses
    removed. Duplicates are dropped, first occurrence wins.
    """
    min_length = min_length or settings.search.min_term_length
    phrases = [p.lower() for p in _PHRASE_PATTERN.findall(query) if p.strip()]

    remainder = _PHRASE_PATTERN.sub(" ", query)
    remainder = _KEYWORD_PATTERN.sub(" ", remainder)
    remainder = remainder.replace("(", " ").replace(")", " ")

    tokens = [
        token
        for token in remainder.lower().split()
        if len(token) >= min_length and token not in BOOLEAN_KEYWORDS
    ]

    return list(dict.fromkeys([*phrases, *tokens]))


def extract_snippet(text: str, term: str, context: int | None = None) -> str:
    """Text around the first occurrence of ``term``, ``...``-marked when cut."""
    context = settings.search.snippet_context if context is None else context
    index = text.lower().find(term.lower())
    if index == -1:
        return text[:100]

    start = max(0, index - context)
    end = min(len(text), index + len(term) + context)

    snippet = text[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


def score_document(document: CandidateDocument, terms: list[str]) -> tuple[int, list[SearchMatch]]:
    """Weighted occurrence score plus one explanation per matching source."""
    score = 0
    matches: list[SearchMatch] = []
    matched_sources: set[str] = set()

    for term in terms:
        for source, text in document.sources.items():
            occurrences = count_occurrences(term, text)
            if not occurrences:
                continue

            score += source_weight(source) * occurrences

            if source not in matched_sources:
                matched_sources.add(source)
                matches.append(SearchMatch(
                    source=source,
                    label=SOURCE_LABELS.get(source, source),
                    term=term,
                    snippet=extract_snippet(text, term),
                ))

    return score, matches


def search(
    query: str | None,
    candidates: Iterable[models.Candidate],
    users_map: Mapping[int, models.User] | None = None,
    *,
    keep_unscored: bool = False,
) -> list[SearchResult]:
    """Score candidates against a free-text query.

    An empty query returns every candidate with score 0. Otherwise only
    candidates with a positive score are returned, best first; equal scores
    keep candidate id order. With ``keep_unscored`` every candidate is
    returned and zero-score ones follow the scored hits.
    """
    users_map = users_map or {}
    candidates = list(candidates)

    if not query or not query.strip():
        return [
            SearchResult(candidate=c, user=users_map.get(c.user_id), score=0)
            for c in candidates
        ]

    terms = extract_search_terms(query)
    logger.debug(f"Search terms for {query!r}: {terms}")

    results: list[SearchResult] = []
    for candidate in candidates:
        user = users_map.get(candidate.user_id)
        document = build_candidate_document(candidate, user)
        score, matches = score_document(document, terms)
        if score > 0 or matches or keep_unscored:
            results.append(SearchResult(candidate=candidate, user=user, score=score, matches=matches))

    results.sort(key=lambda r: (-r.score, r.candidate.id if r.candidate.id is not None else 0))
    return results


def build_searchable_text(candidate: models.Candidate) -> str:
    """Single lowercased string the boolean filter runs against."""
    owner = f"candidate {candidate.id}"
    experience = " ".join(
        f"{e.get('title') or ''} {e.get('company') or ''} {extract_plain_text(e.get('description'))}"
        for e in dict_entries(candidate.experience, "experience", owner)
    )
    return " ".join([
        candidate.resume_normalized_text or "",
        candidate.headline or "",
        extract_plain_text(candidate.bio),
        _joined(as_list(candidate.skills, "skills", owner)),
        experience,
    ]).lower()


def _clean_alternative(alternative: str) -> str:
    alternative = alternative.replace("(", " ").replace(")", " ").replace('"', " ")
    return " ".join(alternative.split())


def matches_boolean_query(query: str, searchable_text: str) -> bool:
    """Evaluate ``a and (b or c) and not d`` style queries.

    The query is split on ``and`` into required clauses and every clause on
    ``or`` into alternatives. An alternative starting with ``not`` must be
    absent from the text, any other must be present. Parentheses only group
    visually; they carry no precedence.
    """
    normalized = query.lower().strip()
    if not normalized:
        return True
    text = searchable_text.lower()

    for clause in re.split(r"\s+and\s+", normalized):
        alternatives = [_clean_alternative(a) for a in re.split(r"\s+or\s+", clause)]
        alternatives = [a for a in alternatives if a]
        if not alternatives:
            continue

        satisfied = False
        for alternative in alternatives:
            if alternative.startswith("not "):
                if alternative[4:].strip() not in text:
                    satisfied = True
                    break
            elif alternative in text:
                satisfied = True
                break

        if not satisfied:
            return False

    return True


def apply_filters(candidates: Iterable[models.Candidate], filters: SearchFilters) -> list[models.Candidate]:
    """Apply structured filters (exact fields and experience bounds)."""
    selected = []
    for c in candidates:
        if filters.experience_level and c.experience_level != filters.experience_level:
            continue
        if filters.industry and c.industry != filters.industry:
            continue
        if filters.location and c.location != filters.location:
            continue
        years = c.experience_years or 0
        if filters.min_experience is not None and years < filters.min_experience:
            continue
        if filters.max_experience is not None and years > filters.max_experience:
            continue
        if filters.exclude_not_looking and c.job_search_status == "not_looking":
            continue
        selected.append(c)
    return selected


async def search_candidates(
    store: EntityStore,
    query: str | None,
    filters: SearchFilters | None = None,
    *,
    boolean: bool = True,
    limit: int | None = None,
) -> list[SearchResult]:
    """Load candidates from the store, filter them and score them.

    Args:
        store: Entity store
        query: Free-text or boolean query (may be empty)
        filters: Structured pre-filters
        boolean: Run the boolean filter stage on a non-blank query.
            Candidates passing it are kept even when they score 0.
        limit: Max results (default from config)

    Returns:
        Scored results, best first

    Raises:
        SearchError: If loading candidates fails
    """
    if query is not None and not isinstance(query, str):
        raise BadRequestError("query must be a string")

    limit = limit or settings.search.max_results
    filters = filters or SearchFilters()

    try:
        candidates = await store.filter(models.Candidate)
        user_ids = {c.user_id for c in candidates if c.user_id is not None}
        users = await store.filter(models.User, id=list(user_ids)) if user_ids else []
    except Exception as e:
        logger.error(f"Failed to load candidates for search: {e}", exc_info=True)
        raise SearchError(f"Failed to load candidates: {e}") from e

    users_map = {u.id: u for u in users}
    selected = apply_filters(candidates, filters)

    use_boolean = boolean and bool(query and query.strip())
    if use_boolean:
        selected = [c for c in selected if matches_boolean_query(query, build_searchable_text(c))]

    results = search(query, selected, users_map, keep_unscored=use_boolean)
    logger.info(
        f"Search {query!r}: {len(candidates)} candidates, {len(selected)} after filters, "
        f"{len(results)} results"
    )
    return results[:limit]
