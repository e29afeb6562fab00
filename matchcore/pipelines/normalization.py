"""Text normalization utilities for profile and resume content.

Handles HTML stripping, whitespace, bullets and resume section headers.
"""
from __future__ import annotations

import html
import logging
import re
import unicodedata
from typing import Any

import bleach

logger = logging.getLogger(__name__)

# Block-level tags whose boundaries should become whitespace before stripping
_BLOCK_TAG_PATTERN = re.compile(r"<\s*(?:br|/p|/div|/li|/h[1-6]|/tr)\b[^>]*>", re.IGNORECASE)
_BULLET_PATTERN = re.compile(r"[•◦▪▫■□●○◘◙]")
_RULE_PATTERN = re.compile(r"[_\-—–]{2,}")

SECTION_HEADERS = [
    "experience", "work experience", "professional experience",
    "education", "academic background",
    "skills", "technical skills", "core competencies",
    "certifications", "licenses",
    "projects", "portfolio",
    "awards", "honors",
    "summary", "objective", "profile",
]


def normalize_whitespace(text: str) -> str:
    """Normalize whitespace: collapse multiple spaces, remove leading/trailing."""
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def extract_plain_text(value: Any) -> str:
    """Strip HTML markup from rich-text profile fields (bio, descriptions).

    Tags are removed with bleach, entities are decoded and whitespace collapsed.
    """
    if not value:
        return ""
    if not isinstance(value, str):
        value = str(value)

    text = _BLOCK_TAG_PATTERN.sub(" ", value)
    text = bleach.clean(text, tags=set(), attributes={}, strip=True)
    text = html.unescape(text)
    return normalize_whitespace(unicodedata.normalize("NFC", text))


def normalize_resume_text(text: str) -> str:
    """Normalize extracted resume text for the search index.

    Lowercases, drops bullet glyphs, turns horizontal rules into spaces,
    collapses whitespace and re-emits known section headers on their own
    upper-cased line.

    Args:
        text: Plain text as extracted from the document

    Returns:
        Normalized text
    """
    if not text or not text.strip():
        return ""

    normalized = unicodedata.normalize("NFC", text).lower()
    normalized = _BULLET_PATTERN.sub("", normalized)
    normalized = _RULE_PATTERN.sub(" ", normalized)
    normalized = normalize_whitespace(normalized)

    # Longest headers first so "work experience" wins over "experience"
    headers = sorted(SECTION_HEADERS, key=len, reverse=True)
    pattern = re.compile(r"\b(" + "|".join(re.escape(h) for h in headers) + r")\b")
    normalized = pattern.sub(lambda m: f"\n{m.group(1).upper()}\n", normalized)

    return normalized.strip()


def as_list(value: Any, field_name: str, owner_id: object = None) -> list:
    """List view of a JSON list field; a bare string counts as one item.

    Any other shape is logged and treated as empty.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set)):
        return list(value)
    logger.warning(f"Skipping {field_name} of type {type(value).__name__} for {owner_id}")
    return []


def dict_entries(value: Any, field_name: str, owner_id: object = None) -> list[dict]:
    """Dict entries of a JSON list field such as experience or education.

    Entries that are not objects are logged and skipped.
    """
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        logger.warning(f"Skipping {field_name} of type {type(value).__name__} for {owner_id}")
        return []
    entries = [entry for entry in value if isinstance(entry, dict)]
    if len(entries) != len(value):
        logger.warning(f"Skipping {len(value) - len(entries)} malformed {field_name} entries for {owner_id}")
    return entries
