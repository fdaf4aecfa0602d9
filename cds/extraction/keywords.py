"""
Medical keyword extraction from (sanitized) dictation text.

Scans the static vocabularies in ``extraction.medical_terms`` with
whole-word, case-insensitive matching and adds ICD-10 / CPT code tokens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from extraction.code_extractor import extract_medical_codes, is_medical_code
from extraction.medical_terms import (
    ABBREVIATION_TERMS,
    ANATOMY_TERMS,
    MODALITY_TERMS,
    SYMPTOM_TERMS,
)


class KeywordCategory(str, Enum):
    ANATOMY = "anatomy"
    MODALITY = "modality"
    SYMPTOM = "symptom"
    CODE = "code"
    ABBREVIATION = "abbreviation"


@dataclass(frozen=True)
class Keyword:
    term: str
    category: KeywordCategory


_ORDERED_LISTS: list[tuple[KeywordCategory, tuple[str, ...]]] = [
    (KeywordCategory.ANATOMY, ANATOMY_TERMS),
    (KeywordCategory.MODALITY, MODALITY_TERMS),
    (KeywordCategory.SYMPTOM, SYMPTOM_TERMS),
    (KeywordCategory.ABBREVIATION, ABBREVIATION_TERMS),
]


def _term_pattern(term: str) -> re.Pattern:
    # Abbreviations like "r/o" and "w/" end in punctuation, so \b is not
    # usable on both sides; require a non-word neighbour instead.
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)", re.IGNORECASE)


_TERM_PATTERNS: list[tuple[str, re.Pattern]] = [
    (term, _term_pattern(term))
    for _category, terms in _ORDERED_LISTS
    for term in terms
]


def extract_keywords(text: str) -> list[str]:
    """Return every vocabulary term and code found in ``text``.

    Results are lower-cased and de-duplicated; order is not meaningful.
    """
    if not text:
        return []

    found: list[str] = []
    for term, pattern in _TERM_PATTERNS:
        if pattern.search(text):
            found.append(term)
    found.extend(code.lower() for code in extract_medical_codes(text))
    return list(dict.fromkeys(found))


def categorize(term: str) -> KeywordCategory:
    """Assign a single category; code shape wins, unknown terms are symptoms."""
    if is_medical_code(term):
        return KeywordCategory.CODE
    lowered = term.strip().lower()
    for category, terms in _ORDERED_LISTS:
        if lowered in terms:
            return category
    return KeywordCategory.SYMPTOM


def iter_categorized_keywords(text: str) -> Iterator[Keyword]:
    for term in extract_keywords(text):
        yield Keyword(term=term, category=categorize(term))


def extract_categorized_keywords(text: str) -> list[Keyword]:
    return list(iter_categorized_keywords(text))


def extract_keywords_by_category(
    text: str, category: KeywordCategory | str
) -> list[str]:
    wanted = KeywordCategory(category)
    return [kw.term for kw in iter_categorized_keywords(text) if kw.category == wanted]
