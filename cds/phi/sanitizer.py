"""
Regex-based PHI sanitizer for physician dictation.

Removes direct identifiers from dictation before it leaves the process
(LLM API calls). Redactions are bracketed upper-case placeholders and the
pattern table is re-applied until the text is stable, so running the
sanitizer twice is a no-op.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from extraction.medical_terms import medical_vocabulary_words


@dataclass
class SanitizerOptions:
    """Per-category switches. Everything is redacted unless turned off."""

    mrn: bool = True
    ssn: bool = True
    phone: bool = True
    dates: bool = True
    emails: bool = True
    urls: bool = True
    addresses: bool = True
    zip_codes: bool = True
    names: bool = True


@dataclass
class SanitizeResult:
    sanitized_text: str
    phi_found: list[str] = field(default_factory=list)
    redaction_count: int = 0


# Five-digit tokens directly labeled as procedure codes are not identifiers.
_NOT_CPT = r"(?<!CPT )(?<!CPT:)(?<!CPT: )(?<!CPT#)(?<!CPT# )"

_MONTHS = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?"
    r"|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)

# (category, option attribute, pattern, placeholder). Order matters:
# numeric identifiers first, names last so that "Main Street" is already
# an [ADDRESS] by the time capitalized words are considered.
_PHI_PATTERNS: list[tuple[str, str, re.Pattern, str]] = [
    # Labeled record numbers: "MRN: A1234567", "Medical Record #: 0098812"
    (
        "mrn",
        "mrn",
        re.compile(
            r"(?i)\b(?:MRN|M\.R\.N\.|medical\s+record\s*(?:number|#|no\.?)"
            r"|med\s*rec\s*(?:number|#|no\.?)|record\s*(?:number|#|no\.?))"
            r"\s*[:=#]?\s*(?=[A-Z\-]*\d)[A-Z0-9\-]{4,20}\b"
        ),
        "[MRN]",
    ),
    # Bare record numbers: up to three letters followed by 5-10 digits
    (
        "mrn",
        "mrn",
        re.compile(_NOT_CPT + r"\b[A-Z]{0,3}\d{5,10}\b"),
        "[MRN]",
    ),
    (
        "ssn",
        "ssn",
        re.compile(r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b"),
        "[SSN]",
    ),
    # "(555) 123-4567", "555-123-4567", "555.123.4567", "+1 555 123 4567"
    (
        "phone",
        "phone",
        re.compile(
            r"(?<!\d)(?:\+?1[\s.\-]?)?(?:\(\d{3}\)|\d{3})[\s.\-]?\d{3}[\s.\-]?\d{4}(?!\d)"
        ),
        "[PHONE]",
    ),
    # 01/15/1980, 1-15-80
    (
        "date",
        "dates",
        re.compile(r"\b\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\b"),
        "[DATE]",
    ),
    # 1980-01-15
    (
        "date",
        "dates",
        re.compile(r"\b\d{4}[/\-]\d{1,2}[/\-]\d{1,2}\b"),
        "[DATE]",
    ),
    # January 15, 1980 / Jan. 15th 1980
    (
        "date",
        "dates",
        re.compile(
            rf"(?i)\b{_MONTHS}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b"
        ),
        "[DATE]",
    ),
    (
        "email",
        "emails",
        re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}"),
        "[EMAIL]",
    ),
    (
        "url",
        "urls",
        re.compile(r"(?i)\b(?:https?://|www\.)[^\s<>\"']+"),
        "[URL]",
    ),
    # Street number + name + suffix (with optional apt/suite/unit)
    (
        "address",
        "addresses",
        re.compile(
            r"\b\d{1,5}\s+(?:[A-Za-z][a-z]+\s+){1,4}"
            r"(?:St(?:reet)?|Ave(?:nue)?|Blvd|Boulevard|Dr(?:ive)?|Ln|Lane|"
            r"Rd|Road|Way|Ct|Court|Pl(?:ace)?|Cir(?:cle)?|Pkwy|Parkway|"
            r"Ter(?:race)?|Hwy|Highway)"
            r"\.?"
            r"(?:\s*,?\s*(?:Apt|Suite|Ste|Unit|#)\s*\.?\s*[A-Za-z0-9\-]+)?"
            r"\b"
        ),
        "[ADDRESS]",
    ),
    (
        "zip_code",
        "zip_codes",
        re.compile(_NOT_CPT + r"\b\d{5}(?:-\d{4})?\b"),
        "[ZIP]",
    ),
]

# Capitalized words that commonly open dictation phrases. They are never part
# of a name and are trimmed from the edges of a redacted run.
_CLINICAL_WORDS = frozenset({
    "patient", "pt", "history", "rule", "out", "left", "right", "bilateral",
    "acute", "chronic", "please", "evaluate", "eval", "with", "without",
    "and", "or", "the", "of", "for", "status", "post", "follow", "up",
    "order", "study", "exam", "indication", "indications", "clinical",
    "reason", "impression", "findings", "comparison", "technique",
    "emergency", "department", "urgent", "routine", "stat", "no", "new",
    "known", "possible", "suspected", "severe", "mild", "moderate",
    "upper", "lower", "quadrant", "anterior", "posterior", "lateral",
    "medial", "proximal", "distal", "since", "today", "yesterday",
})

_NAME_EXCLUSIONS = medical_vocabulary_words(include_abbreviations=False) | _CLINICAL_WORDS

# "Smith, John"
_LAST_FIRST_PATTERN = re.compile(r"\b([A-Z][a-z]+(?:-[A-Z][a-z]+)?),[ \t]*([A-Z][a-z]+)\b")
# Runs of two or more capitalized words on one line: "John Smith", "Mary Ann Lee"
_CAPITALIZED_RUN_PATTERN = re.compile(r"\b[A-Z][a-z]+(?:-[A-Z][a-z]+)?(?:[ \t]+[A-Z][a-z]+(?:-[A-Z][a-z]+)?)+\b")
_WORD_PATTERN = re.compile(r"[A-Za-z\-]+")

# Upper bound on sanitizing passes; real dictation settles in two.
_MAX_PASSES = 8


def _is_excluded(word: str) -> bool:
    return word.lower() in _NAME_EXCLUSIONS


def _redact_run(run: str) -> tuple[str, int]:
    """Redact a capitalized run unless every word in it is clinical vocabulary.

    "Abdomen Pelvis" stays as-is. "Jane Doe" and "John Head" become
    "[NAME]" even though "doe" and "head" are medical words. Leading and
    trailing phrase openers are kept, so "Patient Jane Doe" becomes
    "Patient [NAME]".
    """
    words = list(_WORD_PATTERN.finditer(run))
    if all(_is_excluded(w.group(0)) for w in words):
        return run, 0

    start, end = 0, len(words)
    while start < end and words[start].group(0).lower() in _CLINICAL_WORDS:
        start += 1
    while end > start and words[end - 1].group(0).lower() in _CLINICAL_WORDS:
        end -= 1
    if end - start < 2:
        return run, 0
    return run[:words[start].start()] + "[NAME]" + run[words[end - 1].end():], 1


def _redact_names(text: str) -> tuple[str, int]:
    count = 0

    def _last_first(m: re.Match) -> str:
        nonlocal count
        if _is_excluded(m.group(1)) and _is_excluded(m.group(2)):
            return m.group(0)
        count += 1
        return "[NAME]"

    text = _LAST_FIRST_PATTERN.sub(_last_first, text)

    def _run(m: re.Match) -> str:
        nonlocal count
        redacted, n = _redact_run(m.group(0))
        count += n
        return redacted

    text = _CAPITALIZED_RUN_PATTERN.sub(_run, text)
    return text, count


def _sanitize_pass(text: str, opts: SanitizerOptions, found: set[str]) -> tuple[str, int]:
    redactions = 0
    for category, option_name, pattern, placeholder in _PHI_PATTERNS:
        if not getattr(opts, option_name):
            continue
        text, n = pattern.subn(placeholder, text)
        if n:
            found.add(category)
            redactions += n

    if opts.names:
        text, n = _redact_names(text)
        if n:
            found.add("name")
            redactions += n
    return text, redactions


def sanitize_with_report(
    text: str, options: Optional[SanitizerOptions] = None
) -> SanitizeResult:
    """Remove PHI from text. Returns the sanitized copy with a summary.

    A redaction can expose a new match (a placeholder's bracket starts a
    fresh word boundary, a URL can swallow a "CPT " label), so the pattern
    table is re-applied until the text stops changing.
    """
    if not text:
        return SanitizeResult(sanitized_text=text or "")

    opts = options or SanitizerOptions()
    sanitized = text
    categories_found: set[str] = set()
    total_redactions = 0

    for _ in range(_MAX_PASSES):
        sanitized, n = _sanitize_pass(sanitized, opts, categories_found)
        if not n:
            break
        total_redactions += n

    return SanitizeResult(
        sanitized_text=sanitized,
        phi_found=sorted(categories_found),
        redaction_count=total_redactions,
    )


def sanitize(text: str, options: Optional[SanitizerOptions] = None) -> str:
    return sanitize_with_report(text, options).sanitized_text
