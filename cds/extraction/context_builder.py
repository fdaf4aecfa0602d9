"""
Reference-data context for validation prompts.

Turns extracted keywords into a bounded text blob of possibly relevant
ICD-10 codes, CPT codes and ICD-10 -> CPT appropriateness mappings.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 4000


class ReferenceLookup(Protocol):
    def lookup(self, keywords: list[str]) -> Any:
        """Return the reference blob for keywords (str, or awaitable of str)."""
        ...


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _truncate(text: str, max_chars: int) -> str:
    """Cut text to max_chars, backing off to the last full line."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    newline = cut.rfind("\n")
    if newline > 0:
        cut = cut[:newline]
    return cut.rstrip()


class ContextBuilder:
    """Builds the {{DATABASE_CONTEXT}} blob for a prompt.

    Lookup failures never fail validation: they are logged and the blob
    degrades to an empty string.
    """

    def __init__(self, lookup: ReferenceLookup, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        self._lookup = lookup
        self._max_chars = max_chars

    async def build(self, keywords: list[str]) -> str:
        if not keywords:
            return ""
        try:
            blob = await _maybe_await(self._lookup.lookup(keywords))
        except Exception as e:
            logger.warning(
                "Reference lookup failed for %d keywords: %s", len(keywords), e
            )
            return ""
        if not blob:
            return ""
        return _truncate(str(blob), self._max_chars)


# ---------------------------------------------------------------------------
# Database-backed lookup
# ---------------------------------------------------------------------------

def format_reference_context(
    icd10_rows: list[dict[str, Any]],
    cpt_rows: list[dict[str, Any]],
    mapping_rows: list[dict[str, Any]],
) -> str:
    """Render reference rows as labelled sections; empty sections are omitted."""
    sections: list[str] = []

    if icd10_rows:
        lines = ["POSSIBLY RELEVANT ICD-10 CODES:"]
        for row in icd10_rows:
            lines.append(f"- {row['code']}: {row.get('description') or ''}".rstrip(": "))
        sections.append("\n".join(lines))

    if cpt_rows:
        lines = ["POSSIBLY RELEVANT CPT CODES:"]
        for row in cpt_rows:
            line = f"- {row['code']}: {row.get('description') or ''}".rstrip(": ")
            if row.get("modality"):
                line += f" ({row['modality']})"
            lines.append(line)
        sections.append("\n".join(lines))

    if mapping_rows:
        lines = ["POSSIBLY RELEVANT MAPPINGS:"]
        for row in mapping_rows:
            line = (
                f"- ICD-10 {row['icd10_code']} -> CPT {row['cpt_code']}: "
                f"appropriateness {row.get('appropriateness', 'n/a')}"
            )
            if row.get("evidence_source"):
                line += f" [{row['evidence_source']}]"
            lines.append(line)
        sections.append("\n".join(lines))

    return "\n\n".join(sections)


class DatabaseReferenceLookup:
    """Keyword search over the local reference tables.

    Works with the sync SQLite ``Database`` and the async ``PgDatabase``.
    """

    def __init__(self, db: Any, limit_per_table: int = 10) -> None:
        self._db = db
        self._limit = limit_per_table

    async def lookup(self, keywords: list[str]) -> str:
        icd10 = await _maybe_await(self._db.search_icd10_codes(keywords, self._limit))
        cpt = await _maybe_await(self._db.search_cpt_codes(keywords, self._limit))
        codes = [r["code"] for r in icd10] + [r["code"] for r in cpt]
        mappings: list[dict[str, Any]] = []
        if codes:
            mappings = await _maybe_await(self._db.search_mappings(codes, self._limit))
        logger.debug(
            "Reference lookup: %d ICD-10, %d CPT, %d mappings",
            len(icd10), len(cpt), len(mappings),
        )
        return format_reference_context(icd10, cpt, mappings)
