"""
Prompt construction for imaging-order validation.

Merges the active prompt template with the sanitized dictation, the
reference-data context blob and the feedback word limit. Templates may
carry an override section that is only rendered for override validations.
"""

from __future__ import annotations

import inspect
import logging
import re
from typing import Any, Optional, Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class TemplateUnavailableError(RuntimeError):
    """No active prompt template could be found, or the store could not be read."""


class PromptTemplate(BaseModel):
    id: Optional[int] = None
    name: str
    content_template: str
    word_limit: Optional[int] = None
    active: bool = True


DEFAULT_WORD_LIMIT_TEXT = "500"

OVERRIDE_NOTICE = (
    "IMPORTANT: This is an OVERRIDE validation request. The physician has "
    "provided justification for why they believe this study is appropriate "
    "despite potential guidelines to the contrary. Please consider this "
    "justification carefully in your assessment."
)

DEFAULT_PROMPT_TEMPLATE = """\
You are a radiology clinical decision support assistant. Evaluate whether the \
imaging study requested in the physician dictation below is appropriate for the \
documented clinical indication, following ACR Appropriateness Criteria.

Reference data retrieved for this dictation (may be incomplete):
{{DATABASE_CONTEXT}}

Physician dictation:
{{DICTATION_TEXT}}
{{#OVERRIDE}}
IMPORTANT: This is an OVERRIDE validation request. The physician has provided \
justification for why they believe this study is appropriate despite potential \
guidelines to the contrary. Please consider this justification carefully in your \
assessment.
{{/OVERRIDE}}
Respond with a single JSON object and nothing else:
```json
{
  "validationStatus": "appropriate | inappropriate | needs_clarification",
  "complianceScore": <integer 1-9>,
  "feedback": "<guidance for the ordering physician, at most {{WORD_LIMIT}} words>",
  "suggestedICD10Codes": [{"code": "<ICD-10-CM code>", "description": "<text>"}],
  "suggestedCPTCodes": [{"code": "<CPT code>", "description": "<text>"}],
  "internalReasoning": "<brief rationale, not shown to the physician>"
}
```
Use needs_clarification when the dictation lacks the clinical detail required \
to decide. Suggest only codes supported by the dictation.
"""

_PLACEHOLDER_PATTERN = re.compile(r"\{\{(DICTATION_TEXT|DATABASE_CONTEXT|WORD_LIMIT)\}\}")
_OVERRIDE_SECTION = re.compile(r"\{\{#OVERRIDE\}\}(.*?)\{\{/OVERRIDE\}\}", re.DOTALL)
_STANDARD_SECTION = re.compile(r"\{\{\^OVERRIDE\}\}(.*?)\{\{/OVERRIDE\}\}", re.DOTALL)


def _render_override_sections(template_content: str, is_override: bool) -> tuple[str, bool]:
    """Keep or drop override/standard sections. Returns (content, had_sections)."""
    had_sections = bool(
        _OVERRIDE_SECTION.search(template_content)
        or _STANDARD_SECTION.search(template_content)
    )
    content = _OVERRIDE_SECTION.sub(
        (lambda m: m.group(1)) if is_override else "", template_content
    )
    content = _STANDARD_SECTION.sub(
        "" if is_override else (lambda m: m.group(1)), content
    )
    return content, had_sections


def construct_prompt(
    template_content: str,
    sanitized_text: str,
    context_blob: str,
    word_limit: Optional[int] = None,
    is_override: bool = False,
) -> str:
    """Build the final prompt string.

    Placeholders are replaced in one pass, so dictation text that itself
    contains "{{WORD_LIMIT}}" is left as typed.
    """
    content, had_sections = _render_override_sections(template_content, is_override)

    values = {
        "DICTATION_TEXT": sanitized_text,
        "DATABASE_CONTEXT": context_blob,
        "WORD_LIMIT": str(word_limit) if word_limit is not None else DEFAULT_WORD_LIMIT_TEXT,
    }
    prompt = _PLACEHOLDER_PATTERN.sub(lambda m: values[m.group(1)], content)

    if is_override and not had_sections:
        prompt = f"{prompt}\n\n{OVERRIDE_NOTICE}"
    return prompt


# ---------------------------------------------------------------------------
# Template stores
# ---------------------------------------------------------------------------

class TemplateStore(Protocol):
    async def get_active_template(self) -> PromptTemplate:
        ...


class StaticTemplateStore:
    """Serves a fixed template; used for tests and single-template deployments."""

    def __init__(self, template: Optional[PromptTemplate]) -> None:
        self._template = template

    async def get_active_template(self) -> PromptTemplate:
        if self._template is None or not self._template.active:
            raise TemplateUnavailableError("No active prompt template configured")
        return self._template


class DatabaseTemplateStore:
    """Reads the active template from the SQLite or PostgreSQL store."""

    def __init__(self, db: Any) -> None:
        self._db = db

    async def get_active_template(self) -> PromptTemplate:
        try:
            row = self._db.get_active_prompt_template()
            if inspect.isawaitable(row):
                row = await row
        except Exception as e:
            logger.error("Prompt template lookup failed: %s", e)
            raise TemplateUnavailableError(f"Prompt template store unavailable: {e}") from e
        if not row:
            raise TemplateUnavailableError("No active prompt template found")
        return PromptTemplate(
            id=row.get("id"),
            name=row["name"],
            content_template=row["content_template"],
            word_limit=row.get("word_limit"),
            active=bool(row.get("active", True)),
        )
