"""
Parse and validate the raw LLM validation response.

Post-response validation:
1. JSON extraction (fenced block or first brace span)
2. Field-name normalization onto the canonical contract
3. Required-field check (every missing field is reported)
4. Status normalization against the closed status set
5. Code-array normalization

Malformed output is rejected. Nothing is guessed or filled in.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from api.validation_models import MedicalCode, ValidationResult, ValidationStatus

logger = logging.getLogger(__name__)


REQUIRED_FIELDS: tuple[str, ...] = (
    "validationStatus",
    "complianceScore",
    "feedback",
    "suggestedICD10Codes",
    "suggestedCPTCodes",
)


class ResponseValidationError(ValueError):
    """Base class for rejected LLM output."""


class MissingRequiredFieldsError(ResponseValidationError):
    def __init__(self, missing_fields: list[str], message: Optional[str] = None):
        self.missing_fields = list(missing_fields)
        super().__init__(
            message
            or f"LLM response missing required fields: {', '.join(self.missing_fields)}"
        )


class ResponseParseError(MissingRequiredFieldsError):
    """No JSON object could be extracted; every required field counts as missing."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            list(REQUIRED_FIELDS),
            f"Could not parse LLM response as JSON ({reason})",
        )


class InvalidStatusError(ResponseValidationError):
    def __init__(self, status: Any):
        self.status = status
        super().__init__(f"Invalid validation status: {status!r}")


# ---------------------------------------------------------------------------
# Synonym tables
# ---------------------------------------------------------------------------

# Canonical name -> accepted spellings, compared after _field_key().
_FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "validationStatus": ("validationstatus", "status"),
    "complianceScore": ("compliancescore", "score"),
    "feedback": ("feedback", "feedbacktext", "message"),
    "suggestedICD10Codes": ("suggestedicd10codes", "icd10codes", "icd10", "icdcodes"),
    "suggestedCPTCodes": ("suggestedcptcodes", "cptcodes", "cpt"),
    "internalReasoning": ("internalreasoning", "reasoning", "rationale"),
}

_STATUS_SYNONYMS: dict[str, ValidationStatus] = {
    "appropriate": ValidationStatus.APPROPRIATE,
    "inappropriate": ValidationStatus.INAPPROPRIATE,
    "needs_clarification": ValidationStatus.NEEDS_CLARIFICATION,
    "needs clarification": ValidationStatus.NEEDS_CLARIFICATION,
    "needs-clarification": ValidationStatus.NEEDS_CLARIFICATION,
    "override": ValidationStatus.OVERRIDE,
}

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)
_BRACE_SPAN = re.compile(r"\{[\s\S]*\}")


def _field_key(name: str) -> str:
    return re.sub(r"[\s_\-]", "", name).lower()


def extract_json_object(raw_content: str) -> dict[str, Any]:
    """Pull the JSON object out of free-form model output."""
    if not raw_content or not raw_content.strip():
        raise ResponseParseError("empty response")

    match = _FENCED_JSON.search(raw_content)
    candidate = match.group(1) if match else None
    if candidate is None:
        span = _BRACE_SPAN.search(raw_content)
        if not span:
            raise ResponseParseError("no JSON object found")
        candidate = span.group(0)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise ResponseParseError("top-level JSON value is not an object")
    return data


def normalize_response_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Map provider field names onto the canonical names.

    When several spellings are present, the earliest synonym in the table
    wins (the canonical spelling comes first).
    """
    by_key: dict[str, Any] = {}
    for name, value in data.items():
        by_key.setdefault(_field_key(str(name)), value)

    normalized: dict[str, Any] = {}
    for canonical, synonyms in _FIELD_SYNONYMS.items():
        for synonym in synonyms:
            if synonym in by_key:
                normalized[canonical] = by_key[synonym]
                break
    return normalized


def _coerce_score(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def validate_required_fields(normalized: dict[str, Any]) -> None:
    """Raise MissingRequiredFieldsError listing every absent or blank field."""
    missing: list[str] = []
    for name in REQUIRED_FIELDS:
        value = normalized.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
        elif name == "complianceScore" and _coerce_score(value) is None:
            missing.append(name)
    if missing:
        raise MissingRequiredFieldsError(missing)


def normalize_validation_status(status: Any) -> ValidationStatus:
    if not isinstance(status, str):
        raise InvalidStatusError(status)
    key = status.strip().lower()
    if key not in _STATUS_SYNONYMS:
        raise InvalidStatusError(status)
    return _STATUS_SYNONYMS[key]


def normalize_code_array(value: Any) -> list[MedicalCode]:
    """Accept [{code, description}], ["R10.31", ...] or "R10.31, K35.80"."""
    if value is None:
        return []
    if isinstance(value, str):
        items: list[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        logger.warning("Ignoring code array of unexpected type %s", type(value).__name__)
        return []

    codes: list[MedicalCode] = []
    for item in items:
        if isinstance(item, dict):
            code = item.get("code") or item.get("Code")
            description = item.get("description") or item.get("desc") or ""
        elif isinstance(item, (str, int)):
            code, description = item, ""
        else:
            continue
        code = str(code).strip() if code is not None else ""
        if code:
            codes.append(MedicalCode(code=code, description=str(description).strip()))
    return codes


def parse_and_validate_response(raw_content: str) -> ValidationResult:
    """Turn raw provider output into a ValidationResult or raise."""
    data = extract_json_object(raw_content)
    normalized = normalize_response_fields(data)
    validate_required_fields(normalized)

    status = normalize_validation_status(normalized["validationStatus"])

    reasoning = normalized.get("internalReasoning")
    if reasoning is not None and not isinstance(reasoning, str):
        reasoning = json.dumps(reasoning)

    return ValidationResult(
        validation_status=status,
        compliance_score=_coerce_score(normalized["complianceScore"]),
        feedback=str(normalized["feedback"]).strip(),
        suggested_icd10_codes=normalize_code_array(normalized["suggestedICD10Codes"]),
        suggested_cpt_codes=normalize_code_array(normalized["suggestedCPTCodes"]),
        internal_reasoning=reasoning,
    )
