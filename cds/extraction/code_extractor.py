"""Extract ICD-10-CM diagnosis codes and CPT procedure codes from text."""

from __future__ import annotations

import re

# ICD-10-CM: letter, two digits, optional dot + up to four alphanumerics
# (R10.31, S72.001A, I63.9). Upper-case only in free text.
_ICD10_PATTERN = re.compile(r"\b[A-Z]\d{2}(?:\.[0-9A-Z]{1,4})?\b")

# CPT category I (five digits) and category II/III (four digits + F/T).
_CPT_PATTERN = re.compile(r"\b(?:\d{5}|\d{4}[FT])\b")

_ICD10_FULL = re.compile(r"[A-Z]\d{2}(?:\.[0-9A-Z]{1,4})?", re.IGNORECASE)
_CPT_FULL = re.compile(r"\d{5}|\d{4}[FT]", re.IGNORECASE)


def extract_icd10_codes(text: str) -> list[str]:
    """Return unique ICD-10 codes in order of first appearance."""
    return list(dict.fromkeys(_ICD10_PATTERN.findall(text)))


def extract_cpt_codes(text: str) -> list[str]:
    """Return unique CPT codes in order of first appearance."""
    return list(dict.fromkeys(_CPT_PATTERN.findall(text)))


def extract_medical_codes(text: str) -> list[str]:
    return extract_icd10_codes(text) + extract_cpt_codes(text)


def is_icd10_code(term: str) -> bool:
    return _ICD10_FULL.fullmatch(term.strip()) is not None


def is_cpt_code(term: str) -> bool:
    return _CPT_FULL.fullmatch(term.strip()) is not None


def is_medical_code(term: str) -> bool:
    """True when the whole term is an ICD-10 or CPT code (case-insensitive)."""
    return is_icd10_code(term) or is_cpt_code(term)
