"""Static medical vocabularies used for keyword extraction.

Terms are stored lower-case. Multi-word terms are matched as whole phrases.
A term appears in exactly one list so that category lookup is unambiguous.
"""

from __future__ import annotations

from typing import Optional


ANATOMY_TERMS: tuple[str, ...] = (
    "head", "brain", "skull", "face", "orbit", "orbits", "sinus", "sinuses",
    "neck", "cervical spine", "thoracic spine", "lumbar spine", "spine",
    "sacrum", "coccyx", "chest", "lung", "lungs", "heart", "mediastinum",
    "breast", "abdomen", "pelvis", "liver", "gallbladder", "pancreas",
    "spleen", "kidney", "kidneys", "adrenal", "bladder", "prostate", "uterus",
    "ovary", "ovaries", "appendix", "bowel", "colon", "rectum", "stomach",
    "esophagus", "aorta", "carotid", "shoulder", "humerus", "elbow",
    "forearm", "wrist", "hand", "finger", "hip", "femur", "knee", "tibia",
    "fibula", "ankle", "foot", "toe", "extremity", "joint", "thyroid",
    "pituitary", "temporal bone", "soft tissue",
)

MODALITY_TERMS: tuple[str, ...] = (
    "ct", "cta", "computed tomography", "mri", "mra", "magnetic resonance",
    "x-ray", "xray", "radiograph", "ultrasound", "sonogram", "doppler",
    "pet", "pet/ct", "nuclear medicine", "bone scan", "mammogram",
    "mammography", "fluoroscopy", "dexa", "angiography", "venogram",
    "contrast", "without contrast", "with contrast", "non-contrast",
)

SYMPTOM_TERMS: tuple[str, ...] = (
    "pain", "headache", "migraine", "dizziness", "vertigo", "syncope",
    "seizure", "weakness", "numbness", "tingling", "confusion",
    "vision loss", "hearing loss", "fever", "cough", "hemoptysis",
    "dyspnea", "shortness of breath", "chest pain", "palpitations",
    "nausea", "vomiting", "diarrhea", "constipation", "hematuria",
    "dysuria", "bleeding", "mass", "lump", "swelling", "edema", "trauma",
    "fall", "fracture", "injury", "tenderness", "radiculopathy",
    "back pain", "abdominal pain", "flank pain", "weight loss", "fatigue",
    "appendicitis", "cholecystitis", "diverticulitis", "pneumonia",
    "stroke", "aneurysm", "embolism", "obstruction", "infection", "abscess",
    "malignancy", "cancer", "tumor", "metastasis", "lesion", "nodule",
)

ABBREVIATION_TERMS: tuple[str, ...] = (
    "rlq", "llq", "ruq", "luq", "r/o", "s/p", "h/o", "c/o", "sob", "doe",
    "loc", "tia", "cva", "mi", "chf", "copd", "dvt", "pe", "uti", "gi",
    "gu", "msk", "ams", "htn", "dm", "ckd", "aaa", "bph", "fx", "w/", "w/o",
    "hx", "dx", "sx", "yo", "y/o",
)


_CATEGORY_LISTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("anatomy", ANATOMY_TERMS),
    ("modality", MODALITY_TERMS),
    ("symptom", SYMPTOM_TERMS),
    ("abbreviation", ABBREVIATION_TERMS),
)

_TERM_CATEGORY: dict[str, str] = {
    term: category for category, terms in _CATEGORY_LISTS for term in terms
}


def is_medical_term(term: str) -> bool:
    return term.strip().lower() in _TERM_CATEGORY


def get_medical_term_category(term: str) -> Optional[str]:
    """Return the list name ("anatomy", "modality", ...) a term belongs to."""
    return _TERM_CATEGORY.get(term.strip().lower())


def medical_vocabulary_words(include_abbreviations: bool = True) -> frozenset[str]:
    """Every single word that occurs in the term lists, lower-cased.

    Used by the sanitizer to avoid treating capitalized clinical words
    ("Abdomen Pelvis") as a person's name. Abbreviations are written upper
    case in dictation, so the sanitizer leaves them out.
    """
    words: set[str] = set()
    for category, terms in _CATEGORY_LISTS:
        if category == "abbreviation" and not include_abbreviations:
            continue
        for term in terms:
            for word in term.replace("/", " ").replace("-", " ").split():
                if word.isalpha() and len(word) > 1:
                    words.add(word)
    return frozenset(words)
