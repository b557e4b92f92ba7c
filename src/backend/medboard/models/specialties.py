# [Core: Specialty Taxonomy]
"""
Fixed specialty taxonomy shared by the classifier, board assembler,
specialist registry and debate engine.

Free-form specialty strings (from the model or from a caller) are mapped onto
the enum through an ordered table of alias patterns. The first match wins, so
more specific patterns sit above broader ones (Oncology before Hematology,
Neurology before Urology).
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Specialty(str, Enum):
    CARDIOLOGY = "Cardiology"
    NEUROLOGY = "Neurology"
    ONCOLOGY = "Oncology"
    GASTROENTEROLOGY = "Gastroenterology"
    PULMONOLOGY = "Pulmonology"
    ENDOCRINOLOGY = "Endocrinology"
    ORTHOPEDICS = "Orthopedics"
    DERMATOLOGY = "Dermatology"
    NEPHROLOGY = "Nephrology"
    HEMATOLOGY = "Hematology"
    RHEUMATOLOGY = "Rheumatology"
    INFECTIOUS_DISEASE = "Infectious Disease"
    PSYCHIATRY = "Psychiatry"
    UROLOGY = "Urology"
    OPHTHALMOLOGY = "Ophthalmology"
    GERIATRICS = "Geriatrics"
    # Consultants outside the grand-rounds roster
    PHARMACY = "Pharmacy"
    NUTRITION = "Nutrition"
    # Reserved buckets
    INTERNAL_MEDICINE = "Internal Medicine"
    DEEP_REASONING = "DeepReasoning"
    GENERAL = "General"


# Grand-rounds roster, in consultation order
ALL_SPECIALTIES: List[Specialty] = [
    Specialty.CARDIOLOGY,
    Specialty.NEUROLOGY,
    Specialty.ONCOLOGY,
    Specialty.GASTROENTEROLOGY,
    Specialty.PULMONOLOGY,
    Specialty.ENDOCRINOLOGY,
    Specialty.ORTHOPEDICS,
    Specialty.DERMATOLOGY,
    Specialty.NEPHROLOGY,
    Specialty.HEMATOLOGY,
    Specialty.RHEUMATOLOGY,
    Specialty.INFECTIOUS_DISEASE,
    Specialty.PSYCHIATRY,
    Specialty.UROLOGY,
    Specialty.OPHTHALMOLOGY,
    Specialty.GERIATRICS,
]

RESERVED_BUCKETS = {Specialty.DEEP_REASONING, Specialty.GENERAL}

SPECIALTY_DESCRIPTIONS: Dict[Specialty, str] = {
    Specialty.CARDIOLOGY: "heart, BP, ECG, Cath, HFrEF, Arrhythmia",
    Specialty.NEUROLOGY: "brain, stroke, seizure, headache, EEG, MRI Brain",
    Specialty.ONCOLOGY: "cancer, tumor, biopsy, chemo, staging",
    Specialty.GASTROENTEROLOGY: "stomach, liver, GI, colonoscopy, endoscopy, abdominal pain",
    Specialty.PULMONOLOGY: "lungs, breathing, asthma, COPD, pneumonia, chest x-ray",
    Specialty.ENDOCRINOLOGY: "diabetes, thyroid, hormones, metabolism",
    Specialty.ORTHOPEDICS: "bones, joints, fractures, spine, pain",
    Specialty.DERMATOLOGY: "skin, rash, lesions",
    Specialty.NEPHROLOGY: "kidney, renal, creatinine, dialysis",
    Specialty.HEMATOLOGY: "blood, anemia, platelets, clotting",
    Specialty.RHEUMATOLOGY: "joints, autoimmune, lupus, arthritis",
    Specialty.INFECTIOUS_DISEASE: "infection, fever, antibiotics, sepsis, culture",
    Specialty.PSYCHIATRY: "depression, anxiety, mood, mental health",
    Specialty.UROLOGY: "prostate, bladder, UTI, kidney stone",
    Specialty.OPHTHALMOLOGY: "eye, vision, retina, cataract",
    Specialty.GERIATRICS: "elderly, frailty, falls, dementia",
    Specialty.PHARMACY: "drug interactions, renal/hepatic dosing, deprescribing",
    Specialty.NUTRITION: "diet, malnutrition, deficiencies, meal planning",
    Specialty.INTERNAL_MEDICINE: "general complex care, multi-system issues",
    Specialty.DEEP_REASONING: "complex diagnostic dilemmas, 'think', 'reason', 'analyze complex case'",
    Specialty.GENERAL: "vitals, labs, history, summary, medications",
}


# Pattern -> Specialty mapping (checked in order, first match wins)
_ALIAS_PATTERNS: List[Tuple[str, Specialty]] = [
    (r"deep\s*-?\s*reason", Specialty.DEEP_REASONING),
    (r"internal medicine|internist|hospitalist", Specialty.INTERNAL_MEDICINE),
    (r"oncolog|\bcancer\b|\btumou?r\b", Specialty.ONCOLOGY),
    (r"ha?ematolog|\bblood\b", Specialty.HEMATOLOGY),
    (r"gastro|\bgi\b|\bliver\b|hepatolog", Specialty.GASTROENTEROLOGY),
    (r"pulmon|\blungs?\b|respirat", Specialty.PULMONOLOGY),
    (r"endocrin|diabet|thyroid", Specialty.ENDOCRINOLOGY),
    (r"orthop|\bbones?\b", Specialty.ORTHOPEDICS),
    (r"dermat|\bskin\b", Specialty.DERMATOLOGY),
    (r"nephro|kidney|renal", Specialty.NEPHROLOGY),
    (r"rheum|lupus|autoimmun", Specialty.RHEUMATOLOGY),
    (r"infect|\bid\b|sepsis", Specialty.INFECTIOUS_DISEASE),
    (r"psych|mental", Specialty.PSYCHIATRY),
    (r"neuro", Specialty.NEUROLOGY),
    (r"\burolog|prostate|bladder", Specialty.UROLOGY),
    (r"ophthalm|\beyes?\b", Specialty.OPHTHALMOLOGY),
    (r"geriatr|elderly", Specialty.GERIATRICS),
    (r"cardi|\bheart\b", Specialty.CARDIOLOGY),
    (r"pharm|\bdrugs?\b|medication", Specialty.PHARMACY),
    (r"nutri|\bdiet|\bfood\b", Specialty.NUTRITION),
    (r"^\s*general\b", Specialty.GENERAL),
]

_COMPILED_ALIASES = [(re.compile(p, re.IGNORECASE), s) for p, s in _ALIAS_PATTERNS]


def normalize_specialty(label: Optional[str]) -> Optional[Specialty]:
    """
    Map a free-form specialty label onto the enum.

    Exact (case-insensitive) names are tried first, then the alias table,
    so "Renal/Nephrology" and "nephrologist" both resolve to NEPHROLOGY.
    Returns None when nothing matches.
    """
    if not label:
        return None
    text = label.strip()
    for specialty in Specialty:
        if text.lower() == specialty.value.lower():
            return specialty
    for pattern, specialty in _COMPILED_ALIASES:
        if pattern.search(text):
            return specialty
    return None


def taxonomy_prompt_block(include_reserved: bool = True) -> str:
    """Render the taxonomy as the bullet list used in classifier prompts."""
    lines = [f"- {s.value} (for {SPECIALTY_DESCRIPTIONS[s]})" for s in ALL_SPECIALTIES]
    if include_reserved:
        for s in (Specialty.DEEP_REASONING, Specialty.GENERAL):
            lines.append(f"- {s.value} (for {SPECIALTY_DESCRIPTIONS[s]})")
    return "\n".join(lines)
