# [Core: Specialist Registry]
"""
Specialist Registry — dedicated reasoning routines per specialty.

Each specialty in the registry has its own role prompt, report keywords and
structured-output variant. The variants are a closed, `kind`-tagged set
(see medboard.models.schemas.SpecialistConsult) and `adapt` maps each one
onto the canonical SpecialistOpinion.

Labels without a registry entry (Internal Medicine, "Surgery", anything the
board model invents) go to the generic routine, which asks for the canonical
shape directly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from medboard.errors import SpecialistDispatchFailure
from medboard.models.schemas import (
    CaseContext,
    NeuroImagingConsult,
    NutritionConsult,
    OncologyConsult,
    PharmacyConsult,
    PsychiatryConsult,
    SpecialistOpinion,
    UniversalConsult,
)
from medboard.models.specialties import Specialty, normalize_specialty
from medboard.services.completion import CompletionService
from medboard.tools.case_formatting import (
    format_case_summary,
    loggable_error,
    specialty_report_context,
)

logger = logging.getLogger(__name__)

BOARD_TASK = "Board Review"
FINDINGS_FALLBACK_CHARS = 200


@dataclass(frozen=True)
class SpecialistDef:
    """Definition of one dedicated specialist routine."""
    specialty: Specialty
    role: str
    keywords: Tuple[str, ...]
    response_model: Type[BaseModel] = UniversalConsult
    instructions: str = ""
    """
    Numbered task list placed at the end of the prompt. Empty means the
    shared organ-system instructions, worded for this specialty.
    """
    context: Optional[Callable[[CaseContext], str]] = None
    """Custom report context; defaults to keyword-filtered reports."""


def _latest_labs(case: CaseContext) -> str:
    labs = sorted((r for r in case.reports if r.type.lower() == "lab"), key=lambda r: r.date, reverse=True)
    return "\n\n".join(f"{r.date}: {(r.text or 'See attached document')[:500]}" for r in labs[:3])


UNIVERSAL_INSTRUCTIONS = """1. Analyze the data strictly from the perspective of a {specialty} specialist.
2. Identify key findings. If data is missing (e.g. no colonoscopy for GI), note that as a finding/gap.
3. Provide a clinical assessment and a specific plan."""

NEURO_INSTRUCTIONS = """1. Identify the modality (MRI, CT, EEG) of the most relevant study.
2. Report regional findings with their significance (Normal, Abnormal, Critical).
3. If there are acute stroke findings, state the stroke-protocol status.
4. Give an overall impression and specific recommendations."""

ONCOLOGY_INSTRUCTIONS = """1. Identify the primary tumor site and histology, if any malignancy is documented.
2. List biomarkers with their status (e.g. HER2 negative).
3. Determine TNM staging where the data allows it.
4. Propose a treatment plan in one paragraph."""

PHARMACY_INSTRUCTIONS = """1. Renal & hepatic dosing: check eGFR/creatinine and LFTs against all meds. Flag any mismatch.
2. Drug-drug interactions: mechanism, severity (Major, Moderate, Minor) and management.
3. Deprescribing: medications with a poor risk/benefit ratio for this patient.
4. Summarize the overall medication-safety picture."""

PSYCHIATRY_INSTRUCTIONS = """1. Risk assessment: suicide, homicide and self-harm risk (Low, Moderate, High) with rationale.
2. Findings by category (mood, cognition, behavior, medication effects).
3. Differential diagnosis, considering organic causes (thyroid, toxins, delirium) first.
4. Evidence-based plan."""

NUTRITION_INSTRUCTIONS = """1. Nutritional status: Well-nourished, At Risk or Malnourished, from weight, BMI and albumin.
2. Condition-specific dietary restrictions (e.g. 2g sodium for HF, low phosphate for CKD).
3. Likely deficiencies from labs or medications (e.g. metformin and B12).
4. One concrete daily meal plan that fits the restrictions."""


_DEFINITIONS: List[SpecialistDef] = [
    SpecialistDef(
        Specialty.CARDIOLOGY,
        "You are an expert Cardiologist AI. Focus on hemodynamics, rhythm, ventricular function and guideline-directed therapy.",
        ("ecg", "ekg", "echo", "cath", "troponin", "bnp", "cardiac", "heart", "ejection", "holter"),
    ),
    SpecialistDef(
        Specialty.NEUROLOGY,
        "You are an expert Neurologist AI. Analyze neuro-imaging and neurophysiology findings.",
        ("mri", "ct head", "eeg", "brain", "neuro", "stroke", "seizure", "emg"),
        NeuroImagingConsult,
        NEURO_INSTRUCTIONS,
    ),
    SpecialistDef(
        Specialty.ONCOLOGY,
        "You are an expert Oncologist AI. Analyze pathology and oncology data.",
        ("pathology", "biopsy", "tumor", "cancer", "oncology", "carcinoma", "staging", "malignan"),
        OncologyConsult,
        ONCOLOGY_INSTRUCTIONS,
    ),
    SpecialistDef(
        Specialty.GASTROENTEROLOGY,
        "You are an expert Gastroenterologist AI. Focus on digestive health, liver function, and endoscopic findings.",
        ("colonoscopy", "egd", "endoscopy", "liver", "abdomen", "hepatic", "gi", "stomach", "bowel", "stool"),
    ),
    SpecialistDef(
        Specialty.PULMONOLOGY,
        "You are an expert Pulmonologist AI. Focus on lung function, respiratory symptoms, and thoracic imaging.",
        ("pft", "spirometry", "chest", "lung", "pulmonary", "bronchoscopy", "x-ray", "ct chest", "respiratory"),
    ),
    SpecialistDef(
        Specialty.ENDOCRINOLOGY,
        "You are an expert Endocrinologist AI. Focus on hormonal balance, diabetes management, and metabolic health.",
        ("a1c", "glucose", "thyroid", "tsh", "t4", "lipid", "cholesterol", "endocrine", "diabetes", "hormone"),
    ),
    SpecialistDef(
        Specialty.ORTHOPEDICS,
        "You are an expert Orthopedic Surgeon AI. Focus on musculoskeletal health, fractures, and joint mobility.",
        ("fracture", "bone", "joint", "knee", "hip", "shoulder", "spine", "x-ray", "mri", "ortho", "pain"),
    ),
    SpecialistDef(
        Specialty.DERMATOLOGY,
        "You are an expert Dermatologist AI. Focus on skin conditions, lesions, and rashes.",
        ("skin", "rash", "lesion", "derm", "biopsy", "mole", "melanoma"),
    ),
    SpecialistDef(
        Specialty.NEPHROLOGY,
        "You are an expert Nephrologist AI. Focus on renal function, electrolytes, and CKD management.",
        ("kidney", "renal", "creatinine", "egfr", "bun", "urine", "dialysis", "nephrology", "albumin"),
    ),
    SpecialistDef(
        Specialty.HEMATOLOGY,
        "You are an expert Hematologist AI. Focus on blood counts, coagulation, anemia, and hematologic malignancies.",
        ("blood", "anemia", "hemoglobin", "platelet", "wbc", "iron", "ferritin", "inr", "coagulation", "heme"),
    ),
    SpecialistDef(
        Specialty.RHEUMATOLOGY,
        "You are an expert Rheumatologist AI. Focus on autoimmune conditions, inflammatory markers, and joint pathology.",
        ("joint", "arthritis", "autoimmune", "lupus", "ana", "esr", "crp", "rheum", "inflammation"),
    ),
    SpecialistDef(
        Specialty.INFECTIOUS_DISEASE,
        "You are an expert Infectious Disease Specialist AI. Focus on pathogen identification, antimicrobial stewardship, and infection control.",
        ("infection", "sepsis", "fever", "antibiotic", "culture", "wbc", "crp", "bacteria", "viral", "fungal", "microbiology"),
    ),
    SpecialistDef(
        Specialty.PSYCHIATRY,
        "You are an expert Psychiatrist AI. Focus on mental health, mood disorders, cognitive function, and psychopharmacology.",
        ("depression", "anxiety", "mood", "psych", "suicide", "mental", "hallucination", "delusion", "cognitive", "behavioral"),
        PsychiatryConsult,
        PSYCHIATRY_INSTRUCTIONS,
    ),
    SpecialistDef(
        Specialty.UROLOGY,
        "You are an expert Urologist AI. Focus on the urinary tract, prostate health, and urologic procedures.",
        ("urine", "prostate", "bladder", "psa", "hematuria", "incontinence", "urology", "kidney stone", "foley"),
    ),
    SpecialistDef(
        Specialty.OPHTHALMOLOGY,
        "You are an expert Ophthalmologist AI. Focus on eye health, vision preservation, and ocular pathology.",
        ("eye", "vision", "retina", "glaucoma", "cataract", "lens", "optic", "ophthalmology", "visual"),
    ),
    SpecialistDef(
        Specialty.GERIATRICS,
        "You are an expert Geriatrician AI. Focus on quality of life, functional independence, and medication rationalization for older adults.",
        ("frailty", "fall", "dementia", "delirium", "polypharmacy", "elderly", "aging", "functional status", "adls"),
    ),
    SpecialistDef(
        Specialty.PHARMACY,
        "You are an expert Clinical Pharmacist specializing in complex disease management (Heart Failure, CKD, Diabetes).",
        ("lab",),
        PharmacyConsult,
        PHARMACY_INSTRUCTIONS,
        context=_latest_labs,
    ),
    SpecialistDef(
        Specialty.NUTRITION,
        "You are an expert Clinical Dietitian specializing in Medical Nutrition Therapy.",
        ("lab",),
        NutritionConsult,
        NUTRITION_INSTRUCTIONS,
        context=_latest_labs,
    ),
]

# Dispatch table, built once at import
SPECIALIST_REGISTRY: Dict[Specialty, SpecialistDef] = {d.specialty: d for d in _DEFINITIONS}


DEDICATED_PROMPT = """{role}

**Patient:** {name}, {age}y {gender}.
**Condition:** {condition}.
**Current Meds:** {meds}.
**Allergies:** {allergies}.
**Request:** "{task}"

**Relevant Clinical Data (filtered for {specialty}):**
{context}

**Task:**
{instructions}"""

GENERIC_PROMPT = """You are a world-class {specialty} specialist. Analyze the patient data from your specific domain perspective.

**Patient Context:**
{case_summary}

**Request:** "{task}"

**Instructions:**
1. Identify key findings relevant to {specialty}.
2. Provide specific recommendations.
3. Be concise but thorough."""


# ──────────────────────────────────────────────
# Routines
# ──────────────────────────────────────────────

async def run_dedicated(
    spec: SpecialistDef,
    case: CaseContext,
    task: str,
    completion: CompletionService,
) -> BaseModel:
    """Run one dedicated routine and return its tagged variant."""
    context = spec.context(case) if spec.context else specialty_report_context(case, spec.keywords)
    prompt = DEDICATED_PROMPT.format(
        role=spec.role,
        name=case.name,
        age=case.age if case.age is not None else "?",
        gender=case.gender.value,
        condition=case.current_status.condition or "Not specified",
        meds=", ".join(case.current_status.medications) or "None",
        allergies=", ".join(case.allergies) or "NKDA",
        task=task,
        specialty=spec.specialty.value,
        context=context or "No specific reports found for this specialty. Reviewing general history and labs.",
        instructions=spec.instructions or UNIVERSAL_INSTRUCTIONS.format(specialty=spec.specialty.value),
    )
    return await completion.generate_structured(
        prompt=prompt,
        response_model=spec.response_model,
        model="flash",
        temperature=0.3,
    )


async def run_generic(
    label: str,
    case: CaseContext,
    task: str,
    completion: CompletionService,
) -> SpecialistOpinion:
    """Generic specialist-role routine; returns the canonical shape directly."""
    prompt = GENERIC_PROMPT.format(
        specialty=label,
        case_summary=format_case_summary(case),
        task=task,
    )
    opinion = await completion.generate_structured(
        prompt=prompt,
        response_model=SpecialistOpinion,
        model="flash",
        temperature=0.3,
    )
    return opinion.model_copy(update={"specialty": label})


# ──────────────────────────────────────────────
# Adaptation
# ──────────────────────────────────────────────

def adapt(label: str, consult: BaseModel) -> SpecialistOpinion:
    """Normalize any dedicated variant into the canonical opinion."""
    findings: List[str] = []
    recommendations: List[str] = []
    focus = "General Consult"

    if isinstance(consult, UniversalConsult):
        focus = consult.title or focus
        if consult.key_findings:
            findings.append("; ".join(
                f"{f.label}: {f.value} ({f.status.value})" for f in consult.key_findings
            ))
        if consult.clinical_assessment:
            findings.append(f"Assessment: {consult.clinical_assessment}")
        recommendations = list(consult.plan)

    elif isinstance(consult, NeuroImagingConsult):
        focus = f"{label} Consult ({consult.modality})" if consult.modality else f"{label} Consult"
        if consult.findings:
            findings.append("; ".join(
                f"{f.region}: {f.finding} ({f.significance})" for f in consult.findings
            ))
        if consult.impression:
            findings.append(f"Impression: {consult.impression}")
        if consult.stroke_protocol_status:
            findings.append(f"Stroke protocol: {consult.stroke_protocol_status}")
        recommendations = list(consult.recommendations)

    elif isinstance(consult, OncologyConsult):
        focus = f"{label} Consult: {consult.tumor_site}" if consult.tumor_site else f"{label} Consult"
        if consult.histology:
            findings.append(f"Histology: {consult.histology}")
        if consult.biomarkers:
            findings.append("Biomarkers: " + ", ".join(f"{b.name} {b.status}" for b in consult.biomarkers))
        if consult.staging and consult.staging.stage:
            s = consult.staging
            findings.append(f"Stage: {s.stage} (T{s.t} N{s.n} M{s.m})")
        if consult.treatment_plan:
            recommendations = [consult.treatment_plan]

    elif isinstance(consult, PharmacyConsult):
        focus = consult.title or focus
        if consult.interactions:
            findings.append("Interactions: " + "; ".join(
                f"{i.drug1} + {i.drug2} ({i.severity}): {i.mechanism}" for i in consult.interactions
            ))
        if consult.dosing_adjustments:
            findings.append("Dosing: " + "; ".join(
                f"{d.drug} {d.current_dose} -> {d.recommended_dose} ({d.reason})"
                for d in consult.dosing_adjustments
            ))
        if consult.summary:
            findings.append(f"Assessment: {consult.summary}")
        recommendations = [i.management for i in consult.interactions if i.management]
        recommendations += [
            f"Deprescribe {n.drug}: {n.recommendation or n.reason}"
            for n in consult.deprescribing_opportunities
        ]

    elif isinstance(consult, PsychiatryConsult):
        focus = consult.title or focus
        risk = consult.risk_assessment
        if risk:
            findings.append(
                f"Risk: suicide {risk.suicide_risk}, homicide {risk.homicide_risk}, "
                f"self-harm {risk.self_harm_risk}"
            )
        if consult.findings:
            findings.append("; ".join(f"{f.category}: {f.finding}" for f in consult.findings))
        if consult.differential_diagnosis:
            findings.append("Differential: " + ", ".join(consult.differential_diagnosis))
        recommendations = list(consult.plan)

    elif isinstance(consult, NutritionConsult):
        focus = consult.title or focus
        if consult.nutritional_status:
            findings.append(f"Nutritional status: {consult.nutritional_status}")
        if consult.deficiencies:
            findings.append("Deficiencies: " + "; ".join(
                f"{d.nutrient} {d.level}".strip() for d in consult.deficiencies
            ))
        if consult.summary:
            findings.append(f"Assessment: {consult.summary}")
        recommendations = list(consult.dietary_restrictions)
        recommendations += [d.recommendation for d in consult.deficiencies if d.recommendation]
        if consult.meal_plan_suggestion:
            recommendations.append(f"Meal plan: {consult.meal_plan_suggestion}")

    else:
        raise TypeError(f"No adapter for {type(consult).__name__}")

    text = "\n".join(findings)
    if not text:
        text = consult.model_dump_json()[:FINDINGS_FALLBACK_CHARS]
    return SpecialistOpinion(
        specialty=label,
        focus=focus,
        findings=text,
        recommendations=recommendations,
    )


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

async def dispatch(
    label: str,
    case: CaseContext,
    task: str = BOARD_TASK,
    completion: Optional[CompletionService] = None,
) -> SpecialistOpinion:
    """
    Produce one specialist opinion for a free-form specialty label.

    The label is normalized onto the taxonomy and looked up in the registry.
    A failing dedicated routine falls through to the generic routine; only
    when that also fails does this raise SpecialistDispatchFailure.
    """
    completion = completion or CompletionService()
    specialty = normalize_specialty(label)
    spec = SPECIALIST_REGISTRY.get(specialty) if specialty else None

    if spec is not None:
        try:
            consult = await run_dedicated(spec, case, task, completion)
            return adapt(label, consult)
        except Exception as e:
            logger.warning(f"Dedicated routine for {label} failed, falling back to generic: {loggable_error(e)}")

    try:
        return await run_generic(label, case, task, completion)
    except Exception as e:
        logger.error(f"Generic routine for {label} failed: {loggable_error(e)}")
        raise SpecialistDispatchFailure(label, str(e)) from e
