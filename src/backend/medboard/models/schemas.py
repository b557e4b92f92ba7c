# [Core: Domain Models]
"""
Domain models for the MedBoard core.

These Pydantic models define the structured data flowing between the router,
specialist registry, board, consensus and debate components. Every component
consumes and produces typed models, never loose dicts.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from medboard.config import settings


def _now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"
    UNKNOWN = "Unknown"


# Single-letter and common provider spellings
GENDER_SHORT_FORMS = {
    "M": Gender.MALE.value,
    "F": Gender.FEMALE.value,
    "O": Gender.OTHER.value,
    "U": Gender.UNKNOWN.value,
    "Man": Gender.MALE.value,
    "Woman": Gender.FEMALE.value,
}


class FindingStatus(str, Enum):
    NORMAL = "normal"
    ABNORMAL = "abnormal"
    CRITICAL = "critical"


class Tone(str, Enum):
    FORMAL = "formal"
    DEFAULT = "default"
    COLLABORATIVE = "collaborative"


class Verbosity(str, Enum):
    CONCISE = "concise"
    DEFAULT = "default"
    DETAILED = "detailed"


# ──────────────────────────────────────────────
# Case Context (supplied by the case provider, read-only)
# ──────────────────────────────────────────────

class Report(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str = Field(..., description="Report type, e.g. 'Lab', 'ECG', 'Echo'")
    date: str = Field("", description="YYYY-MM-DD")
    title: str = ""
    content: Optional[str] = Field(None, description="Text content, if any")
    ai_summary: Optional[str] = None
    raw_text_for_analysis: Optional[str] = Field(
        None, description="OCR / extracted text for image or PDF reports"
    )

    @property
    def text(self) -> Optional[str]:
        """Best available text for prompting, or None for image-only reports."""
        return self.content or self.raw_text_for_analysis


class MedicalHistoryItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    icd10: Optional[str] = None


class CurrentStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition: str = ""
    condition_icd10: Optional[str] = None
    vitals: str = ""
    medications: List[str] = Field(default_factory=list)


class CaseContext(BaseModel):
    """Read-only snapshot of one patient, built once per inbound request."""
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = "Patient"
    age: Optional[int] = None
    gender: Gender = Gender.UNKNOWN
    weight: Optional[float] = Field(None, description="kg")
    allergies: List[str] = Field(default_factory=list)
    medical_history: List[MedicalHistoryItem] = Field(default_factory=list)
    current_status: CurrentStatus = Field(default_factory=CurrentStatus)
    reports: List[Report] = Field(default_factory=list)

    @field_validator("gender", mode="before")
    @classmethod
    def _normalise_gender(cls, v):
        if isinstance(v, str):
            v = v.strip().capitalize()
            return GENDER_SHORT_FORMS.get(v, v) or Gender.UNKNOWN.value
        return v


# ──────────────────────────────────────────────
# Specialist Opinions (canonical shape)
# ──────────────────────────────────────────────

class SpecialistOpinion(BaseModel):
    """Canonical output of one specialist routine. Eligible for caching."""
    specialty: str = Field(..., description="Specialty label")
    focus: str = Field("General Consult", description="Main area of concern")
    findings: str = Field("", description="Key findings")
    recommendations: List[str] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Dedicated specialist outputs (closed set of tagged variants)
# ──────────────────────────────────────────────

class KeyFinding(BaseModel):
    label: str
    value: str
    status: FindingStatus = FindingStatus.NORMAL

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, v):
        return v.lower() if isinstance(v, str) else v


class UniversalConsult(BaseModel):
    """Shared shape for organ-system specialties."""
    kind: Literal["universal"] = "universal"
    title: str = Field(..., description="Title of the consult, e.g. 'Nephrology Consult'")
    key_findings: List[KeyFinding] = Field(default_factory=list)
    clinical_assessment: str = ""
    plan: List[str] = Field(default_factory=list)


class RegionalFinding(BaseModel):
    region: str
    finding: str
    significance: str = Field("Normal", description="Normal, Abnormal or Critical")


class NeuroImagingConsult(BaseModel):
    kind: Literal["neuro_imaging"] = "neuro_imaging"
    modality: str = Field("", description="MRI, CT or EEG")
    findings: List[RegionalFinding] = Field(default_factory=list)
    impression: str = ""
    recommendations: List[str] = Field(default_factory=list)
    stroke_protocol_status: Optional[str] = Field(
        None, description="e.g. 'Outside tPA window' or 'Candidate for Thrombectomy'"
    )


class Biomarker(BaseModel):
    name: str
    status: str


class TNMStaging(BaseModel):
    t: str = ""
    n: str = ""
    m: str = ""
    stage: str = ""


class OncologyConsult(BaseModel):
    kind: Literal["oncology"] = "oncology"
    tumor_site: str = ""
    histology: str = ""
    biomarkers: List[Biomarker] = Field(default_factory=list)
    staging: Optional[TNMStaging] = None
    treatment_plan: str = ""


class DrugInteractionNote(BaseModel):
    drug1: str
    drug2: str
    severity: str = Field("Moderate", description="Major, Moderate or Minor")
    mechanism: str = ""
    management: str = ""


class DosingAdjustment(BaseModel):
    drug: str
    current_dose: str = ""
    recommended_dose: str = ""
    reason: str = Field("", description="Renal, Hepatic, Age, Weight or Interaction")
    details: str = ""


class DeprescribingNote(BaseModel):
    drug: str
    reason: str = ""
    recommendation: str = ""


class PharmacyConsult(BaseModel):
    kind: Literal["pharmacy"] = "pharmacy"
    title: str = "Pharmacy Consult"
    interactions: List[DrugInteractionNote] = Field(default_factory=list)
    dosing_adjustments: List[DosingAdjustment] = Field(default_factory=list)
    deprescribing_opportunities: List[DeprescribingNote] = Field(default_factory=list)
    summary: str = ""


class PsychiatricRisk(BaseModel):
    suicide_risk: str = "Low"
    homicide_risk: str = "Low"
    self_harm_risk: str = "Low"
    rationale: str = ""


class PsychiatricFinding(BaseModel):
    category: str
    finding: str
    status: str = ""
    details: str = ""


class PsychiatryConsult(BaseModel):
    kind: Literal["psychiatry"] = "psychiatry"
    title: str = "Psychiatry Consult"
    risk_assessment: Optional[PsychiatricRisk] = None
    findings: List[PsychiatricFinding] = Field(default_factory=list)
    differential_diagnosis: List[str] = Field(default_factory=list)
    plan: List[str] = Field(default_factory=list)


class NutrientDeficiency(BaseModel):
    nutrient: str
    level: str = ""
    status: str = ""
    recommendation: str = ""


class NutritionConsult(BaseModel):
    kind: Literal["nutrition"] = "nutrition"
    title: str = "Nutrition Consult"
    nutritional_status: str = ""
    dietary_restrictions: List[str] = Field(default_factory=list)
    deficiencies: List[NutrientDeficiency] = Field(default_factory=list)
    meal_plan_suggestion: str = ""
    summary: str = ""


SpecialistConsult = Annotated[
    Union[
        UniversalConsult,
        NeuroImagingConsult,
        OncologyConsult,
        PharmacyConsult,
        PsychiatryConsult,
        NutritionConsult,
    ],
    Field(discriminator="kind"),
]


# ──────────────────────────────────────────────
# Board Review
# ──────────────────────────────────────────────

class ConsolidatedReport(BaseModel):
    """Chief Medical Officer synthesis across all specialist opinions."""
    summary: str = Field(..., description="Executive summary")
    conflicts: str = Field(
        "", description="Cross-specialty conflicts and trade-offs, stated explicitly"
    )
    final_plan: str = Field(..., description="Final unified plan")


class BoardReview(BaseModel):
    title: str
    specialist_opinions: List[SpecialistOpinion] = Field(default_factory=list)
    consolidated: Optional[ConsolidatedReport] = None


class BoardReviewOptions(BaseModel):
    max_specialties: int = Field(
        default_factory=lambda: settings.board_max_specialties, ge=1
    )
    grand_rounds: bool = False
    sequential: Optional[bool] = Field(
        None, description="None = sequential only when a progress callback is supplied"
    )


class PanelSelection(BaseModel):
    """Structured output of the board-assembly model call."""
    specialties: List[str] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Debate
# ──────────────────────────────────────────────

class DebateParticipant(BaseModel):
    role: str = Field(..., description="Role, e.g. 'Nephrologist' or 'Moderator'")
    name: str = Field(..., description="Name, e.g. 'Dr. Smith'")
    specialty: str = ""


class DebateTurn(BaseModel):
    speaker: str
    role: str
    text: str


class DebateInit(BaseModel):
    topic: str
    participants: List[DebateParticipant] = Field(default_factory=list)


class DebateTurnDraft(BaseModel):
    """Structured output of the turn-generation model call."""
    next_speaker_name: str
    next_speaker_role: str = ""
    response_text: str
    consensus_reached: bool = False
    consensus_statement: Optional[str] = None


class DebateTurnResult(BaseModel):
    next_turn: DebateTurn
    consensus_reached: bool = False
    consensus_statement: Optional[str] = None


class DebateSession(BaseModel):
    topic: str
    participants: List[DebateParticipant] = Field(default_factory=list)
    transcript: List[DebateTurn] = Field(default_factory=list)
    consensus_statement: Optional[str] = None
    is_live: bool = True
    max_turns: int = Field(default_factory=lambda: settings.debate_max_turns, ge=1)


# ──────────────────────────────────────────────
# Router
# ──────────────────────────────────────────────

class AssistantSettings(BaseModel):
    """Per-request personalization and credential override."""
    api_key: Optional[str] = None
    tone: Tone = Tone.DEFAULT
    verbosity: Verbosity = Verbosity.DEFAULT


class ReportMatch(BaseModel):
    """Structured output of the report-matching model call."""
    report_id: Optional[str] = None
    reasoning: str = ""


class TextMessage(BaseModel):
    id: int = Field(default_factory=_now_ms)
    sender: Literal["ai"] = "ai"
    type: Literal["text"] = "text"
    text: str


class ReportViewerMessage(BaseModel):
    id: int = Field(default_factory=_now_ms)
    sender: Literal["ai"] = "ai"
    type: Literal["report_viewer"] = "report_viewer"
    title: str
    report_id: str


class BoardReviewMessage(BaseModel):
    id: int = Field(default_factory=_now_ms)
    sender: Literal["ai"] = "ai"
    type: Literal["multi_specialist_review"] = "multi_specialist_review"
    title: str
    is_live: bool = False
    specialist_reports: List[SpecialistOpinion] = Field(default_factory=list)
    consolidated_report: Optional[ConsolidatedReport] = None


class ClinicalDebateMessage(BaseModel):
    id: int = Field(default_factory=_now_ms)
    sender: Literal["ai"] = "ai"
    type: Literal["clinical_debate"] = "clinical_debate"
    title: str
    topic: str
    participants: List[DebateParticipant] = Field(default_factory=list)
    transcript: List[DebateTurn] = Field(default_factory=list)
    consensus: Optional[str] = None
    is_live: bool = True


Message = Annotated[
    Union[TextMessage, ReportViewerMessage, BoardReviewMessage, ClinicalDebateMessage],
    Field(discriminator="type"),
]


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1)
    case: CaseContext
    settings: AssistantSettings = Field(default_factory=AssistantSettings)


class BoardReviewRequest(BaseModel):
    case: CaseContext
    options: BoardReviewOptions = Field(default_factory=BoardReviewOptions)


class DebateInitRequest(BaseModel):
    case: CaseContext
    max_participants: int = Field(
        default_factory=lambda: settings.debate_max_participants, ge=2
    )


class DebateTurnRequest(BaseModel):
    case: CaseContext
    topic: str
    participants: List[DebateParticipant] = Field(..., min_length=1)
    transcript: List[DebateTurn] = Field(default_factory=list)


class CacheStats(BaseModel):
    total_entries: int
    valid_entries: int
    in_flight: int = 0
