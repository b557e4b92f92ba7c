"""Shared pytest fixtures."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from medboard.errors import SchemaParseFailure
from medboard.models.schemas import (
    CaseContext,
    CurrentStatus,
    MedicalHistoryItem,
    Report,
    SpecialistOpinion,
)


def _resolve(value: Any, prompt: str) -> Any:
    if isinstance(value, BaseException):
        raise value
    if callable(value) and not isinstance(value, type):
        return _resolve(value(prompt), prompt)
    return value


class FakeCompletion:
    """
    Scripted stand-in for CompletionService.

    `text` answers generate(); `structured` maps a response-model class name
    to its answer. An answer may be a value, an exception instance (raised),
    or a callable taking the prompt and returning either. Every call is
    recorded in `calls`.
    """

    def __init__(
        self,
        text: Any = "Model reply",
        structured: Optional[Dict[str, Any]] = None,
        has_credential: bool = True,
    ) -> None:
        self.text = text
        self.structured: Dict[str, Any] = structured or {}
        self.has_credential = has_credential
        self.calls: List[Dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: str = "flash",
        max_tokens: int = 0,
        temperature: float = 0.3,
        thinking_budget: Optional[int] = None,
    ) -> str:
        self.calls.append({
            "kind": "text",
            "prompt": prompt,
            "system_prompt": system_prompt,
            "model": model,
            "thinking_budget": thinking_budget,
        })
        return _resolve(self.text, prompt)

    async def generate_structured(
        self,
        prompt: str,
        response_model,
        system_prompt: Optional[str] = None,
        model: str = "flash",
        max_tokens: int = 0,
        temperature: float = 0.2,
        thinking_budget: Optional[int] = None,
    ):
        name = response_model.__name__
        self.calls.append({
            "kind": "structured",
            "response_model": name,
            "prompt": prompt,
            "system_prompt": system_prompt,
            "model": model,
            "temperature": temperature,
        })
        if name not in self.structured:
            raise SchemaParseFailure(name, "no scripted response")
        value = _resolve(self.structured[name], prompt)
        if isinstance(value, dict):
            return response_model.model_validate(value)
        return value

    def calls_for(self, response_model: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c.get("response_model") == response_model]

    @property
    def text_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == "text"]


class FakeClock:
    """Manually advanced clock for cache expiry tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sample_case() -> CaseContext:
    return CaseContext(
        id="p-001",
        name="Jane Doe",
        age=72,
        gender="female",
        weight=68.0,
        allergies=["Penicillin"],
        medical_history=[
            MedicalHistoryItem(description="Heart failure with reduced ejection fraction", icd10="I50.2"),
            MedicalHistoryItem(description="Chronic kidney disease stage 3b", icd10="N18.32"),
            MedicalHistoryItem(description="Type 2 diabetes mellitus", icd10="E11.9"),
        ],
        current_status=CurrentStatus(
            condition="Decompensated heart failure with worsening renal function",
            vitals="BP 104/62, HR 92, SpO2 93% RA",
            medications=["Furosemide 40mg BID", "Metoprolol succinate 50mg", "Empagliflozin 10mg", "Apixaban 5mg BID"],
        ),
        reports=[
            Report(
                id="r-lab-1", type="Lab", date="2024-05-02", title="Renal Function Tests",
                content="Creatinine 2.1 mg/dL (baseline 1.6), eGFR 28, Potassium 5.3",
            ),
            Report(
                id="r-echo-1", type="Echo", date="2024-04-20", title="Transthoracic Echocardiogram",
                content="LVEF 30-35%, moderate functional MR, dilated LV",
            ),
            Report(
                id="r-ecg-1", type="ECG", date="2024-05-01", title="12-lead ECG",
                content="Sinus rhythm 92 bpm, LBBB, QRS 150 ms",
            ),
            Report(
                id="r-path-1", type="Pathology", date="2024-03-11", title="Colon Biopsy",
                content="Tubular adenoma with low-grade dysplasia, no invasive carcinoma",
            ),
        ],
    )


@pytest.fixture
def sample_opinion() -> SpecialistOpinion:
    return SpecialistOpinion(
        specialty="Cardiology",
        focus="HFrEF decompensation",
        findings="Volume overloaded; LVEF 30-35%",
        recommendations=["IV diuresis", "Hold uptitration of beta-blocker"],
    )


def universal_consult(title: str = "Consult") -> Dict[str, Any]:
    return {
        "title": title,
        "key_findings": [{"label": "eGFR", "value": "28", "status": "abnormal"}],
        "clinical_assessment": "Cardiorenal physiology.",
        "plan": ["Daily BMP", "Strict I/O"],
    }


def generic_opinion(specialty: str = "Internal Medicine") -> Dict[str, Any]:
    return {
        "specialty": specialty,
        "focus": "Generic consult",
        "findings": "Generic findings",
        "recommendations": ["Generic recommendation"],
    }


CONSOLIDATED = {
    "summary": "Elderly patient with cardiorenal syndrome.",
    "conflicts": "Nephrology fluid restriction vs Cardiology diuresis targets.",
    "final_plan": "Cautious diuresis with daily creatinine.",
}


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def board_completion() -> FakeCompletion:
    """Answers every board call: panel, dedicated and generic consults, consensus."""
    return FakeCompletion(structured={
        "PanelSelection": {"specialties": ["Nephrology", "Cardiology", "Endocrinology"]},
        "UniversalConsult": universal_consult(),
        "SpecialistOpinion": generic_opinion(),
        "ConsolidatedReport": CONSOLIDATED,
    })


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
