"""Tests for the specialty taxonomy and medboard/tools/specialists.py."""
import pytest

from conftest import FakeCompletion, generic_opinion, universal_consult
from medboard.errors import SchemaParseFailure, SpecialistDispatchFailure
from medboard.models.schemas import (
    Biomarker,
    DeprescribingNote,
    DrugInteractionNote,
    KeyFinding,
    NeuroImagingConsult,
    NutrientDeficiency,
    NutritionConsult,
    OncologyConsult,
    PharmacyConsult,
    PsychiatricRisk,
    PsychiatryConsult,
    RegionalFinding,
    SpecialistOpinion,
    TNMStaging,
    UniversalConsult,
)
from medboard.models.specialties import ALL_SPECIALTIES, Specialty, normalize_specialty
from medboard.tools.specialists import SPECIALIST_REGISTRY, adapt, dispatch


# ──────────────────────────────────────────────
# Taxonomy
# ──────────────────────────────────────────────

@pytest.mark.parametrize("label,expected", [
    ("Cardiology", Specialty.CARDIOLOGY),
    ("cardiology", Specialty.CARDIOLOGY),
    ("Cardiologist", Specialty.CARDIOLOGY),
    ("Neurologist", Specialty.NEUROLOGY),
    ("Renal/Nephrology", Specialty.NEPHROLOGY),
    ("Medical Oncology", Specialty.ONCOLOGY),
    ("GI", Specialty.GASTROENTEROLOGY),
    ("Infectious Disease", Specialty.INFECTIOUS_DISEASE),
    ("Clinical Pharmacist", Specialty.PHARMACY),
    ("Dietitian / Nutrition", Specialty.NUTRITION),
    ("Hospitalist", Specialty.INTERNAL_MEDICINE),
    ("Deep Reasoning", Specialty.DEEP_REASONING),
    ("DeepReasoning", Specialty.DEEP_REASONING),
    ("General", Specialty.GENERAL),
    ("Urology", Specialty.UROLOGY),
])
def test_normalize_specialty(label, expected):
    assert normalize_specialty(label) == expected


@pytest.mark.parametrize("label", ["", None, "Astrology", "Surgery"])
def test_normalize_specialty_unknown_is_none(label):
    assert normalize_specialty(label) is None


def test_roster_has_sixteen_distinct_entries():
    assert len(ALL_SPECIALTIES) == 16
    assert len(set(ALL_SPECIALTIES)) == 16
    assert ALL_SPECIALTIES[0] == Specialty.CARDIOLOGY


def test_registry_covers_roster_and_consultants():
    for specialty in ALL_SPECIALTIES:
        assert specialty in SPECIALIST_REGISTRY
    assert Specialty.PHARMACY in SPECIALIST_REGISTRY
    assert Specialty.NUTRITION in SPECIALIST_REGISTRY
    assert Specialty.INTERNAL_MEDICINE not in SPECIALIST_REGISTRY


# ──────────────────────────────────────────────
# Adaptation
# ──────────────────────────────────────────────

def test_adapt_universal():
    consult = UniversalConsult(
        title="Nephrology Consult",
        key_findings=[KeyFinding(label="Creatinine", value="2.1", status="Abnormal")],
        clinical_assessment="AKI on CKD.",
        plan=["Hold ACE inhibitor"],
    )
    opinion = adapt("Nephrology", consult)

    assert opinion.specialty == "Nephrology"
    assert opinion.focus == "Nephrology Consult"
    assert "Creatinine: 2.1 (abnormal)" in opinion.findings
    assert "Assessment: AKI on CKD." in opinion.findings
    assert opinion.recommendations == ["Hold ACE inhibitor"]


def test_adapt_neuro_imaging():
    consult = NeuroImagingConsult(
        modality="MRI",
        findings=[RegionalFinding(region="Left MCA", finding="Acute infarct", significance="Critical")],
        impression="Acute ischemic stroke",
        recommendations=["Neuro checks q1h"],
        stroke_protocol_status="Outside tPA window",
    )
    opinion = adapt("Neurology", consult)

    assert opinion.focus == "Neurology Consult (MRI)"
    assert "Left MCA: Acute infarct (Critical)" in opinion.findings
    assert "Impression: Acute ischemic stroke" in opinion.findings
    assert "Stroke protocol: Outside tPA window" in opinion.findings
    assert opinion.recommendations == ["Neuro checks q1h"]


def test_adapt_oncology():
    consult = OncologyConsult(
        tumor_site="Colon",
        histology="Adenocarcinoma",
        biomarkers=[Biomarker(name="MSI", status="stable")],
        staging=TNMStaging(t="3", n="1", m="0", stage="IIIB"),
        treatment_plan="Adjuvant FOLFOX",
    )
    opinion = adapt("Oncology", consult)

    assert opinion.focus == "Oncology Consult: Colon"
    assert "Histology: Adenocarcinoma" in opinion.findings
    assert "Biomarkers: MSI stable" in opinion.findings
    assert "Stage: IIIB (T3 N1 M0)" in opinion.findings
    assert opinion.recommendations == ["Adjuvant FOLFOX"]


def test_adapt_pharmacy():
    consult = PharmacyConsult(
        interactions=[DrugInteractionNote(
            drug1="Apixaban", drug2="Amiodarone", severity="Moderate",
            mechanism="P-gp inhibition", management="Monitor for bleeding",
        )],
        deprescribing_opportunities=[DeprescribingNote(drug="Glipizide", reason="Hypoglycemia risk")],
        summary="Renal dosing review needed.",
    )
    opinion = adapt("Pharmacy", consult)

    assert opinion.focus == "Pharmacy Consult"
    assert "Apixaban + Amiodarone (Moderate): P-gp inhibition" in opinion.findings
    assert "Monitor for bleeding" in opinion.recommendations
    assert "Deprescribe Glipizide: Hypoglycemia risk" in opinion.recommendations


def test_adapt_psychiatry():
    consult = PsychiatryConsult(
        risk_assessment=PsychiatricRisk(suicide_risk="Moderate"),
        differential_diagnosis=["Major depressive disorder", "Hypothyroidism"],
        plan=["Start sertraline 25mg"],
    )
    opinion = adapt("Psychiatry", consult)

    assert "Risk: suicide Moderate, homicide Low, self-harm Low" in opinion.findings
    assert "Differential: Major depressive disorder, Hypothyroidism" in opinion.findings
    assert opinion.recommendations == ["Start sertraline 25mg"]


def test_adapt_nutrition():
    consult = NutritionConsult(
        nutritional_status="At Risk",
        dietary_restrictions=["2g sodium"],
        deficiencies=[NutrientDeficiency(nutrient="B12", level="180 pg/mL", recommendation="Supplement B12")],
        meal_plan_suggestion="Oatmeal breakfast",
    )
    opinion = adapt("Nutrition", consult)

    assert "Nutritional status: At Risk" in opinion.findings
    assert "Deficiencies: B12 180 pg/mL" in opinion.findings
    assert opinion.recommendations == ["2g sodium", "Supplement B12", "Meal plan: Oatmeal breakfast"]


def test_adapt_empty_variant_falls_back_to_serialized_text():
    opinion = adapt("Oncology", OncologyConsult())
    assert opinion.findings
    assert "oncology" in opinion.findings
    assert len(opinion.findings) <= 200


def test_adapt_rejects_unknown_variant():
    with pytest.raises(TypeError):
        adapt("Cardiology", SpecialistOpinion(specialty="Cardiology"))


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

async def test_dispatch_uses_dedicated_routine(sample_case):
    completion = FakeCompletion(structured={"UniversalConsult": universal_consult("Cardiology Consult")})
    opinion = await dispatch("Cardiologist", sample_case, completion=completion)

    assert opinion.specialty == "Cardiologist"
    assert opinion.focus == "Cardiology Consult"
    assert len(completion.calls_for("UniversalConsult")) == 1
    assert completion.calls_for("SpecialistOpinion") == []


async def test_dedicated_prompt_carries_filtered_reports(sample_case):
    completion = FakeCompletion(structured={"UniversalConsult": universal_consult()})
    await dispatch("Cardiology", sample_case, completion=completion)

    prompt = completion.calls_for("UniversalConsult")[0]["prompt"]
    assert "Jane Doe" in prompt
    assert "LVEF 30-35%" in prompt
    assert "Tubular adenoma" not in prompt


async def test_pharmacy_prompt_uses_latest_labs(sample_case):
    completion = FakeCompletion(structured={"PharmacyConsult": {"summary": "Reduce apixaban dose"}})
    opinion = await dispatch("Pharmacy", sample_case, completion=completion)

    prompt = completion.calls_for("PharmacyConsult")[0]["prompt"]
    assert "Creatinine 2.1" in prompt
    assert "Assessment: Reduce apixaban dose" in opinion.findings


async def test_dispatch_unknown_label_uses_generic(sample_case):
    completion = FakeCompletion(structured={"SpecialistOpinion": generic_opinion("Whatever")})
    opinion = await dispatch("Vascular Surgery", sample_case, completion=completion)

    assert opinion.specialty == "Vascular Surgery"
    assert opinion.findings == "Generic findings"
    assert "Vascular Surgery" in completion.calls_for("SpecialistOpinion")[0]["prompt"]


async def test_internal_medicine_uses_generic(sample_case):
    completion = FakeCompletion(structured={"SpecialistOpinion": generic_opinion()})
    opinion = await dispatch("Internal Medicine", sample_case, completion=completion)
    assert opinion.specialty == "Internal Medicine"
    assert completion.calls_for("UniversalConsult") == []


async def test_dedicated_failure_falls_back_to_generic(sample_case):
    completion = FakeCompletion(structured={
        "OncologyConsult": SchemaParseFailure("OncologyConsult", "bad json"),
        "SpecialistOpinion": generic_opinion("Oncology"),
    })
    opinion = await dispatch("Oncology", sample_case, completion=completion)

    assert opinion.specialty == "Oncology"
    assert opinion.findings == "Generic findings"
    assert len(completion.calls_for("OncologyConsult")) == 1
    assert len(completion.calls_for("SpecialistOpinion")) == 1


async def test_generic_failure_raises_dispatch_failure(sample_case):
    completion = FakeCompletion(structured={})
    with pytest.raises(SpecialistDispatchFailure) as exc_info:
        await dispatch("Oncology", sample_case, completion=completion)
    assert exc_info.value.specialty == "Oncology"
