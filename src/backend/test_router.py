"""Tests for medboard/agent/router.py."""
from conftest import CONSOLIDATED, FakeCompletion
from medboard.agent.router import (
    CONNECTION_ERROR_MESSAGE,
    CREDENTIALS_MESSAGE,
    EMPTY_REPLY_MESSAGE,
    NO_REPORT_MESSAGE,
    route_query,
)
from medboard.config import settings
from medboard.errors import NetworkFailure
from medboard.models.schemas import AssistantSettings
from medboard.services.opinion_cache import OpinionCache


def _answers(classification, reply="Model reply"):
    """Text responder: the classifier prompt gets `classification`, everything else `reply`."""
    def _respond(prompt):
        if prompt.startswith("Classify this medical query"):
            return classification
        return reply
    return _respond


# ──────────────────────────────────────────────
# Credentials
# ──────────────────────────────────────────────

async def test_no_credential_returns_instructions(sample_case):
    completion = FakeCompletion(has_credential=False)
    message = await route_query("Can we get a board review for this patient", sample_case, completion=completion)

    assert message.type == "text"
    assert message.text == CREDENTIALS_MESSAGE
    assert completion.calls == []


async def test_no_configured_key_returns_instructions(sample_case, monkeypatch):
    monkeypatch.setattr(settings, "completion_api_key", "")
    message = await route_query("What is her eGFR?", sample_case)
    assert message.text == CREDENTIALS_MESSAGE


# ──────────────────────────────────────────────
# Board and debate
# ──────────────────────────────────────────────

async def test_board_keyword_skips_classifier(sample_case, board_completion):
    message = await route_query("Can we get a board review for this patient", sample_case, completion=board_completion)

    assert message.type == "multi_specialist_review"
    assert message.title == "Medical Board Review: Jane Doe"
    assert [o.specialty for o in message.specialist_reports] == ["Cardiology", "Nephrology", "Endocrinology"]
    assert message.consolidated_report.summary == CONSOLIDATED["summary"]
    assert board_completion.text_calls == []


async def test_grand_rounds_keyword_consults_full_roster(sample_case, board_completion):
    message = await route_query("Present her at grand rounds", sample_case, completion=board_completion)

    assert message.type == "multi_specialist_review"
    assert len(message.specialist_reports) == 16
    assert board_completion.calls_for("PanelSelection") == []


async def test_board_review_uses_cache(sample_case, board_completion):
    cache = OpinionCache()
    await route_query("Board review please", sample_case, cache=cache, completion=board_completion)
    await route_query("Board review please", sample_case, cache=cache, completion=board_completion)
    assert len(board_completion.calls_for("UniversalConsult")) == 3


async def test_debate_keyword_returns_live_debate(sample_case):
    completion = FakeCompletion(structured={"DebateInit": {
        "topic": "Anticoagulation with CKD",
        "participants": [
            {"role": "Moderator", "name": "Dr. Chief", "specialty": "Chief of Medicine"},
            {"role": "Hematologist", "name": "Dr. Clot", "specialty": "Hematology"},
        ],
    }})
    message = await route_query("Let's debate the anticoagulation plan", sample_case, completion=completion)

    assert message.type == "clinical_debate"
    assert message.is_live is True
    assert message.topic == "Anticoagulation with CKD"
    assert completion.text_calls == []


# ──────────────────────────────────────────────
# Reports
# ──────────────────────────────────────────────

async def test_lookup_returns_report_viewer(sample_case):
    completion = FakeCompletion()
    message = await route_query("Show me the echo", sample_case, completion=completion)

    assert message.type == "report_viewer"
    assert message.report_id == "r-echo-1"
    assert message.title == "Found: **Transthoracic Echocardiogram**"
    assert completion.calls == []


async def test_lookup_without_match(sample_case):
    completion = FakeCompletion(structured={"ReportMatch": {"report_id": None}})
    message = await route_query("Show me the MRI", sample_case, completion=completion)
    assert message.text == NO_REPORT_MESSAGE


async def test_lookup_failure_falls_through_to_answer(sample_case):
    completion = FakeCompletion(text=_answers("Cardiology", "No MRI is on file."))
    message = await route_query("Show me the MRI", sample_case, completion=completion)
    assert message.text == "No MRI is on file."


async def test_analysis_reads_report_content(sample_case):
    completion = FakeCompletion(text="Creatinine is above baseline.")
    message = await route_query("Summarize the lab report", sample_case, completion=completion)

    assert message.text == "Creatinine is above baseline."
    call = completion.text_calls[0]
    assert call["model"] == "flash"
    assert "Creatinine 2.1 mg/dL" in call["prompt"]
    assert "Renal Function Tests" in call["prompt"]


# ──────────────────────────────────────────────
# Domain answers
# ──────────────────────────────────────────────

async def test_specialty_answer_carries_classification(sample_case):
    completion = FakeCompletion(text=_answers("Nephrology", "Hold the ACE inhibitor."))
    message = await route_query("Should we stop her lisinopril?", sample_case, completion=completion)

    assert message.text == "Hold the ACE inhibitor."
    answer = completion.text_calls[-1]
    assert answer["prompt"] == "User Question: Should we stop her lisinopril?"
    assert "Detected medical specialty for this query: Nephrology." in answer["system_prompt"]
    assert "Jane Doe" in answer["system_prompt"]


async def test_classifier_failure_answers_as_general(sample_case):
    def _respond(prompt):
        if prompt.startswith("Classify this medical query"):
            raise NetworkFailure("classifier down")
        return "Target BP is below 130/80."

    completion = FakeCompletion(text=_respond)
    message = await route_query("What is the target blood pressure for her?", sample_case, completion=completion)

    assert message.text == "Target BP is below 130/80."
    assert "Detected medical specialty for this query: General." in completion.text_calls[-1]["system_prompt"]


async def test_short_query_skips_classifier(sample_case):
    completion = FakeCompletion(text="Latest BP 104/62.")
    message = await route_query("BP?", sample_case, completion=completion)

    assert message.text == "Latest BP 104/62."
    assert len(completion.text_calls) == 1
    assert "Detected medical specialty for this query: General." in completion.text_calls[0]["system_prompt"]


async def test_deep_reasoning_uses_pro_with_thinking_budget(sample_case):
    completion = FakeCompletion(text=_answers("DeepReasoning", "Leading hypothesis: cardiorenal syndrome."))
    message = await route_query("Think through the differential for her dyspnea", sample_case, completion=completion)

    assert message.text == "Leading hypothesis: cardiorenal syndrome."
    answer = completion.text_calls[-1]
    assert answer["model"] == "pro"
    assert answer["thinking_budget"] == settings.deep_reasoning_thinking_budget


async def test_personalization_reaches_system_prompt(sample_case):
    completion = FakeCompletion(text=_answers("Cardiology"))
    prefs = AssistantSettings(tone="formal", verbosity="concise")
    await route_query("Is her heart rate acceptable?", sample_case, prefs=prefs, completion=completion)

    system_prompt = completion.text_calls[-1]["system_prompt"]
    assert "Adopt a formal, clinical tone." in system_prompt
    assert "Keep the response concise and to the point." in system_prompt


async def test_case_without_reports_notes_it(sample_case):
    bare = sample_case.model_copy(update={"reports": []})
    completion = FakeCompletion(text=_answers("Cardiology"))
    await route_query("Is her heart rate acceptable?", bare, completion=completion)
    assert "no uploaded health documents" in completion.text_calls[-1]["system_prompt"]


async def test_empty_reply(sample_case):
    completion = FakeCompletion(text=_answers("Cardiology", "   "))
    message = await route_query("Is her heart rate acceptable?", sample_case, completion=completion)
    assert message.text == EMPTY_REPLY_MESSAGE


async def test_answer_failure_returns_connection_error(sample_case):
    def _respond(prompt):
        if prompt.startswith("Classify this medical query"):
            return "Cardiology"
        raise NetworkFailure("down")

    completion = FakeCompletion(text=_respond)
    message = await route_query("Is her heart rate acceptable?", sample_case, completion=completion)
    assert message.text == CONNECTION_ERROR_MESSAGE
