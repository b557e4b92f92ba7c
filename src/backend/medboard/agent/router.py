# [Core: Agent Router]
"""
Agent Router — the single entry point for a free-text clinician query.

Routing order:
  1. No credential            → fixed instructional reply, no network call
  2. Report lookup pattern    → report viewer (lexical match, model fallback)
  3. Debate trigger           → single-shot debate message
  4. Board trigger            → board review (grand rounds on the full-roster keyword)
  5. Report analysis pattern  → text analysis of the matched report
  6. Domain classification    → context-aware answer for that specialty

`route_query` always returns a message; nothing raises past it.
"""
from __future__ import annotations

import logging
from typing import Optional

from medboard.agent.classifier import (
    QueryIntent,
    classify_domain,
    detect_intent,
    match_report,
    wants_grand_rounds,
)
from medboard.agent.debate import start_clinical_debate
from medboard.agent.orchestrator import run_board_review, to_message
from medboard.config import settings
from medboard.models.schemas import (
    AssistantSettings,
    BoardReviewOptions,
    CaseContext,
    Message,
    Report,
    ReportViewerMessage,
    TextMessage,
    Tone,
    Verbosity,
)
from medboard.models.specialties import ALL_SPECIALTIES, Specialty
from medboard.services.completion import CompletionService
from medboard.services.opinion_cache import OpinionCache
from medboard.tools.case_formatting import format_router_context, loggable, loggable_error

logger = logging.getLogger(__name__)

CREDENTIALS_MESSAGE = "Please provide your Gemini API Key in the settings to use the AI features."
CONNECTION_ERROR_MESSAGE = (
    "I'm having trouble connecting to the AI. Please check your API key and connection."
)
NO_REPORT_MESSAGE = "No matching report found."
EMPTY_REPLY_MESSAGE = "No response generated."

REPORT_ANALYSIS_CHARS = 6000

_TONE_INSTRUCTIONS = {
    Tone.FORMAL: "Adopt a formal, clinical tone.",
    Tone.COLLABORATIVE: "Adopt a collaborative, conversational tone.",
}
_VERBOSITY_INSTRUCTIONS = {
    Verbosity.CONCISE: "Keep the response concise and to the point.",
    Verbosity.DETAILED: "Provide a detailed, comprehensive response.",
}


def personalization_instructions(prefs: AssistantSettings) -> str:
    parts = [_TONE_INSTRUCTIONS.get(prefs.tone), _VERBOSITY_INSTRUCTIONS.get(prefs.verbosity)]
    return " ".join(p for p in parts if p)


ASSISTANT_SYSTEM = """You are a knowledgeable, empathetic medical health assistant. Your role is to help clinicians understand the patient's situation, answer medical questions, and provide evidence-based information.

**Guidelines:**
- Provide accurate, helpful medical information based on current clinical knowledge.
- When the patient has health records available, reference their specific data in your answers.
- When NO health records are available, answer from general medical knowledge and the basic profile.
- Always recommend confirming diagnosis and treatment decisions with the treating team.
- Be clear about the limitations of AI-based medical advice.
- Detected medical specialty for this query: {specialty}.
{personalization}

**Patient Context:**
{patient_context}
{no_reports_note}"""

NO_REPORTS_NOTE = (
    "\nNote: This patient has no uploaded health documents yet. "
    "Answer based on general medical knowledge and the basic profile above.\n"
)

DEEP_REASONING_PROMPT = """You are a specialized diagnostic engine. Use deep reasoning to analyze this complex case.

{patient_context}

User Query: "{query}"

Provide a comprehensive, evidence-based analysis: the leading hypotheses, what supports and
argues against each, and the single most informative next step."""

REPORT_ANALYSIS_PROMPT = """You are reviewing one of this patient's reports for the treating clinician.
{personalization}

**Patient Context:**
{patient_context}

**Report:** {title} ({type}, {date})
{content}

**Question:** "{query}"

Answer the question from the report's content. Call out abnormal values and their clinical significance."""


async def route_query(
    query: str,
    case: CaseContext,
    prefs: Optional[AssistantSettings] = None,
    cache: Optional[OpinionCache] = None,
    completion: Optional[CompletionService] = None,
) -> Message:
    """Answer one query. Always returns a message."""
    prefs = prefs or AssistantSettings()
    completion = completion or CompletionService(api_key=prefs.api_key)

    if not completion.has_credential:
        logger.info("Query rejected: no completion credential configured")
        return TextMessage(text=CREDENTIALS_MESSAGE)

    try:
        return await _route(query, case, prefs, cache, completion)
    except Exception as e:
        logger.error(f"Routing failed for query {loggable(query)!r}: {loggable_error(e)}")
        return TextMessage(text=CONNECTION_ERROR_MESSAGE)


async def _route(
    query: str,
    case: CaseContext,
    prefs: AssistantSettings,
    cache: Optional[OpinionCache],
    completion: CompletionService,
) -> Message:
    intent = detect_intent(query)
    logger.info("Routing query %r: intent=%s", loggable(query), intent.value)

    # ── Direct report lookup ──
    if intent == QueryIntent.REPORT_LOOKUP and case.reports:
        try:
            report = await match_report(query, case, completion)
        except Exception as e:
            logger.warning(f"Report lookup failed, falling through to general answer: {loggable_error(e)}")
        else:
            if report is None:
                return TextMessage(text=NO_REPORT_MESSAGE)
            return ReportViewerMessage(title=f"Found: **{report.title}**", report_id=report.id)

    # ── Debate ──
    if intent == QueryIntent.DEBATE:
        return await start_clinical_debate(case, completion)

    # ── Board ──
    if intent == QueryIntent.BOARD_REVIEW:
        grand_rounds = wants_grand_rounds(query)
        options = BoardReviewOptions(
            grand_rounds=grand_rounds,
            max_specialties=len(ALL_SPECIALTIES) if grand_rounds else settings.board_max_specialties,
        )
        review = await run_board_review(case, options, cache=cache, completion=completion)
        return to_message(review)

    # ── Report analysis ──
    if intent == QueryIntent.REPORT_ANALYSIS and case.reports:
        try:
            report = await match_report(query, case, completion)
        except Exception as e:
            logger.warning(f"Report matching failed, falling through to general answer: {loggable_error(e)}")
            report = None
        if report is not None and report.text:
            return await _analyze_report(query, case, report, prefs, completion)

    # ── Domain answer ──
    specialty = await classify_domain(query, completion)
    return await _answer(query, case, specialty, prefs, completion)


async def _analyze_report(
    query: str,
    case: CaseContext,
    report: Report,
    prefs: AssistantSettings,
    completion: CompletionService,
) -> TextMessage:
    prompt = REPORT_ANALYSIS_PROMPT.format(
        personalization=personalization_instructions(prefs),
        patient_context=format_router_context(case),
        title=report.title or "Untitled",
        type=report.type,
        date=report.date or "undated",
        content=(report.text or "")[:REPORT_ANALYSIS_CHARS],
        query=query,
    )
    text = await completion.generate(prompt, model="flash")
    return TextMessage(text=text.strip() or EMPTY_REPLY_MESSAGE)


async def _answer(
    query: str,
    case: CaseContext,
    specialty: Specialty,
    prefs: AssistantSettings,
    completion: CompletionService,
) -> TextMessage:
    patient_context = format_router_context(case)

    if specialty == Specialty.DEEP_REASONING:
        text = await completion.generate(
            DEEP_REASONING_PROMPT.format(patient_context=patient_context, query=query),
            model="pro",
            thinking_budget=settings.deep_reasoning_thinking_budget,
        )
        return TextMessage(text=text.strip() or EMPTY_REPLY_MESSAGE)

    system_prompt = ASSISTANT_SYSTEM.format(
        specialty=specialty.value,
        personalization=personalization_instructions(prefs),
        patient_context=patient_context,
        no_reports_note="" if case.reports else NO_REPORTS_NOTE,
    )
    text = await completion.generate(
        f"User Question: {query}",
        system_prompt=system_prompt,
        model="flash",
    )
    return TextMessage(text=text.strip() or EMPTY_REPLY_MESSAGE)
