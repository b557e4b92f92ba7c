# [Core: Consensus Synthesizer]
"""
Chief Medical Officer synthesis across the board's specialist opinions.

The CMO is told to surface cross-specialty trade-offs explicitly (a fluid
restriction from one service against diuresis from another, say) instead of
quietly picking a side.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from medboard.models.schemas import CaseContext, ConsolidatedReport, SpecialistOpinion
from medboard.services.completion import CompletionService
from medboard.tools.case_formatting import format_case_summary, loggable_error

logger = logging.getLogger(__name__)

CMO_SYSTEM = """You are the Chief Medical Officer (CMO) chairing a multidisciplinary medical board.
You receive the written opinions of several domain specialists on one patient.

Your role:
1. SUMMARIZE — an executive summary of the patient's situation across all specialties.
2. SURFACE CONFLICTS — any place where one specialist's recommendation would violate
   another's restriction or goal. State each trade-off explicitly and name the specialties.
   Do not silently resolve them.
3. UNIFY — a single prioritized plan that states how each conflict is handled."""

CMO_PROMPT = """
PATIENT CONTEXT:
{case_summary}

══════ SPECIALIST REPORTS ══════
{specialist_reports}

══════ TASK ══════
1. Create an Executive Summary.
2. Identify strategic conflicts or trade-offs between specialists
   (e.g. Nephrology limiting fluids while Cardiology requests diuresis).
3. Develop a Final Unified Plan."""


def format_specialist_reports(opinions: List[SpecialistOpinion]) -> str:
    return "\n\n".join(
        f"[{o.specialty}] {o.focus}\n"
        f"Findings: {o.findings}\n"
        f"Recs: {'; '.join(o.recommendations) or 'None'}"
        for o in opinions
    )


def fallback_report(opinions: List[SpecialistOpinion]) -> ConsolidatedReport:
    return ConsolidatedReport(
        summary=(
            "I'm sorry, the board's consolidated report could not be generated. "
            f"{len(opinions)} individual specialist opinions are shown above."
        ),
        conflicts="Not assessed.",
        final_plan="Review the individual specialist recommendations.",
    )


async def synthesize(
    case: CaseContext,
    opinions: List[SpecialistOpinion],
    completion: Optional[CompletionService] = None,
) -> ConsolidatedReport:
    """One structured pro-model call. Never raises; degrades to an apologetic report."""
    completion = completion or CompletionService()
    prompt = CMO_PROMPT.format(
        case_summary=format_case_summary(case),
        specialist_reports=format_specialist_reports(opinions),
    )
    try:
        report = await completion.generate_structured(
            prompt=prompt,
            response_model=ConsolidatedReport,
            system_prompt=CMO_SYSTEM,
            model="pro",
            temperature=0.3,
        )
    except Exception as e:
        logger.error(f"Consensus synthesis failed: {loggable_error(e)}")
        return fallback_report(opinions)

    logger.info("Consensus synthesized from %d opinions", len(opinions))
    return report
