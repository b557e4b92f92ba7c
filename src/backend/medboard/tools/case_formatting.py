# [Core: Case Formatting]
"""
Case Context → prompt text.

Every prompt in the core describes the patient through one of these helpers,
so the board, debate and router all see the same wording for the same case.
"""
from __future__ import annotations

from typing import List, Sequence

from medboard.config import settings
from medboard.models.schemas import CaseContext, Report

LAB_EXCERPT_CHARS = 200
SPECIALTY_EXCERPT_CHARS = 500
FALLBACK_LAB_EXCERPT_CHARS = 300
MAX_SPECIALTY_REPORTS = 8
MAX_FALLBACK_LABS = 3


def _excerpt(report: Report, limit: int) -> str:
    text = report.text
    if not text:
        return "See attached document"
    return text[:limit]


def _reports_of_type(case: CaseContext, report_type: str, limit: int) -> List[Report]:
    return [r for r in case.reports if r.type.lower() == report_type.lower()][:limit]


def format_case_summary(case: CaseContext) -> str:
    """Patient block shared by board, consensus and debate prompts."""
    history = ", ".join(h.description for h in case.medical_history) or "None recorded"
    meds = ", ".join(case.current_status.medications) or "None"
    labs = "\n".join(
        f"  {r.date}: {_excerpt(r, LAB_EXCERPT_CHARS)}" for r in _reports_of_type(case, "Lab", 3)
    )
    imaging = "\n".join(
        f"  {r.date}: {_excerpt(r, LAB_EXCERPT_CHARS)}" for r in _reports_of_type(case, "Echo", 2)
    )
    lines = [
        f"Patient: {case.name}, {case.age if case.age is not None else '?'} {case.gender.value}",
        f"History: {history}",
        f"Current Meds: {meds}",
        f"Vitals: {case.current_status.vitals or 'Not recorded'}",
        f"Condition: {case.current_status.condition or 'Not specified'}",
    ]
    if case.allergies:
        lines.append(f"Allergies: {', '.join(case.allergies)}")
    lines.append(f"Recent Labs:\n{labs or '  None'}")
    lines.append(f"Recent Imaging:\n{imaging or '  None'}")
    return "\n".join(lines)


def format_router_context(case: CaseContext) -> str:
    """Shorter patient block for conversational answers (last three reports by title only)."""
    age = f"{case.age}y/o" if case.age is not None else "age unknown"
    parts = [
        f"Patient: {case.name}, {age} {case.gender.value}.",
        f"Current Status: {case.current_status.condition or 'Not specified'}.",
    ]
    if case.current_status.vitals:
        parts.append(f"Vitals: {case.current_status.vitals}.")
    if case.current_status.medications:
        parts.append(f"Current Medications: {', '.join(case.current_status.medications)}.")
    if case.medical_history:
        parts.append(f"Medical History: {'; '.join(h.description for h in case.medical_history)}.")
    if case.reports:
        recent = "; ".join(
            f"{r.type} ({r.date}): {r.title or 'Untitled'}" for r in case.reports[-3:]
        )
        parts.append(f"Recent Reports: {recent}.")
    return "\n".join(parts)


def specialty_report_context(case: CaseContext, keywords: Sequence[str]) -> str:
    """
    Reports relevant to one specialty.

    Up to 8 reports whose title, type or text mention any keyword. With no
    match, up to 3 lab reports instead; empty string if there are none.
    """
    lowered = [k.lower() for k in keywords]

    def _matches(report: Report) -> bool:
        haystacks = (report.title.lower(), report.type.lower(), (report.text or "").lower())
        return any(k in h for k in lowered for h in haystacks)

    relevant = [r for r in case.reports if _matches(r)][:MAX_SPECIALTY_REPORTS]
    if not relevant:
        return "\n".join(
            f"[{r.date}] {r.title}: {_excerpt(r, FALLBACK_LAB_EXCERPT_CHARS)}"
            for r in _reports_of_type(case, "Lab", MAX_FALLBACK_LABS)
        )
    return "\n\n".join(
        f"[{r.date}] {r.title} ({r.type}):\n{_excerpt(r, SPECIALTY_EXCERPT_CHARS)}..."
        for r in relevant
    )


def loggable(text: str, limit: int = 80) -> str:
    """Truncated text for log lines, or a length marker in privacy mode."""
    if settings.privacy_mode:
        return f"<{len(text)} chars>"
    return text if len(text) <= limit else text[:limit] + "..."


def loggable_error(error: BaseException) -> str:
    """Exception text for log lines; only the exception type in privacy mode."""
    if settings.privacy_mode:
        return type(error).__name__
    return str(error)
