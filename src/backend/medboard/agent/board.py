# [Core: Board Assembler + Executor]
"""
Board of specialists — panel selection and execution.

Assembly:
  - grand rounds: the full roster in fixed order, truncated to the cap
  - standard: one structured model call proposes a panel; the cap and the
    lead-first ordering are enforced here, never left to the model

Execution:
  - parallel: every slot dispatched at once via asyncio.gather()
  - sequential: one slot at a time with a fixed gap between dispatched calls
    and a progress callback before each slot

Both paths read through the opinion cache. A cache hit skips the call and
the gap for that slot.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Union

from medboard.config import settings
from medboard.errors import SpecialistDispatchFailure
from medboard.models.schemas import CaseContext, PanelSelection, SpecialistOpinion
from medboard.models.specialties import (
    ALL_SPECIALTIES,
    Specialty,
    normalize_specialty,
    taxonomy_prompt_block,
)
from medboard.services.completion import CompletionService
from medboard.services.opinion_cache import OpinionCache
from medboard.tools.case_formatting import format_case_summary, loggable_error
from medboard.tools.specialists import BOARD_TASK, dispatch

logger = logging.getLogger(__name__)

# Callback for sequential progress: (1-based index, total, specialty)
ProgressCallback = Callable[[int, int, str], Union[None, Awaitable[None]]]

UNAVAILABLE_FINDINGS = "Opinion unavailable: this specialist could not be consulted."


# ──────────────────────────────────────────────
# Assembler
# ──────────────────────────────────────────────

ASSEMBLY_PROMPT = """Review the patient data and assemble a high-fidelity Medical Board.
Identify the most relevant medical specialties required for a comprehensive review.

**Available Specialized Agents:**
{taxonomy}
- Pharmacy (medication safety, dosing, interactions)
- Nutrition (medical nutrition therapy)
(You may also request others if strictly necessary, e.g. 'Surgery'.)

**Rules:**
1. Always include '{lead}' as the lead.
2. Select specialists based on specific comorbidities (e.g. CKD -> Nephrology, Diabetes -> Endocrinology).
3. Select ONLY the most essential specialists (maximum {max_specialties}). Focus on quality over quantity.
4. Prioritize specialists whose expertise is directly relevant to this patient's condition.
5. If the case is complex/undefined, include 'Internal Medicine' or 'DeepReasoning'.

**Patient Context:**
{case_summary}

Return a JSON object with a single property 'specialties' (maximum {max_specialties} items)."""


def _dedupe(labels: List[str]) -> List[str]:
    seen = set()
    out = []
    for label in labels:
        label = label.strip()
        key = label.lower()
        if label and key not in seen:
            seen.add(key)
            out.append(label)
    return out


def _find_lead(panel: List[str], lead: str) -> Optional[str]:
    """The lead label in the panel: an exact match wins over an alias."""
    for label in panel:
        if label.lower() == lead.lower():
            return label
    lead_specialty = normalize_specialty(lead)
    if lead_specialty is None:
        return None
    for label in panel:
        if normalize_specialty(label) == lead_specialty:
            return label
    return None


def enforce_panel(labels: List[str], max_specialties: int, lead: Optional[str] = None) -> List[str]:
    """Dedupe, move the lead to the front if present, and cap the panel."""
    lead = lead or settings.lead_specialty
    panel = _dedupe(labels)
    found = _find_lead(panel, lead)
    if found is not None:
        panel = [found] + [label for label in panel if label != found]
    return panel[:max_specialties]


async def assemble_board(
    case: CaseContext,
    grand_rounds: bool = False,
    max_specialties: Optional[int] = None,
    completion: Optional[CompletionService] = None,
) -> List[str]:
    """
    Select the specialty panel for a case.

    Returns specialty labels, lead first when present. Never raises: on a
    failed model call the panel falls back to lead + Internal Medicine.
    """
    max_specialties = max(1, max_specialties or settings.board_max_specialties)

    if grand_rounds:
        return [s.value for s in ALL_SPECIALTIES[:max_specialties]]

    completion = completion or CompletionService()
    prompt = ASSEMBLY_PROMPT.format(
        taxonomy=taxonomy_prompt_block(include_reserved=False),
        lead=settings.lead_specialty,
        max_specialties=max_specialties,
        case_summary=format_case_summary(case),
    )
    try:
        selection = await completion.generate_structured(
            prompt, PanelSelection, model="flash", temperature=0.2
        )
        labels = selection.specialties
    except Exception as e:
        logger.warning(f"Board assembly failed, using default panel: {loggable_error(e)}")
        labels = []

    if not labels:
        labels = [settings.lead_specialty, Specialty.INTERNAL_MEDICINE.value]

    panel = enforce_panel(labels, max_specialties)
    logger.info("Board panel (%d): %s", len(panel), ", ".join(panel))
    return panel


# ──────────────────────────────────────────────
# Executor
# ──────────────────────────────────────────────

def _placeholder(label: str) -> SpecialistOpinion:
    return SpecialistOpinion(
        specialty=label,
        focus="Consult unavailable",
        findings=UNAVAILABLE_FINDINGS,
        recommendations=[],
    )


async def _notify(on_progress: Optional[ProgressCallback], index: int, total: int, label: str) -> None:
    if on_progress is None:
        return
    result = on_progress(index, total, label)
    if asyncio.iscoroutine(result):
        await result


async def consult_specialist(
    label: str,
    case: CaseContext,
    cache: Optional[OpinionCache] = None,
    completion: Optional[CompletionService] = None,
    task: str = BOARD_TASK,
) -> SpecialistOpinion:
    """
    One board slot: cache read, dispatch on miss, write-through on success.

    Dispatch failures become a placeholder opinion that is not cached.
    """
    completion = completion or CompletionService()

    async def _compute() -> SpecialistOpinion:
        return await dispatch(label, case, task, completion)

    try:
        if cache is None:
            return await _compute()
        opinion, _hit = await cache.get_or_compute(case, label, _compute)
        return opinion
    except SpecialistDispatchFailure as e:
        logger.error(f"Board slot lost for {label}: {loggable_error(e)}")
        return _placeholder(label)


async def run_all(
    specialties: List[str],
    case: CaseContext,
    cache: Optional[OpinionCache] = None,
    completion: Optional[CompletionService] = None,
) -> List[SpecialistOpinion]:
    """Dispatch every slot concurrently; results come back in panel order."""
    completion = completion or CompletionService()
    t0 = time.monotonic()
    results = await asyncio.gather(
        *[consult_specialist(s, case, cache, completion) for s in specialties],
        return_exceptions=True,
    )

    opinions: List[SpecialistOpinion] = []
    for label, result in zip(specialties, results):
        if isinstance(result, Exception):
            logger.error(f"Specialist {label} failed: {loggable_error(result)}")
            opinions.append(_placeholder(label))
        else:
            opinions.append(result)

    logger.info(
        "Parallel board: %d opinions in %dms",
        len(opinions), int((time.monotonic() - t0) * 1000),
    )
    return opinions


async def run_sequential(
    specialties: List[str],
    case: CaseContext,
    on_progress: Optional[ProgressCallback] = None,
    cache: Optional[OpinionCache] = None,
    completion: Optional[CompletionService] = None,
    gap_ms: Optional[int] = None,
) -> List[SpecialistOpinion]:
    """
    Dispatch slots one at a time, in panel order.

    on_progress(index, total, specialty) fires before every slot, hits
    included. A fixed gap separates consecutive dispatched calls; cache hits
    neither wait nor count as a call.
    """
    completion = completion or CompletionService()
    gap = (settings.sequential_gap_ms if gap_ms is None else gap_ms) / 1000.0
    total = len(specialties)
    opinions: List[SpecialistOpinion] = []
    dispatched = 0

    for index, label in enumerate(specialties, start=1):
        await _notify(on_progress, index, total, label)

        cached = cache.get(case, label) if cache is not None else None
        if cached is not None:
            logger.info("[%d/%d] %s: cache hit", index, total, label)
            opinions.append(cached)
            continue

        if dispatched and gap > 0:
            await asyncio.sleep(gap)
        dispatched += 1

        try:
            opinions.append(await consult_specialist(label, case, cache, completion))
        except Exception as e:
            logger.error(f"Specialist {label} failed: {loggable_error(e)}")
            opinions.append(_placeholder(label))
        logger.info("[%d/%d] %s: done", index, total, label)

    return opinions
