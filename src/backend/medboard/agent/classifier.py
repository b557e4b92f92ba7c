# [Core: Query Classifier]
"""
Query classifier — maps free text to an intent and, if needed, a specialty.

Deterministic regex pre-filters run first so that report lookups and board
requests never cost a model call. Only the remaining queries are sent to the
low-latency model for domain classification, and any failure there lands in
the "General" bucket.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import List, Optional, Sequence

from medboard.config import settings
from medboard.errors import ClassificationFailure
from medboard.models.schemas import CaseContext, Report, ReportMatch
from medboard.models.specialties import Specialty, normalize_specialty, taxonomy_prompt_block
from medboard.services.completion import CompletionService
from medboard.tools.case_formatting import loggable, loggable_error

logger = logging.getLogger(__name__)


class QueryIntent(str, Enum):
    REPORT_LOOKUP = "report_lookup"
    DEBATE = "debate"
    BOARD_REVIEW = "board_review"
    REPORT_ANALYSIS = "report_analysis"
    SPECIALTY = "specialty"


_REPORT_NOUNS = (
    r"report|ecg|ekg|echo|lab|labs|x-ray|xray|angiogram|interrogation|log|cath|device|"
    r"imaging|meds|medication|pathology|mri|ct|scan|biopsy|result|results"
)

# show/view/find + report noun → open the report, no reasoning
LOOKUP_PATTERN = re.compile(
    rf"\b(show|view|display|pull up|open|find|get)\b.*\b({_REPORT_NOUNS})\b", re.IGNORECASE
)

# analyze/summarize/explain + report noun → reason over one report's content
ANALYSIS_PATTERN = re.compile(
    rf"\b(analy[sz]e|summari[sz]e|explain|interpret|review|what does)\b.*\b({_REPORT_NOUNS})\b",
    re.IGNORECASE,
)

DEBATE_PATTERN = re.compile(r"\bdebates?\b|\bround\s*table\b", re.IGNORECASE)

# Full-roster trigger (checked before the plain board triggers)
GRAND_ROUNDS_PATTERN = re.compile(
    r"\bgrand\s+rounds\b|\bfull\s+board\b|\ball\s+(the\s+)?specialists\b", re.IGNORECASE
)

BOARD_PATTERN = re.compile(
    r"\b(board|panel|consult|consults|consultation|multidisciplinary|tumou?r\s+board|"
    r"specialist\s+review|case\s+review|second\s+opinions?)\b",
    re.IGNORECASE,
)

# Tokens too generic to count toward a title match
_STOPWORDS = {
    "the", "and", "for", "with", "from", "this", "that", "what", "does", "show", "view",
    "find", "get", "open", "pull", "display", "report", "reports", "result", "results",
    "analyze", "analyse", "summarize", "summarise", "explain", "interpret", "review",
    "please", "can", "you", "his", "her", "their", "patient", "latest", "last", "recent", "me",
}

_TYPE_ALIASES = {"ekg": "ecg", "xray": "x-ray", "labs": "lab"}


def detect_intent(query: str) -> QueryIntent:
    """Heuristic intent, no model call. Lookup, then debate, then board, then analysis."""
    if LOOKUP_PATTERN.search(query):
        return QueryIntent.REPORT_LOOKUP
    if DEBATE_PATTERN.search(query):
        return QueryIntent.DEBATE
    if GRAND_ROUNDS_PATTERN.search(query) or BOARD_PATTERN.search(query):
        return QueryIntent.BOARD_REVIEW
    if ANALYSIS_PATTERN.search(query):
        return QueryIntent.REPORT_ANALYSIS
    return QueryIntent.SPECIALTY


def wants_grand_rounds(query: str) -> bool:
    return bool(GRAND_ROUNDS_PATTERN.search(query))


# ──────────────────────────────────────────────
# Domain classification
# ──────────────────────────────────────────────

CLASSIFIER_PROMPT = """Classify this medical query into a Domain/Specialty.
Query: "{query}"

Options:
{options}

Return ONLY the Option Name."""


async def classify_domain(query: str, completion: CompletionService) -> Specialty:
    """
    Map a query onto the specialty taxonomy. Never raises.

    Queries shorter than the configured minimum go straight to General.
    """
    if len(query.strip()) < settings.classifier_min_query_length:
        return Specialty.GENERAL
    try:
        specialty = await _classify_with_model(query, completion)
    except Exception as e:
        logger.warning(f"Classifier failed, defaulting to General: {loggable_error(e)}")
        return Specialty.GENERAL
    logger.info("Classified query %r as %s", loggable(query), specialty.value)
    return specialty


async def _classify_with_model(query: str, completion: CompletionService) -> Specialty:
    raw = await completion.generate(
        CLASSIFIER_PROMPT.format(query=query, options=taxonomy_prompt_block()),
        model="lite",
        max_tokens=20,
        temperature=0.0,
    )
    label = raw.strip().strip("-*`'\".").strip()
    specialty = normalize_specialty(label)
    if specialty is None:
        raise ClassificationFailure(f"Unrecognized specialty label: {label[:40]!r}")
    return specialty


# ──────────────────────────────────────────────
# Report matching
# ──────────────────────────────────────────────

def _tokens(text: str) -> List[str]:
    words = re.findall(r"[a-z0-9][a-z0-9\-]*", text.lower())
    return [_TYPE_ALIASES.get(w, w) for w in words]


def _most_recent(reports: Sequence[Report]) -> Report:
    return max(reports, key=lambda r: r.date)


def find_report_lexically(query: str, reports: Sequence[Report]) -> Optional[Report]:
    """
    Cheap report match: title substring, then report type, then word overlap
    with the title. Ties go to the most recent report.
    """
    if not reports:
        return None
    q = query.lower()

    by_title = [r for r in reports if len(r.title) >= 3 and r.title.lower() in q]
    if by_title:
        return _most_recent(by_title)

    query_tokens = set(_tokens(query))
    by_type = [r for r in reports if _TYPE_ALIASES.get(r.type.lower(), r.type.lower()) in query_tokens]
    if by_type:
        return _most_recent(by_type)

    meaningful = {t for t in query_tokens if len(t) >= 3 and t not in _STOPWORDS}
    if not meaningful:
        return None
    scored = [(len(meaningful & set(_tokens(r.title))), r) for r in reports]
    best = max(score for score, _ in scored)
    if best == 0:
        return None
    return _most_recent([r for score, r in scored if score == best])


REPORT_MATCH_PROMPT = """Which of this patient's reports is the user asking about?

User query: "{query}"

Reports (id | type | date | title):
{listing}

Return the id of the single best match, or null if none of them fit."""


async def match_report(
    query: str,
    case: CaseContext,
    completion: CompletionService,
) -> Optional[Report]:
    """Lexical match first, then one structured model call. Returns None if nothing fits."""
    report = find_report_lexically(query, case.reports)
    if report is not None or not case.reports:
        return report

    listing = "\n".join(f"{r.id} | {r.type} | {r.date} | {r.title or 'Untitled'}" for r in case.reports)
    match = await completion.generate_structured(
        REPORT_MATCH_PROMPT.format(query=query, listing=listing),
        ReportMatch,
        model="lite",
        temperature=0.0,
    )
    if not match.report_id:
        return None
    return next((r for r in case.reports if r.id == match.report_id), None)
