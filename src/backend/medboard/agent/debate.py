# [Core: Debate Engine]
"""
Debate Engine — turn-based grand-rounds discussion.

States:
  Uninitialized → Initialized(topic, participants) → (TurnGenerated)* → ConsensusReached

`initialize_debate` and `run_next_debate_turn` are stateless: the caller
passes the roster and transcript back in on every turn. `DebateSession`
plus `advance_session` is the stateful driver used by the websocket route;
it also enforces a hard turn ceiling.

Rules held in code rather than in the prompt:
  - the roster is capped and carries exactly one moderator
  - the next speaker always comes from the fixed roster
  - consensus always comes with a non-empty statement
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import List, Optional

from medboard.config import settings
from medboard.errors import DebateClosed
from medboard.models.schemas import (
    CaseContext,
    ClinicalDebateMessage,
    DebateInit,
    DebateParticipant,
    DebateSession,
    DebateTurn,
    DebateTurnDraft,
    DebateTurnResult,
)
from medboard.models.specialties import ALL_SPECIALTIES, Specialty, normalize_specialty
from medboard.services.completion import CompletionService
from medboard.tools.case_formatting import format_case_summary, loggable_error

logger = logging.getLogger(__name__)

MODERATOR_ROLE = "Moderator"
PLACEHOLDER_TURN = DebateTurn(speaker="System", role=MODERATOR_ROLE, text="Initializing debate...")
FALLBACK_TURN_TEXT = (
    "Let's keep the discussion moving. Could the next specialist give their view on the plan?"
)


INIT_PROMPT = """You are a Medical Simulation Director organizing a Grand Rounds debate.

**Patient Context:**
{case_summary}

**Task:**
1. Identify the most controversial, complex, or high-stakes clinical dilemma for this patient.
2. Assemble a multidisciplinary board of specialists to debate this.
   - Choose from the following roles if relevant: {roster}.
   - Select exactly {max_participants} participants (including 1 Moderator) for focused discussion.
   - Always include a "Moderator" (Chief of Medicine) to guide the discussion.
   - Prioritize specialties most relevant to the clinical dilemma.

Return the topic and the participants (role, name, specialty)."""

TURN_PROMPT = """You are simulating a live medical round table debate.
**Topic:** {topic}
**Participants:** {participants}

**Patient Data:**
{case_summary}

**Current Transcript:**
{transcript}

**Task:**
1. Determine who should speak next to advance the discussion effectively.
   - Choose ONLY from the participants listed above, using their exact name.
   - **Ensure broad participation:** do not let the debate be dominated by just two people.
   - Participants should debate vigorously but professionally, citing guidelines and patient data.
   - If a specialty (e.g. Nephrology) hasn't spoken but the topic touches their domain
     (e.g. fluids/contrast), they MUST interject now.
2. Generate their response text. Keep it concise (2-3 sentences) and impactful.
3. Evaluate if **Full Consensus** has been reached.
   - Consensus means all relevant specialists have voiced their opinion and agreed on a final unified plan.
   - If YES: set consensus_reached = true and give a detailed consensus_statement.
   - If NO: set consensus_reached = false and consensus_statement = null."""


# ──────────────────────────────────────────────
# Roster
# ──────────────────────────────────────────────

def is_moderator(participant: DebateParticipant) -> bool:
    text = f"{participant.role} {participant.specialty}".lower()
    return "moderator" in text or "chief of medicine" in text


def default_moderator() -> DebateParticipant:
    return DebateParticipant(role=MODERATOR_ROLE, name="Dr. Chief", specialty="Chief of Medicine")


def enforce_roster(participants: List[DebateParticipant], max_participants: int) -> List[DebateParticipant]:
    """Exactly one moderator (first), unique names, at most max_participants."""
    max_participants = max(2, max_participants)
    moderators = [p for p in participants if is_moderator(p)]
    moderator = moderators[0] if moderators else default_moderator()

    roster = [moderator]
    names = {moderator.name.lower()}
    for p in participants:
        if is_moderator(p) or p.name.lower() in names:
            continue
        roster.append(p)
        names.add(p.name.lower())
    return roster[:max_participants]


def fallback_init(case: CaseContext, max_participants: int) -> DebateInit:
    condition = case.current_status.condition or "the current presentation"
    lead = settings.lead_specialty
    participants = [
        default_moderator(),
        DebateParticipant(role=f"{lead} Attending", name=f"Dr. {lead}", specialty=lead),
        DebateParticipant(
            role="Internist",
            name="Dr. Internal Medicine",
            specialty=Specialty.INTERNAL_MEDICINE.value,
        ),
    ]
    return DebateInit(
        topic=f"Optimal management of {condition}",
        participants=enforce_roster(participants, max_participants),
    )


async def initialize_debate(
    case: CaseContext,
    max_participants: Optional[int] = None,
    completion: Optional[CompletionService] = None,
) -> DebateInit:
    """Pick the dilemma and the roster. Never raises; degrades to a minimal roster."""
    max_participants = max(2, max_participants or settings.debate_max_participants)
    completion = completion or CompletionService()
    prompt = INIT_PROMPT.format(
        case_summary=format_case_summary(case),
        roster=", ".join(s.value for s in ALL_SPECIALTIES),
        max_participants=max_participants,
    )
    try:
        init = await completion.generate_structured(
            prompt, DebateInit, model="pro", temperature=0.4
        )
    except Exception as e:
        logger.warning(f"Debate initialization failed, using default roster: {loggable_error(e)}")
        return fallback_init(case, max_participants)

    if not init.topic.strip():
        return fallback_init(case, max_participants)
    roster = enforce_roster(init.participants, max_participants)
    logger.info("Debate initialized: %d participants", len(roster))
    return DebateInit(topic=init.topic.strip(), participants=roster)


# ──────────────────────────────────────────────
# Turns
# ──────────────────────────────────────────────

def format_transcript(transcript: List[DebateTurn]) -> str:
    if not transcript:
        return "(no turns yet; the Moderator should open the discussion)"
    return "\n".join(f"{t.speaker} ({t.role}): {t.text}" for t in transcript)


def least_heard(participants: List[DebateParticipant], transcript: List[DebateTurn]) -> DebateParticipant:
    """Participant with the fewest turns so far, avoiding an immediate repeat; roster order breaks ties."""
    counts = Counter(t.speaker.lower() for t in transcript)
    last = transcript[-1].speaker.lower() if transcript else None
    candidates = [p for p in participants if p.name.lower() != last] or participants
    return min(candidates, key=lambda p: counts[p.name.lower()])


def resolve_speaker(
    name: str,
    role: str,
    participants: List[DebateParticipant],
    transcript: List[DebateTurn],
) -> DebateParticipant:
    """Map the model's chosen speaker onto the fixed roster."""
    wanted = name.strip().lower()
    if wanted:
        for p in participants:
            if p.name.lower() == wanted:
                return p
        for p in participants:
            if wanted in p.name.lower() or p.name.lower() in wanted:
                return p

    wanted_role = role.strip().lower()
    if wanted_role:
        for p in participants:
            if wanted_role in (p.role.lower(), p.specialty.lower()):
                return p
        wanted_specialty = normalize_specialty(wanted_role)
        if wanted_specialty is not None:
            for p in participants:
                if normalize_specialty(p.specialty) == wanted_specialty:
                    return p

    chosen = least_heard(participants, transcript)
    logger.warning("Debate speaker %r not on roster, using %s", name, chosen.name)
    return chosen


def fallback_turn(participants: List[DebateParticipant]) -> DebateTurnResult:
    moderator = next((p for p in participants if is_moderator(p)), None) or default_moderator()
    return DebateTurnResult(
        next_turn=DebateTurn(speaker=moderator.name, role=moderator.role, text=FALLBACK_TURN_TEXT),
        consensus_reached=False,
        consensus_statement=None,
    )


async def run_next_debate_turn(
    case: CaseContext,
    transcript: List[DebateTurn],
    participants: List[DebateParticipant],
    topic: str,
    completion: Optional[CompletionService] = None,
) -> DebateTurnResult:
    """
    Generate the next turn. Never raises.

    The speaker is forced onto the roster, and consensus without a
    statement takes the turn's own text as the statement.
    """
    if not participants:
        return fallback_turn(participants)

    completion = completion or CompletionService()
    prompt = TURN_PROMPT.format(
        topic=topic,
        participants=", ".join(f"{p.name} ({p.specialty or p.role})" for p in participants),
        case_summary=format_case_summary(case),
        transcript=format_transcript(transcript),
    )
    try:
        draft = await completion.generate_structured(
            prompt, DebateTurnDraft, model="flash", temperature=0.7
        )
    except Exception as e:
        logger.warning(f"Debate turn generation failed: {loggable_error(e)}")
        return fallback_turn(participants)

    speaker = resolve_speaker(draft.next_speaker_name, draft.next_speaker_role, participants, transcript)
    text = draft.response_text.strip()
    if not text:
        return fallback_turn(participants)
    turn = DebateTurn(speaker=speaker.name, role=speaker.role, text=text)

    statement = None
    if draft.consensus_reached:
        statement = (draft.consensus_statement or "").strip() or text
        logger.info("Debate consensus reached after %d turns", len(transcript) + 1)

    return DebateTurnResult(
        next_turn=turn,
        consensus_reached=draft.consensus_reached,
        consensus_statement=statement,
    )


# ──────────────────────────────────────────────
# Session driver
# ──────────────────────────────────────────────

async def start_session(
    case: CaseContext,
    max_participants: Optional[int] = None,
    max_turns: Optional[int] = None,
    completion: Optional[CompletionService] = None,
) -> DebateSession:
    init = await initialize_debate(case, max_participants, completion)
    session = DebateSession(topic=init.topic, participants=init.participants)
    if max_turns:
        session.max_turns = max(1, max_turns)
    return session


async def advance_session(
    session: DebateSession,
    case: CaseContext,
    completion: Optional[CompletionService] = None,
) -> DebateTurnResult:
    """
    Append one turn to a live session.

    Consensus ends the session with its statement; hitting max_turns ends
    it without one. Raises DebateClosed once the session is not live.
    """
    if not session.is_live:
        raise DebateClosed("Debate session has ended")

    result = await run_next_debate_turn(
        case, session.transcript, session.participants, session.topic, completion
    )
    session.transcript.append(result.next_turn)

    if result.consensus_reached:
        session.consensus_statement = result.consensus_statement
        session.is_live = False
    elif len(session.transcript) >= session.max_turns:
        logger.warning("Debate stopped at the %d-turn ceiling without consensus", session.max_turns)
        session.is_live = False
    return result


def debate_title(case: CaseContext) -> str:
    return f"Grand Rounds Debate: {case.name}"


async def start_clinical_debate(
    case: CaseContext,
    completion: Optional[CompletionService] = None,
) -> ClinicalDebateMessage:
    """Single-shot variant: initialize only and seed the placeholder turn."""
    init = await initialize_debate(case, completion=completion)
    return ClinicalDebateMessage(
        title=debate_title(case),
        topic=init.topic,
        participants=init.participants,
        transcript=[PLACEHOLDER_TURN.model_copy()],
        consensus=None,
        is_live=True,
    )
