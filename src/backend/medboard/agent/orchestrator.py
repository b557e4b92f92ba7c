# [Core: Board Orchestrator]
"""
Board review pipeline.

  1. Assemble the panel (grand rounds or model-selected)
  2. Execute the panel (parallel, or sequential with progress callbacks)
  3. Synthesize the CMO consensus

Each stage degrades on its own, so a board review always comes back with a
title, one opinion per panel slot and a consolidated report.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from medboard.agent.board import ProgressCallback, assemble_board, run_all, run_sequential
from medboard.agent.consensus import synthesize
from medboard.models.schemas import (
    BoardReview,
    BoardReviewMessage,
    BoardReviewOptions,
    CaseContext,
)
from medboard.services.completion import CompletionService
from medboard.services.opinion_cache import OpinionCache

logger = logging.getLogger(__name__)


def board_title(case: CaseContext) -> str:
    return f"Medical Board Review: {case.name}"


async def run_board_review(
    case: CaseContext,
    options: Optional[BoardReviewOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
    cache: Optional[OpinionCache] = None,
    completion: Optional[CompletionService] = None,
) -> BoardReview:
    """
    Run a full board review.

    Execution is sequential when options.sequential is True, or when it is
    left unset and a progress callback is supplied; otherwise parallel.
    """
    options = options or BoardReviewOptions()
    completion = completion or CompletionService()
    sequential = options.sequential if options.sequential is not None else on_progress is not None
    t0 = time.monotonic()

    panel = await assemble_board(
        case,
        grand_rounds=options.grand_rounds,
        max_specialties=options.max_specialties,
        completion=completion,
    )

    if sequential:
        opinions = await run_sequential(panel, case, on_progress, cache, completion)
    else:
        opinions = await run_all(panel, case, cache, completion)

    consolidated = await synthesize(case, opinions, completion)

    logger.info(
        "Board review complete: %d specialists, %s, %dms",
        len(opinions),
        "sequential" if sequential else "parallel",
        int((time.monotonic() - t0) * 1000),
    )
    return BoardReview(
        title=board_title(case),
        specialist_opinions=opinions,
        consolidated=consolidated,
    )


def to_message(review: BoardReview) -> BoardReviewMessage:
    return BoardReviewMessage(
        title=review.title,
        specialist_reports=review.specialist_opinions,
        consolidated_report=review.consolidated,
    )
