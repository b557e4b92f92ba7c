"""
REST API over the board core: query routing, board reviews, debate turns
and the opinion cache.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from medboard.agent.debate import initialize_debate, run_next_debate_turn
from medboard.agent.orchestrator import run_board_review
from medboard.agent.router import route_query
from medboard.models.schemas import (
    BoardReview,
    BoardReviewRequest,
    CacheStats,
    CaseContext,
    DebateInit,
    DebateInitRequest,
    DebateTurnRequest,
    DebateTurnResult,
    Message,
    QueryRequest,
)
from medboard.services.opinion_cache import OpinionCache

logger = logging.getLogger(__name__)
router = APIRouter()


def get_opinion_cache(request: Request) -> OpinionCache:
    """The process-wide cache created in medboard.main."""
    return request.app.state.opinion_cache


@router.post("/query", response_model=Message)
async def query(body: QueryRequest, cache: OpinionCache = Depends(get_opinion_cache)):
    """Route one free-text query. Always answers with a message."""
    return await route_query(body.query, body.case, body.settings, cache=cache)


@router.post("/board/review", response_model=BoardReview)
async def board_review(body: BoardReviewRequest, cache: OpinionCache = Depends(get_opinion_cache)):
    """
    Run a board review.

    Parallel unless options.sequential is true. For progress updates use
    the /ws/board websocket instead.
    """
    return await run_board_review(body.case, body.options, cache=cache)


@router.post("/debate/init", response_model=DebateInit)
async def debate_init(body: DebateInitRequest):
    return await initialize_debate(body.case, body.max_participants)


@router.post("/debate/turn", response_model=DebateTurnResult)
async def debate_turn(body: DebateTurnRequest):
    """Generate the next turn. The caller stops once consensus_reached is true."""
    return await run_next_debate_turn(body.case, body.transcript, body.participants, body.topic)


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(cache: OpinionCache = Depends(get_opinion_cache)):
    return cache.stats()


@router.post("/cache/invalidate")
async def cache_invalidate(case: CaseContext, cache: OpinionCache = Depends(get_opinion_cache)):
    """Drop every cached opinion for this case's current fingerprint."""
    removed = cache.invalidate(case)
    return {"removed": removed}


@router.delete("/cache")
async def cache_clear(cache: OpinionCache = Depends(get_opinion_cache)):
    cache.clear()
    return {"cleared": True}
