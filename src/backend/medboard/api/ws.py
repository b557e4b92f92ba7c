"""
WebSocket endpoints for live board reviews and debates.

The frontend connects here to watch a board review fill in slot by slot, or
a debate unfold turn by turn, instead of waiting for one large response.
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from medboard.agent.debate import advance_session, start_session
from medboard.agent.orchestrator import run_board_review
from medboard.models.schemas import BoardReviewRequest, CaseContext
from medboard.tools.case_formatting import loggable_error

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/board")
async def board_websocket(websocket: WebSocket):
    """
    Sequential board review with progress streaming.

    Protocol:
      Client sends: JSON in BoardReviewRequest format
      Server sends:
        - {"type": "ack", "message": "..."}
        - {"type": "progress", "index": i, "total": n, "specialty": "..."}  (one per slot)
        - {"type": "board_review", "review": {...}}
        - {"type": "complete"}
        - {"type": "error", "message": "..."}
    """
    await websocket.accept()

    try:
        raw = await websocket.receive_text()
        body = BoardReviewRequest(**json.loads(raw))
        options = body.options.model_copy(update={"sequential": True})

        await websocket.send_json({"type": "ack", "message": "Case received. Assembling the board..."})

        async def _send_progress(index: int, total: int, specialty: str):
            await websocket.send_json({
                "type": "progress",
                "index": index,
                "total": total,
                "specialty": specialty,
            })

        review = await run_board_review(
            body.case,
            options,
            on_progress=_send_progress,
            cache=websocket.app.state.opinion_cache,
        )
        await websocket.send_json({"type": "board_review", "review": review.model_dump(mode="json")})
        await websocket.send_json({"type": "complete"})

    except WebSocketDisconnect:
        logger.info("Board websocket client disconnected")
    except (json.JSONDecodeError, ValidationError) as e:
        await _send_error(websocket, f"Invalid request: {e}")
    except Exception as e:
        logger.error(f"Board websocket failed: {loggable_error(e)}")
        await _send_error(websocket, "Board review failed")
    finally:
        await _close(websocket)


@router.websocket("/debate")
async def debate_websocket(websocket: WebSocket):
    """
    Full debate loop, driven server-side until consensus or the turn ceiling.

    Protocol:
      Client sends: {"case": {...}, "max_participants": 8, "max_turns": 24}
      Server sends:
        - {"type": "debate_init", "topic": "...", "participants": [...]}
        - {"type": "turn", "turn": {...}, "consensus_reached": bool}  (one per turn)
        - {"type": "debate_complete", "consensus": "..." | null, "turns": n}
        - {"type": "error", "message": "..."}
    """
    await websocket.accept()

    try:
        data = json.loads(await websocket.receive_text())
        case = CaseContext(**data["case"])
        session = await start_session(
            case,
            max_participants=data.get("max_participants"),
            max_turns=data.get("max_turns"),
        )
        await websocket.send_json({
            "type": "debate_init",
            "topic": session.topic,
            "participants": [p.model_dump() for p in session.participants],
        })

        while session.is_live:
            result = await advance_session(session, case)
            await websocket.send_json({
                "type": "turn",
                "turn": result.next_turn.model_dump(),
                "consensus_reached": result.consensus_reached,
            })

        await websocket.send_json({
            "type": "debate_complete",
            "consensus": session.consensus_statement,
            "turns": len(session.transcript),
        })

    except WebSocketDisconnect:
        logger.info("Debate websocket client disconnected")
    except (json.JSONDecodeError, KeyError, ValidationError) as e:
        await _send_error(websocket, f"Invalid request: {e}")
    except Exception as e:
        logger.error(f"Debate websocket failed: {loggable_error(e)}")
        await _send_error(websocket, "Debate failed")
    finally:
        await _close(websocket)


async def _send_error(websocket: WebSocket, message: str) -> None:
    try:
        await websocket.send_json({"type": "error", "message": message})
    except (RuntimeError, WebSocketDisconnect):
        logger.debug("Could not deliver error to websocket client: %s", message)


async def _close(websocket: WebSocket) -> None:
    try:
        await websocket.close()
    except RuntimeError:
        # Already closed by the client
        pass
