"""
MedBoard Agent — FastAPI Backend
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medboard.api import board, health, ws
from medboard.config import settings
from medboard.services.opinion_cache import OpinionCache

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="MedBoard Agent",
    description="Multi-specialist board reviews, grand-rounds debates and query routing for a patient case",
    version="0.1.0",
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One opinion cache per process, shared by every route
app.state.opinion_cache = OpinionCache()

# Routes
app.include_router(health.router, tags=["health"])
app.include_router(board.router, prefix="/api", tags=["board"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])


def _mask(val: str) -> str:
    if not val:
        return "(empty)"
    if len(val) <= 8:
        return "***"
    return val[:4] + "..." + val[-4:]


@app.on_event("startup")
async def startup():
    """Log configuration (secrets masked)."""
    logger.info("=== MedBoard Agent Backend Starting ===")
    logger.info(f"  completion_base_url : {settings.completion_base_url}")
    logger.info(f"  completion_api_key  : {_mask(settings.completion_api_key)}")
    logger.info(f"  models              : {settings.model_lite} / {settings.model_flash} / {settings.model_pro}")
    logger.info(f"  lead_specialty      : {settings.lead_specialty}")
    logger.info(f"  board_max_specialties: {settings.board_max_specialties}")
    logger.info(f"  cache               : ttl={settings.cache_ttl_seconds}s max={settings.cache_max_entries}")
    logger.info(f"  privacy_mode        : {settings.privacy_mode}")
    logger.info(f"  cors_origins        : {settings.cors_origins}")

    if not settings.completion_api_key:
        logger.warning(
            "COMPLETION_API_KEY is empty -- requests must carry their own api_key or will get the credentials prompt"
        )
