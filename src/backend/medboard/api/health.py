"""Health check endpoints."""
import logging

from fastapi import APIRouter

from medboard.config import settings
from medboard.services.completion import CompletionService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.app_name}


@router.get("/api/health/config")
async def config_check():
    """Diagnostic endpoint: shows whether critical settings are configured (no secrets)."""
    return {
        "completion_base_url": settings.completion_base_url,
        "completion_api_key_set": bool(settings.completion_api_key),
        "model_lite": settings.model_lite,
        "model_flash": settings.model_flash,
        "model_pro": settings.model_pro,
        "lead_specialty": settings.lead_specialty,
        "board_max_specialties": settings.board_max_specialties,
        "privacy_mode": settings.privacy_mode,
    }


@router.get("/api/health/model")
async def model_readiness():
    """Check whether the completion endpoint is accepting requests."""
    service = CompletionService()
    ready = await service.check_readiness()
    return {
        "ready": ready,
        "model": settings.model_lite,
        "api_key_set": service.has_credential,
    }
