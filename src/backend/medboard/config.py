# [Core: Settings]
"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "MedBoard Agent"
    debug: bool = True
    privacy_mode: bool = False  # Redact patient-identifying text from logs

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Completion service (any OpenAI-compatible endpoint)
    completion_api_key: str = ""
    completion_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    model_lite: str = "gemini-2.5-flash-lite"  # Routing / classification
    model_flash: str = "gemini-2.5-flash"  # Specialists, debate turns, answers
    model_pro: str = "gemini-2.5-pro"  # Synthesis, debate setup, deep reasoning
    completion_max_tokens: int = 4096
    completion_timeout_seconds: int = 120
    max_api_retries: int = 3
    retry_base_delay: float = 2.0  # seconds, doubles on each retry
    deep_reasoning_thinking_budget: int = 8192

    # Board
    lead_specialty: str = "Cardiology"
    board_max_specialties: int = 8
    sequential_gap_ms: int = 400  # Above the completion service's minimum request gap

    # Debate
    debate_max_participants: int = 8
    debate_max_turns: int = 24

    # Opinion cache
    cache_ttl_seconds: int = 24 * 60 * 60
    cache_max_entries: int = 50

    # Classifier
    classifier_min_query_length: int = 5

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
