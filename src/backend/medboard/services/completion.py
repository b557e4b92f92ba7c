# [Core: Completion Service]
"""
Completion Service — the single gateway to the hosted language model.

Talks to any OpenAI-compatible chat-completions endpoint (Gemini's
OpenAI-compatible surface by default). Three model tiers are configured:

  - lite:  routing and classification
  - flash: specialist consults, debate turns, conversational answers
  - pro:   consensus synthesis, debate setup, deep reasoning

Every component that needs the model goes through this service, so
credential checks, retries and structured-output parsing live in one place.
"""
from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict, List, Optional, Type, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from medboard.config import settings
from medboard.errors import CredentialMissing, NetworkFailure, SchemaParseFailure
from medboard.tools.case_formatting import loggable_error

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# openai exceptions worth retrying (cold start, rate limit, 5xx, dropped socket)
TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def resolve_model(tier: str) -> str:
    """Map a tier name ('lite', 'flash', 'pro') to a configured model id."""
    return {
        "lite": settings.model_lite,
        "flash": settings.model_flash,
        "pro": settings.model_pro,
    }.get(tier, tier)


class CompletionService:
    """
    Unified interface for hosted-model inference.

    Usage:
        service = CompletionService(api_key=request_settings.api_key)
        text = await service.generate("Summarize this case...", model="flash")
        panel = await service.generate_structured("...", PanelSelection, model="lite")
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self._api_key = api_key or settings.completion_api_key
        self._base_url = base_url or settings.completion_base_url
        self._client: Optional[AsyncOpenAI] = None

    @property
    def has_credential(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI:
        """Lazy-initialize the API client. Raises CredentialMissing before any network use."""
        if not self._api_key:
            raise CredentialMissing("No completion API key configured")
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=settings.completion_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def check_readiness(self, model: str = "lite") -> bool:
        """Send a 1-token request. True if the endpoint answers."""
        if not self.has_credential:
            return False
        try:
            response = await self._get_client().chat.completions.create(
                model=resolve_model(model),
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
                temperature=0.0,
            )
            return bool(response.choices)
        except openai.APIError as e:
            logger.debug(f"Readiness probe failed: {loggable_error(e)}")
            return False

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: str = "flash",
        max_tokens: int = 0,
        temperature: float = 0.3,
        thinking_budget: Optional[int] = None,
    ) -> str:
        """
        Generate free text.

        Args:
            prompt: The user prompt
            system_prompt: Optional system instruction
            model: Tier name or explicit model id
            max_tokens: Max tokens to generate (0 = use default from config)
            temperature: Sampling temperature
            thinking_budget: Extended-reasoning token budget, for models that support it

        Raises:
            CredentialMissing: no API key; no request was sent
            NetworkFailure: the endpoint failed after all retries
        """
        client = self._get_client()
        model_id = resolve_model(model)

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "max_tokens": max_tokens or settings.completion_max_tokens,
            "temperature": temperature,
        }
        if thinking_budget:
            kwargs["extra_body"] = {
                "extra_body": {"google": {"thinking_config": {"thinking_budget": thinking_budget}}}
            }

        retries = settings.max_api_retries
        last_error: Optional[Exception] = None
        for attempt in range(retries):
            try:
                response = await client.chat.completions.create(**kwargs)
                return response.choices[0].message.content or ""
            except TRANSIENT_ERRORS as e:
                last_error = e
                if attempt < retries - 1:
                    delay = settings.retry_base_delay * (2 ** attempt) + random.uniform(0, 1)
                    logger.warning(
                        f"Completion transient error on {model_id} "
                        f"(attempt {attempt + 1}/{retries}): {loggable_error(e)}. Retrying in {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)
                    continue
            except openai.APIError as e:
                last_error = e
                break

        logger.error(f"Completion API error on {model_id}: {loggable_error(last_error)}")
        raise NetworkFailure(str(last_error)) from last_error

    async def generate_structured(
        self,
        prompt: str,
        response_model: Type[T],
        system_prompt: Optional[str] = None,
        model: str = "flash",
        max_tokens: int = 0,
        temperature: float = 0.2,
        thinking_budget: Optional[int] = None,
    ) -> T:
        """
        Generate a response parsed into a Pydantic model.

        The model's JSON schema is appended to the prompt. Code fences are
        stripped, truncated JSON is repaired, and one full retry is made
        before giving up with SchemaParseFailure.
        """
        schema = response_model.model_json_schema()
        structured_prompt = (
            f"{prompt}\n\n"
            f"Respond ONLY with valid JSON matching this schema:\n"
            f"```json\n{json.dumps(schema, indent=2)}\n```\n"
            f"Do not include any text outside the JSON."
        )

        last_error: Optional[Exception] = None
        raw = ""
        for attempt in range(2):
            raw = await self.generate(
                structured_prompt, system_prompt, model, max_tokens, temperature, thinking_budget
            )
            try:
                return parse_structured(raw, response_model)
            except (json.JSONDecodeError, ValidationError) as e:
                last_error = e
            logger.warning(
                "generate_structured attempt %d failed for %s: %s",
                attempt + 1, response_model.__name__, loggable_error(last_error),
            )

        raise SchemaParseFailure(response_model.__name__, str(last_error), raw=raw)


# ──────────────────────────────────────────────
# Structured-output parsing
# ──────────────────────────────────────────────

def parse_structured(raw: str, response_model: Type[T]) -> T:
    """Parse raw model text into response_model, repairing truncation if needed."""
    json_str = extract_json(raw)
    try:
        return response_model.model_validate(json.loads(json_str))
    except json.JSONDecodeError:
        repaired = repair_truncated_json(json_str)
        if repaired is None:
            raise
        return response_model.model_validate(json.loads(repaired))


def extract_json(text: str) -> str:
    """Pull the JSON payload out of a reply that may be wrapped in code fences or prose."""
    for fence in ("```json", "```"):
        if fence in text:
            start = text.index(fence) + len(fence)
            end = text.find("```", start)
            return (text[start:] if end == -1 else text[start:end]).strip()

    start = next((i for i, c in enumerate(text) if c in "{["), None)
    if start is None:
        return text.strip()

    depth = 0
    in_string = False
    escaped = False
    for j in range(start, len(text)):
        c = text[j]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c in "{[":
            depth += 1
        elif c in "}]":
            depth -= 1
            if depth == 0:
                return text[start : j + 1]
    return text[start:].strip()


def repair_truncated_json(text: str) -> Optional[str]:
    """
    Close an unterminated string and any open arrays/objects left by a
    reply that hit the token limit. Returns None for empty input.
    """
    if not text or not text.strip():
        return None

    s = text.rstrip()
    closers: List[str] = []
    in_string = False
    escaped = False
    for c in s:
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
        elif c == '"':
            in_string = True
        elif c == "{":
            closers.append("}")
        elif c == "[":
            closers.append("]")
        elif c in "}]" and closers:
            closers.pop()

    if in_string:
        s += '"'
    s = s.rstrip()
    if s.endswith(","):
        s = s[:-1]
    return s + "".join(reversed(closers))
