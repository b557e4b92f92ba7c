# [Core: Errors]
"""
Error taxonomy for the board core.

None of these escape the public operations: router, board, and debate entry
points catch them and degrade to a well-formed response.
"""
from __future__ import annotations

from typing import Optional


class MedBoardError(Exception):
    """Base class for all core errors."""


class CredentialMissing(MedBoardError):
    """No completion-service credential is configured; no call was attempted."""


class ClassificationFailure(MedBoardError):
    """The domain classifier could not produce a usable specialty."""


class SpecialistDispatchFailure(MedBoardError):
    """Both the dedicated and the generic routine failed for a specialty."""

    def __init__(self, specialty: str, message: str) -> None:
        self.specialty = specialty
        super().__init__(f"[{specialty}] {message}")


class SchemaParseFailure(MedBoardError):
    """Structured output from the completion service could not be parsed."""

    def __init__(self, model_name: str, message: str, raw: Optional[str] = None) -> None:
        self.model_name = model_name
        self.raw = raw
        super().__init__(f"[{model_name}] {message}")


class NetworkFailure(MedBoardError):
    """The completion service could not be reached or returned an API error."""


class DebateClosed(MedBoardError):
    """A turn was requested on a debate session that is no longer live."""
