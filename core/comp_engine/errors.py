"""
Error taxonomy for the Comp Engine.

Validation errors stop the pipeline. Data-insufficiency conditions are
mostly handled with a recorded fallback; the exceptions below are raised
only where a caller has to make an explicit decision.
"""

from typing import Iterable, List, Optional


class CompEngineError(Exception):
    """Base class for all engine errors."""


class InvalidInputError(CompEngineError, ValueError):
    """
    Caller supplied input outside its documented bounds.

    Carries the full list of problems so the caller can surface every
    issue in one round trip.
    """

    def __init__(self, errors: Iterable[str], message: Optional[str] = None):
        self.errors: List[str] = list(errors)
        super().__init__(message or "; ".join(self.errors) or "invalid input")


class MissingAreaError(CompEngineError):
    """PPSF basis requested for a sale without a usable GLA."""

    def __init__(self, gla: Optional[float] = None):
        self.gla = gla
        super().__init__("GLA required for $/SF basis adjustments")


class EmptyCandidatePoolError(CompEngineError):
    """No candidate produced a time-adjusted value."""
