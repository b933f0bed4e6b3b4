"""Exceptions raised inside the recommendation engine."""

import asyncio
from typing import Optional


class RecommendationError(Exception):
    """Base exception for recommendation engine errors."""


class SourceError(RecommendationError):
    """A candidate source failed or timed out.

    Args:
        source: Name of the candidate source ("trending", "similar", ...)
        cause: The underlying exception, if any
    """

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown"
        super().__init__(f"Candidate source '{source}' failed ({detail})")

    @property
    def timed_out(self) -> bool:
        return isinstance(self.cause, (TimeoutError, asyncio.TimeoutError))
