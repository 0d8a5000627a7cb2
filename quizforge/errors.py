from __future__ import annotations

from typing import Dict, List, Optional


EXHAUSTED_MESSAGE = (
    "We couldn't build a game from this material. "
    "Try shortening or summarizing your content and generate again."
)


class GenerationError(Exception):
    """Base class for anything that can go wrong while generating a game."""


class GenerationTimeoutError(GenerationError, TimeoutError):
    """The provider did not answer before the attempt's local deadline."""

    def __init__(self, timeout: float, label: str = "generation") -> None:
        super().__init__(f"{label} timed out after {timeout:.2f}s")
        self.timeout = timeout


class EmptyResponseError(GenerationError):
    """The provider answered but the payload held no usable text."""


class ProviderError(GenerationError):
    """Transport failure or non-200 answer from the provider."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FormatError(GenerationError, ValueError):
    """Model output could not be parsed or does not match the game schema."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.errors: List[Dict[str, str]] = list(errors or [])


class ExhaustionError(GenerationError):
    """Every strategy failed. The message is safe to show to end users."""

    def __init__(self, message: str = EXHAUSTED_MESSAGE, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class GenerationCancelled(GenerationError):
    """The caller cancelled; whatever the in-flight attempt produces is dropped."""


# Failures that move the orchestrator to the next strategy
RETRYABLE_ERRORS = (GenerationTimeoutError, EmptyResponseError, ProviderError, FormatError)
