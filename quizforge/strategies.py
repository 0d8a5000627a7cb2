from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Strategy:
    """One rung of the retry ladder."""

    label: str
    max_chars: int
    timeout_secs: float
    temperature: float


# Later rungs trade content for speed; temperature creeps up to compensate
DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    Strategy("full", max_chars=15000, timeout_secs=45.0, temperature=0.7),
    Strategy("condensed", max_chars=8000, timeout_secs=30.0, temperature=0.8),
    Strategy("minimal", max_chars=4000, timeout_secs=20.0, temperature=0.9),
)


def backoff_delay(attempt_index: int, base_secs: float) -> float:
    """Seconds to wait after attempt ``attempt_index`` (0-based) fails."""
    return max(0.0, base_secs) * (attempt_index + 1)


def progress_message(attempt_index: int, total: int) -> str:
    if attempt_index == 0:
        return "Analyzing your lesson content..."
    return f"Retrying with a shorter excerpt (attempt {attempt_index + 1} of {total})..."
