from __future__ import annotations

import time
from typing import Callable, Dict, Tuple

RateResult = Tuple[bool, int, int]


class RateLimiter:
    """In-process fixed-window limiter keyed by (bucket, client)."""

    def __init__(self, window_seconds: int, max_requests: int, clock: Callable[[], float] = time.time) -> None:
        self.window_seconds = max(1, int(window_seconds))
        self.max_requests = max(0, int(max_requests))
        self._clock = clock
        self._store: Dict[Tuple[str, str], Dict[str, int]] = {}

    def _entry(self, bucket: str, key: str) -> Dict[str, int]:
        k = (bucket or "default", key or "anon")
        now = int(self._clock())
        entry = self._store.get(k)
        if entry is None or now >= entry["reset_ts"]:
            entry = {"count": 0, "reset_ts": now + self.window_seconds}
            self._store[k] = entry
        return entry

    def check_and_increment(self, bucket: str, key: str) -> RateResult:
        """Returns (allowed, remaining, reset_ts); denied calls do not count."""
        entry = self._entry(bucket, key)
        if entry["count"] < self.max_requests:
            entry["count"] += 1
            return True, max(0, self.max_requests - entry["count"]), entry["reset_ts"]
        return False, 0, entry["reset_ts"]

    def reset(self) -> None:
        """Used by tests to clear state."""
        self._store.clear()
