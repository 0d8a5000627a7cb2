from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Optional, Union

import redis

log = logging.getLogger(__name__)

DEFAULT_COUNTER_FILE = "cache/games_total.json"
DEFAULT_REDIS_KEY = "qf:metrics:games_total"


class GameCounter:
    """Running total of games generated.

    The file is always kept current. When a Redis client is configured it is
    the source of truth and the file mirrors it; Redis failures fall back to
    the file instead of failing the request.
    """

    def __init__(
        self,
        path: Union[str, Path] = DEFAULT_COUNTER_FILE,
        redis_client: Optional["redis.Redis"] = None,
        redis_key: str = DEFAULT_REDIS_KEY,
    ) -> None:
        self.path = Path(path)
        self.redis_client = redis_client
        self.redis_key = redis_key
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, path: Union[str, Path], redis_url: str = "", timeout: float = 0.35) -> "GameCounter":
        client = None
        if redis_url:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        return cls(path, client)

    def _read(self) -> int:
        if not self.path.exists():
            return 0
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            return max(0, int(data.get("total", 0))) if isinstance(data, dict) else 0
        except (OSError, ValueError) as exc:
            log.warning("counter: unreadable %s: %s", self.path, exc)
            return 0

    def _write(self, total: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps({"total": max(0, int(total))}, separators=(",", ":")), encoding="utf-8")
        tmp.replace(self.path)

    def _redis_total(self, n: int) -> Optional[int]:
        if self.redis_client is None:
            return None
        try:
            if not self.redis_client.exists(self.redis_key):
                baseline = self._read()
                if baseline > 0:
                    self.redis_client.setnx(self.redis_key, baseline)
            if n > 0:
                total = int(self.redis_client.incrby(self.redis_key, n))
            else:
                total = int(self.redis_client.get(self.redis_key) or 0)
        except (redis.RedisError, ValueError) as exc:
            log.warning("counter: Redis unavailable, falling back to file: %s", exc)
            return None
        total = max(0, total)
        with self._lock:
            self._write(total)
        return total

    def get_total(self) -> int:
        total = self._redis_total(0)
        if total is not None:
            return total
        with self._lock:
            return self._read()

    def increment(self, n: int = 1) -> int:
        total = self._redis_total(n)
        if total is not None:
            return total
        with self._lock:
            total = self._read() + max(0, int(n))
            self._write(total)
            return total
