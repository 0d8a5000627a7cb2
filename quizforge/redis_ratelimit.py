from __future__ import annotations

import time
from typing import Optional, Tuple

import redis


class RedisRateLimiter:
    """
    Fixed-window Redis rate limiter with the same check_and_increment contract as
    quizforge.ratelimit.RateLimiter, shared across service processes.
    """

    def __init__(self, redis_url: str, window_seconds: int, max_requests: int, client=None) -> None:
        self.redis_url = redis_url.strip()
        self.window_seconds = max(1, int(window_seconds))
        self.max_requests = max(0, int(max_requests))
        # Lazy; nothing touches the network until the first command
        self._client = client or redis.from_url(self.redis_url, decode_responses=True)

    def _bucket_key(self, prefix: str, key: str, now: int) -> str:
        bucket = (prefix or "default").strip() or "default"
        user_key = (key or "anon").strip() or "anon"
        window_start = now - (now % self.window_seconds)
        return f"qf:rl:{bucket}:{user_key}:{window_start}"

    def check_and_increment(self, prefix: str, key: str, now: Optional[int] = None) -> Tuple[bool, int, int]:
        current_ts = now or int(time.time())
        bucket_key = self._bucket_key(prefix, key, current_ts)
        pipe = self._client.pipeline()
        pipe.incr(bucket_key, 1)
        pipe.expire(bucket_key, self.window_seconds)
        count, _ = pipe.execute()
        used = int(count)
        remaining = max(0, self.max_requests - used)
        reset_ts = current_ts - (current_ts % self.window_seconds) + self.window_seconds
        return used <= self.max_requests, remaining, reset_ts
