from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from quizforge.strategies import DEFAULT_STRATEGIES, Strategy

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_MODEL = "gemini-3-flash-preview"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def _env_flag(env: Mapping[str, str], name: str, default: str = "0") -> bool:
    return (env.get(name, default) or "").strip().lower() in _TRUTHY


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(env.get(name, "") or default)
    except ValueError:
        return default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, "") or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Everything the pipeline and service need, read once and passed around."""

    gemini_api_key: str = ""
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    # Provider-side HTTP timeout; the per-strategy local deadline is usually shorter
    provider_timeout_secs: float = 90.0
    backoff_secs: float = 1.0
    allow_offline: bool = False
    strategies: Tuple[Strategy, ...] = field(default=DEFAULT_STRATEGIES)
    log_level: str = "INFO"
    rate_window_secs: int = 3600
    rate_max_requests: int = 30
    redis_url: str = ""
    counter_file: str = "cache/games_total.json"
    allow_origins: Tuple[str, ...] = ("*",)

    @property
    def has_token(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def generation_endpoint(self) -> str:
        return f"{self.api_base.rstrip('/')}/models/{self.model}:generateContent"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            gemini_api_key=(env.get("GEMINI_API_KEY", "") or "").strip(),
            model=(env.get("GEMINI_GENERATION_MODEL", "") or DEFAULT_MODEL).strip(),
            api_base=(env.get("GEMINI_API_BASE", "") or DEFAULT_API_BASE).strip(),
            provider_timeout_secs=_env_float(env, "LLM_TIMEOUT_SECS", 90.0),
            backoff_secs=_env_float(env, "GENERATION_BACKOFF_SECS", 1.0),
            allow_offline=_env_flag(env, "ALLOW_OFFLINE_GENERATION"),
            log_level=(env.get("LOG_LEVEL", "") or "INFO").strip().upper(),
            rate_window_secs=_env_int(env, "RATE_WINDOW_SECONDS", 3600),
            rate_max_requests=_env_int(env, "RATE_MAX_REQUESTS", 30),
            redis_url=(env.get("REDIS_URL", "") or "").strip(),
            counter_file=(env.get("COUNTER_FILE", "") or "cache/games_total.json").strip(),
            allow_origins=tuple(o.strip() for o in (env.get("ALLOW_ORIGINS", "") or "*").split(",") if o.strip())
            or ("*",),
        )
