"""Retry orchestration for game generation.

Each request walks the strategy ladder in order, one attempt at a time:
preprocess the content for the rung's budget, build the prompt, call the
model under the rung's deadline, parse and validate. A failed attempt is
logged, the orchestrator backs off, and the next rung runs with less content.
Only when every rung has failed does the caller see an error, and it is the
single message in ExhaustionError.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from quizforge.config import Settings
from quizforge.content import prepare_content
from quizforge.errors import (
    RETRYABLE_ERRORS,
    ExhaustionError,
    GenerationCancelled,
    ProviderError,
)
from quizforge.llm_client import build_client
from quizforge.llm_parsing import parse_game_response
from quizforge.llm_prompts import build_generation_request
from quizforge.models import GameData, GenerationOptions
from quizforge.strategies import Strategy, backoff_delay, progress_message

log = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class CancelToken:
    """Advisory cancel flag shared between a caller and one generation run."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class GenerationState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class AttemptRecord:
    index: int
    strategy: str
    content_chars: int = 0
    elapsed_secs: float = 0.0
    error: Optional[str] = None


@dataclass
class GenerationRun:
    """Diagnostics for one generate() call; never shown to end users."""

    state: GenerationState = GenerationState.IDLE
    attempt_index: int = -1
    attempts: List[AttemptRecord] = field(default_factory=list)
    history: List[GenerationState] = field(default_factory=list)

    def enter(self, state: GenerationState) -> None:
        self.state = state
        self.history.append(state)


class GameGenerator:
    def __init__(
        self,
        client,
        settings: Optional[Settings] = None,
        *,
        strategies: Optional[Sequence[Strategy]] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings()
        self.client = client
        self.strategies = tuple(strategies if strategies is not None else self.settings.strategies)
        if not self.strategies:
            raise ValueError("at least one strategy is required")
        self.rng = rng
        self._sleep = sleep
        self._clock = clock

    async def generate(
        self,
        options: GenerationOptions,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
        run: Optional[GenerationRun] = None,
    ) -> GameData:
        token = cancel_token or CancelToken()
        run = run if run is not None else GenerationRun()
        total = len(self.strategies)

        for index, strategy in enumerate(self.strategies):
            if token.cancelled:
                self._cancel(run)
            run.enter(GenerationState.ATTEMPTING)
            run.attempt_index = index
            self._notify(on_progress, progress_message(index, total), token)

            record = AttemptRecord(index=index, strategy=strategy.label)
            run.attempts.append(record)
            started = self._clock()
            try:
                game = await self._attempt(options, strategy, record)
            except RETRYABLE_ERRORS as exc:
                record.elapsed_secs = self._clock() - started
                record.error = type(exc).__name__
                log.warning(
                    "generation attempt=%d/%d strategy=%s failed after %.2fs: %s: %s",
                    index + 1,
                    total,
                    strategy.label,
                    record.elapsed_secs,
                    record.error,
                    exc,
                )
                if index + 1 < total and not token.cancelled:
                    delay = backoff_delay(index, self.settings.backoff_secs)
                    log.info("generation backoff=%.2fs before attempt=%d", delay, index + 2)
                    await self._sleep(delay)
                continue

            record.elapsed_secs = self._clock() - started
            if token.cancelled:
                log.info("generation result dropped after cancel attempt=%d", index + 1)
                self._cancel(run)
            run.enter(GenerationState.SUCCEEDED)
            log.info(
                "generation succeeded attempt=%d strategy=%s code=%s questions=%d",
                index + 1,
                strategy.label,
                game.code,
                len(game.questions),
            )
            return game

        if token.cancelled:
            self._cancel(run)
        run.enter(GenerationState.EXHAUSTED)
        log.error(
            "generation exhausted attempts=%d errors=%s",
            total,
            ",".join(a.error or "?" for a in run.attempts),
        )
        raise ExhaustionError(attempts=total)

    async def _attempt(self, options: GenerationOptions, strategy: Strategy, record: AttemptRecord) -> GameData:
        content = prepare_content(options.content, strategy.max_chars)
        record.content_chars = len(content)
        request = build_generation_request(options, content, strategy)
        log.info(
            "generation attempt strategy=%s content_chars=%d/%d timeout=%.1fs temperature=%.2f",
            strategy.label,
            len(content),
            len(options.content),
            strategy.timeout_secs,
            request.temperature,
        )
        raw = await self.client.generate(request.prompt, request.schema, request.temperature, strategy.timeout_secs)
        return parse_game_response(raw, options, rng=self.rng)

    def _notify(self, on_progress: Optional[ProgressCallback], stage: str, token: CancelToken) -> None:
        if on_progress is None or token.cancelled:
            return
        try:
            on_progress(stage)
        except Exception:
            log.warning("generation progress observer raised; ignoring", exc_info=True)

    def _cancel(self, run: GenerationRun) -> None:
        run.enter(GenerationState.CANCELLED)
        raise GenerationCancelled("generation cancelled by caller")


async def generate_game(
    options: GenerationOptions,
    settings: Settings,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancelToken] = None,
    *,
    client=None,
) -> GameData:
    """Entry point for callers that just want a game for ``options``."""
    client = client or build_client(settings)
    if client is None:
        raise ProviderError("missing LLM credentials")
    return await GameGenerator(client, settings).generate(options, on_progress, cancel_token)
