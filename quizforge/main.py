import asyncio
import json
import logging
import os
import time
import uuid
from typing import Any, AsyncIterator, Dict, Optional, Set, Tuple

import redis
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from quizforge.config import Settings
from quizforge.content import normalize_content
from quizforge.counter import GameCounter
from quizforge.errors import ExhaustionError, GenerationCancelled
from quizforge.llm_client import build_client, status as llm_status
from quizforge.models import GameData, GenerationOptions
from quizforge.pipeline import CancelToken, GameGenerator
from quizforge.ratelimit import RateLimiter
from quizforge.redis_ratelimit import RedisRateLimiter
from quizforge.validators import collect_errors

log = logging.getLogger(__name__)

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def _configure_logging(settings: Settings) -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


_configure_logging(get_settings())

app = FastAPI(title="quizforge")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class ValidateRequest(BaseModel):
    game: Dict[str, Any]


_local_limiter: Optional[RateLimiter] = None
_redis_limiter: Optional[RedisRateLimiter] = None
_counter: Optional[GameCounter] = None
# Stream runs outlive their response once the client goes away
_background: Set[asyncio.Task] = set()


def _get_local_limiter() -> RateLimiter:
    global _local_limiter
    if _local_limiter is None:
        s = get_settings()
        _local_limiter = RateLimiter(s.rate_window_secs, s.rate_max_requests)
    return _local_limiter


def _get_redis_limiter() -> Optional[RedisRateLimiter]:
    global _redis_limiter
    s = get_settings()
    if _redis_limiter is None and s.redis_url and not os.getenv("PYTEST_CURRENT_TEST"):
        _redis_limiter = RedisRateLimiter(s.redis_url, s.rate_window_secs, s.rate_max_requests)
    return _redis_limiter


def _get_counter() -> GameCounter:
    global _counter
    if _counter is None:
        s = get_settings()
        redis_url = "" if os.getenv("PYTEST_CURRENT_TEST") else s.redis_url
        _counter = GameCounter.from_url(s.counter_file, redis_url)
    return _counter


def _safe_rate_check(bucket: str, key: str) -> Tuple[bool, int, int]:
    """
    Return (allowed, remaining, reset_ts).
    Redis is used when configured; if it is unreachable the in-process limiter answers instead.
    """
    limiter = _get_redis_limiter()
    if limiter is not None:
        try:
            return limiter.check_and_increment(bucket, key)
        except redis.RedisError as exc:
            log.warning("rate_limit: Redis unavailable, using in-process limiter: %s", exc)
    return _get_local_limiter().check_and_increment(bucket, key)


def _rate_limit_headers(remaining: int, reset_ts: int, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_ts),
    }
    if limited:
        headers["Retry-After"] = str(max(0, reset_ts - int(time.time())))
    return headers


def _rate_limit_payload(reset_ts: int) -> Dict[str, Any]:
    wait_seconds = max(0, reset_ts - int(time.time()))
    return {
        "error": "rate limit exceeded",
        "reset": reset_ts,
        "retry_after_seconds": wait_seconds,
        "message": f"Rate limit exceeded. Try again in {wait_seconds} seconds.",
    }


def _build_generator(settings: Settings) -> Optional[GameGenerator]:
    client = build_client(settings)
    if client is None:
        return None
    return GameGenerator(client, settings)


def _count_game() -> None:
    try:
        _get_counter().increment(1)
    except OSError as exc:
        log.warning("counter: increment failed: %s", exc)


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "anon"


def _normalized(options: GenerationOptions) -> GenerationOptions:
    content = normalize_content(options.content)
    if not content:
        raise HTTPException(status_code=422, detail="content must not be empty")
    return options.model_copy(update={"content": content})


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_status(get_settings())


@app.get("/metrics/total")
def metrics_total() -> Dict[str, int]:
    """Return the total number of games generated across all users."""
    return {"total": _get_counter().get_total()}


@app.post("/generate")
async def generate_endpoint(options: GenerationOptions, request: Request):
    options = _normalized(options)
    generator = _build_generator(get_settings())
    if generator is None:
        return JSONResponse(status_code=503, content={"error": "Missing LLM credentials"})

    allowed, remaining, reset_ts = _safe_rate_check("gen", _client_key(request))
    log.info("rate_limit check allowed=%s remaining=%s", allowed, remaining)
    if not allowed:
        return JSONResponse(
            status_code=429,
            content=_rate_limit_payload(reset_ts),
            headers=_rate_limit_headers(remaining, reset_ts, limited=True),
        )

    try:
        game = await generator.generate(options)
    except ExhaustionError as exc:
        return JSONResponse(
            status_code=502,
            content={"error": str(exc)},
            headers=_rate_limit_headers(remaining, reset_ts),
        )
    _count_game()
    return JSONResponse(game.to_wire(), headers=_rate_limit_headers(remaining, reset_ts))


def _line(event: str, data: Any = None) -> str:
    payload: Dict[str, Any] = {"event": event}
    if data is not None:
        payload["data"] = data
    return json.dumps(payload) + "\n"


@app.post("/generate/stream")
async def generate_stream(options: GenerationOptions, request: Request):
    """
    NDJSON streaming endpoint: meta, one progress line per attempt, then game or error.
    """
    options = _normalized(options)
    meta = {"request_id": getattr(request.state, "request_id", None)}
    generator = _build_generator(get_settings())
    if generator is None:
        async def _iter_error() -> AsyncIterator[str]:
            yield _line("meta", meta)
            yield _line("error", {"error": "Missing LLM credentials"})

        return StreamingResponse(_iter_error(), media_type="application/x-ndjson")

    allowed, remaining, reset_ts = _safe_rate_check("gen", _client_key(request))
    log.info("rate_limit check allowed=%s remaining=%s", allowed, remaining)
    if not allowed:
        return JSONResponse(
            status_code=429,
            content=_rate_limit_payload(reset_ts),
            headers=_rate_limit_headers(remaining, reset_ts, limited=True),
        )

    token = CancelToken()
    queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    async def _run() -> None:
        try:
            game: GameData = await generator.generate(
                options,
                on_progress=lambda stage: queue.put_nowait(_line("progress", {"stage": stage})),
                cancel_token=token,
            )
            _count_game()
            queue.put_nowait(_line("game", game.to_wire()))
        except GenerationCancelled:
            log.info("generate_stream: run cancelled rid=%s", meta["request_id"])
        except ExhaustionError as exc:
            queue.put_nowait(_line("error", {"error": str(exc)}))
        except Exception:
            log.exception("generate_stream: unexpected failure")
            queue.put_nowait(_line("error", {"error": "generation failed"}))
        finally:
            queue.put_nowait(None)

    async def _iter() -> AsyncIterator[str]:
        yield _line("meta", meta)
        task = asyncio.create_task(_run())
        _background.add(task)
        task.add_done_callback(_background.discard)
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield item
        finally:
            if not task.done():
                log.info("generate_stream: client went away; cancelling rid=%s", meta["request_id"])
                token.cancel()

    return StreamingResponse(_iter(), media_type="application/x-ndjson", headers=_rate_limit_headers(remaining, reset_ts))


@app.post("/validate")
def validate_endpoint(req: ValidateRequest):
    """
    Validate a game payload (title, description, theme, questions).
    Returns 200 and {"detail":{"valid":true}} on success,
            422 and {"detail":{"valid":false,"errors":[...]}} on failure.
    """
    errors = collect_errors(req.game)
    detail: Dict[str, Any] = {"valid": not errors}
    if errors:
        detail["errors"] = errors
        return JSONResponse(status_code=422, content={"detail": detail})
    return {"detail": detail}
