import asyncio
import json
import logging
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from quizforge import main as main_mod
from quizforge.config import Settings
from quizforge.counter import GameCounter
from quizforge.errors import EXHAUSTED_MESSAGE, EmptyResponseError
from quizforge.main import app
from quizforge.models import GenerationOptions
from quizforge.pipeline import GameGenerator
from quizforge.ratelimit import RateLimiter

client = TestClient(app)

PAYLOAD = {
    "content": "The water cycle moves water through evaporation, condensation and precipitation.",
    "objective": "Describe the stages of the water cycle",
}


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch, tmp_path):
    monkeypatch.setattr(main_mod, "get_settings", lambda: Settings(allow_offline=True))
    monkeypatch.setattr(main_mod, "_local_limiter", RateLimiter(3600, 30))
    monkeypatch.setattr(main_mod, "_counter", GameCounter(tmp_path / "total.json"))


def _events(resp):
    return [json.loads(line) for line in resp.text.splitlines() if line.strip()]


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_llm_status_shape():
    r = client.get("/llm/status")
    assert r.status_code == 200
    body = r.json()
    assert body["provider"] is None
    assert body["using"] == "offline"
    assert body["has_token"] is False


def test_generate_offline_returns_game_and_counts_it():
    r = client.post("/generate", json=PAYLOAD)
    assert r.status_code == 200
    game = r.json()
    assert len(game["code"]) == 4
    assert game["isEngine"] is True
    assert len(game["questions"]) == 5
    assert all(0 <= q["correctIndex"] <= 3 for q in game["questions"])
    assert r.headers["X-RateLimit-Remaining"] == "29"
    assert client.get("/metrics/total").json() == {"total": 1}


def test_generate_accepts_camel_case_options():
    r = client.post("/generate", json=dict(PAYLOAD, gameMode="legacy", objectiveType="apply"))
    assert r.status_code == 200
    assert r.json()["isEngine"] is False


def test_generate_without_credentials_is_503(monkeypatch):
    monkeypatch.setattr(main_mod, "get_settings", lambda: Settings())
    r = client.post("/generate", json=PAYLOAD)
    assert r.status_code == 503
    assert r.json() == {"error": "Missing LLM credentials"}


def test_generate_rate_limited(monkeypatch):
    monkeypatch.setattr(main_mod, "_local_limiter", RateLimiter(3600, 1))
    assert client.post("/generate", json=PAYLOAD).status_code == 200
    r = client.post("/generate", json=PAYLOAD)
    assert r.status_code == 429
    assert r.json()["error"] == "rate limit exceeded"
    assert "Retry-After" in r.headers


def test_generate_exhaustion_is_502_with_one_message(monkeypatch, scripted_client):
    fake = scripted_client([EmptyResponseError("empty")] * 3)
    monkeypatch.setattr(main_mod, "_build_generator", lambda s: GameGenerator(fake, Settings(backoff_secs=0.0)))
    r = client.post("/generate", json=PAYLOAD)
    assert r.status_code == 502
    assert r.json() == {"error": EXHAUSTED_MESSAGE}
    assert len(fake.calls) == 3
    assert client.get("/metrics/total").json() == {"total": 0}


@pytest.mark.parametrize(
    "body",
    [
        {"content": "text"},
        {"content": "   ", "objective": "x"},
        dict(PAYLOAD, preferredMechanics=["timer"], avoidMechanics=["timer"]),
        dict(PAYLOAD, preferredGenre="opera"),
    ],
)
def test_generate_rejects_invalid_options(body):
    r = client.post("/generate", json=body)
    assert r.status_code == 422


def test_stream_emits_meta_progress_and_game():
    r = client.post("/generate/stream", json=PAYLOAD)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/x-ndjson")
    events = _events(r)
    assert [e["event"] for e in events] == ["meta", "progress", "game"]
    assert events[1]["data"]["stage"] == "Analyzing your lesson content..."
    assert len(events[2]["data"]["questions"]) == 5


def test_stream_exhaustion_reports_error_event(monkeypatch, scripted_client):
    fake = scripted_client(["nope", "still nope", "```json\n[]\n```"])
    monkeypatch.setattr(main_mod, "_build_generator", lambda s: GameGenerator(fake, Settings(backoff_secs=0.0)))
    events = _events(client.post("/generate/stream", json=PAYLOAD))
    assert [e["event"] for e in events] == ["meta", "progress", "progress", "progress", "error"]
    assert events[-1]["data"]["error"] == EXHAUSTED_MESSAGE


def test_stream_without_credentials(monkeypatch):
    monkeypatch.setattr(main_mod, "get_settings", lambda: Settings())
    events = _events(client.post("/generate/stream", json=PAYLOAD))
    assert [e["event"] for e in events] == ["meta", "error"]
    assert events[1]["data"]["error"] == "Missing LLM credentials"


def test_validate_success(valid_game):
    r = client.post("/validate", json={"game": valid_game})
    assert r.status_code == 200
    assert r.json()["detail"]["valid"] is True


def test_validate_failure_lists_errors(valid_game):
    valid_game["questions"] = valid_game["questions"][:3]
    r = client.post("/validate", json={"game": valid_game})
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["valid"] is False
    assert any(e["path"] == "questions" for e in detail["errors"])


class _GatedClient:
    """Blocks inside the model call until released."""

    def __init__(self, text):
        self.text = text
        self.calls = 0
        self.release = asyncio.Event()

    async def generate(self, prompt, schema, temperature, timeout):
        self.calls += 1
        await self.release.wait()
        return self.text


class _TokenRecorder:
    def __init__(self, inner):
        self.inner = inner
        self.token = None

    async def generate(self, options, on_progress=None, cancel_token=None, run=None):
        self.token = cancel_token
        return await self.inner.generate(options, on_progress, cancel_token, run)


def test_stream_disconnect_cancels_run_and_drops_game(monkeypatch, valid_game_json):
    gated = _GatedClient(valid_game_json)
    recorder = _TokenRecorder(GameGenerator(gated, Settings(backoff_secs=0.0)))
    monkeypatch.setattr(main_mod, "_build_generator", lambda s: recorder)
    request = SimpleNamespace(state=SimpleNamespace(request_id="rid-1"), client=SimpleNamespace(host="10.0.0.1"))

    async def scenario():
        resp = await main_mod.generate_stream(GenerationOptions(**PAYLOAD), request)
        body = resp.body_iterator
        lines = [await body.__anext__(), await body.__anext__()]
        await body.aclose()
        gated.release.set()
        await asyncio.gather(*list(main_mod._background), return_exceptions=True)
        return lines

    lines = asyncio.run(scenario())
    assert [json.loads(line)["event"] for line in lines] == ["meta", "progress"]
    assert recorder.token is not None and recorder.token.cancelled
    assert gated.calls == 1
    assert client.get("/metrics/total").json() == {"total": 0}


def test_logging_level_comes_from_settings(monkeypatch):
    seen = {}
    monkeypatch.setattr(logging.getLogger(), "handlers", [])
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: seen.update(kw))
    main_mod._configure_logging(Settings(log_level="DEBUG"))
    assert seen["level"] == "DEBUG"


def test_logging_left_alone_when_already_configured(monkeypatch):
    seen = {}
    monkeypatch.setattr(logging.getLogger(), "handlers", [logging.NullHandler()])
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: seen.update(kw))
    main_mod._configure_logging(Settings(log_level="DEBUG"))
    assert seen == {}
