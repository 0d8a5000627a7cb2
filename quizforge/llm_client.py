"""
One call to the model per attempt. Clients keep no conversation or session
between calls; retries and fallbacks live in quizforge.pipeline.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from quizforge.config import Settings
from quizforge.errors import EmptyResponseError, GenerationTimeoutError, ProviderError
from quizforge.timers import race_with_timeout

log = logging.getLogger(__name__)


def _extract_gemini_text(payload: Dict[str, Any]) -> Optional[str]:
    """Concatenate the text parts of the first candidate that has any."""
    if not isinstance(payload, dict):
        return None
    feedback = payload.get("promptFeedback")
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        log.warning("Gemini generation blocked reason=%s", feedback.get("blockReason"))
        return None
    for cand in payload.get("candidates") or []:
        if not isinstance(cand, dict):
            continue
        content = cand.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []
        texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        joined = "".join(texts)
        if joined.strip():
            return joined
        if cand.get("finishReason") not in (None, "STOP"):
            log.warning("Gemini candidate finished early reason=%s", cand.get("finishReason"))
    return None


class GeminiClient:
    """Gemini ``generateContent`` over REST with a local deadline per call."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._transport = transport

    def _body(self, prompt: str, schema: Dict[str, Any], temperature: float) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": float(temperature),
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }

    async def generate(self, prompt: str, schema: Dict[str, Any], temperature: float, timeout: float) -> str:
        body = self._body(prompt, schema, temperature)
        return await race_with_timeout(self._post(body), timeout, label=f"gemini:{self.settings.model}")

    async def _post(self, body: Dict[str, Any]) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.provider_timeout_secs,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    self.settings.generation_endpoint,
                    params={"key": self.settings.gemini_api_key},
                    json=body,
                )
        except httpx.TimeoutException as exc:
            log.warning("Gemini generation provider timeout: %r", exc)
            raise GenerationTimeoutError(self.settings.provider_timeout_secs, "gemini provider") from exc
        except httpx.HTTPError as exc:
            log.warning("Gemini generation request error: %r", exc)
            raise ProviderError(f"request error: {exc!r}") from exc

        if resp.status_code != 200:
            log.warning("Gemini generation HTTP %s: %s", resp.status_code, resp.text[:400])
            raise ProviderError(f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            log.warning("Gemini generation: non-JSON body")
            raise ProviderError("non-JSON body", status_code=resp.status_code) from exc

        text = _extract_gemini_text(data)
        if not text:
            log.warning("Gemini generation: empty response text")
            raise EmptyResponseError("model returned no text")
        return text


_OFFLINE_GAME: Dict[str, Any] = {
    "title": "Cell Explorer (offline sample)",
    "description": "A sample game served because no model credentials are configured.",
    "theme": "science",
    "questions": [
        {
            "id": "1",
            "text": "What is the powerhouse of the cell?",
            "options": ["Nucleus", "Mitochondria", "Ribosome", "Chloroplast"],
            "correctIndex": 1,
            "explanation": "Mitochondria generate most of the cell's supply of ATP.",
            "concept": "Cell Biology",
            "misconception": "Some believe the nucleus produces energy.",
        },
        {
            "id": "2",
            "text": "Which structure controls what enters and leaves the cell?",
            "options": ["Cell wall", "Cell membrane", "Cytoplasm", "Vacuole"],
            "correctIndex": 1,
            "explanation": "The selectively permeable membrane regulates transport.",
            "concept": "Cell Membrane",
            "misconception": "The cell wall is often thought to filter substances.",
        },
        {
            "id": "3",
            "text": "Where is most of a eukaryotic cell's DNA stored?",
            "options": ["Nucleus", "Golgi apparatus", "Lysosome", "Ribosome"],
            "correctIndex": 0,
            "explanation": "Chromosomal DNA is kept inside the nucleus.",
            "concept": "Genetic Material",
        },
        {
            "id": "4",
            "text": "Which organelle performs photosynthesis in plant cells?",
            "options": ["Mitochondria", "Chloroplast", "Nucleolus", "Centriole"],
            "correctIndex": 1,
            "explanation": "Chloroplasts contain chlorophyll and capture light energy.",
            "concept": "Photosynthesis",
            "misconception": "Plants are sometimes thought to lack mitochondria.",
        },
        {
            "id": "5",
            "text": "What do ribosomes build?",
            "options": ["Lipids", "Carbohydrates", "Proteins", "DNA"],
            "correctIndex": 2,
            "explanation": "Ribosomes translate mRNA into proteins.",
            "concept": "Protein Synthesis",
        },
    ],
}


class OfflineClient:
    """Returns a canned game; only used when offline generation is allowed."""

    async def generate(self, prompt: str, schema: Dict[str, Any], temperature: float, timeout: float) -> str:
        return json.dumps(_OFFLINE_GAME)


def build_client(settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None):
    """Pick a client for ``settings``; None means generation is unavailable."""
    if settings.has_token:
        return GeminiClient(settings, transport=transport)
    if settings.allow_offline:
        return OfflineClient()
    return None


def status(settings: Settings) -> Dict[str, Any]:
    if settings.has_token:
        return {"provider": "gemini", "model": settings.model, "has_token": True, "using": "gemini"}
    return {
        "provider": None,
        "model": None,
        "has_token": False,
        "using": "offline" if settings.allow_offline else None,
    }
