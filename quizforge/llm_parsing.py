from __future__ import annotations

import json
import logging
import random
import re
import string
from typing import Any, Dict, List, Optional

from quizforge.errors import FormatError
from quizforge.models import (
    QUESTION_COUNT,
    THEME_VALUES,
    GameData,
    GenerationOptions,
    Theme,
)
from quizforge.validators import validate_game_payload

log = logging.getLogger(__name__)

CODE_ALPHABET = string.digits + string.ascii_uppercase
CODE_LENGTH = 4

_FENCE_OPEN_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE_RE = re.compile(r"\s*```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def strip_fences(text: str) -> str:
    """Remove a ```json ... ``` (or bare ```) wrapper and surrounding whitespace."""
    t = (text or "").strip()
    t = _FENCE_OPEN_RE.sub("", t, count=1)
    t = _FENCE_CLOSE_RE.sub("", t, count=1)
    return t.strip()


def _balanced_object_slice(s: str) -> Optional[str]:
    """First top-level {...} in ``s``, brace-aware inside strings."""
    in_str = False
    esc = False
    depth = 0
    start = -1
    for i, ch in enumerate(s):
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                return s[start : i + 1]
    return None


def parse_json_text(text: str) -> Any:
    """Parse model output into an untyped value or raise FormatError.

    Tries the fence-stripped text, then a copy with trailing commas and smart
    quotes fixed, then the first balanced object when the model wrapped the
    JSON in prose. Truncated output is not completed.
    """
    cleaned = strip_fences(text)
    if not cleaned:
        raise FormatError("empty model output")
    candidates: List[str] = [cleaned]
    sliced = _balanced_object_slice(cleaned)
    if sliced and sliced != cleaned:
        candidates.append(sliced)
    last_error: Optional[Exception] = None
    for candidate in candidates:
        for attempt in (candidate, _sanitize(candidate)):
            try:
                return json.loads(attempt)
            except ValueError as exc:
                last_error = exc
    raise FormatError(f"model output is not valid JSON: {last_error}")


def _sanitize(s: str) -> str:
    s = _TRAILING_COMMA_RE.sub(r"\1", s)
    return s.replace("“", '"').replace("”", '"').replace("’", "'")


def mint_game_code(rng: Optional[random.Random] = None, length: int = CODE_LENGTH) -> str:
    """Short join code. Collisions across sessions are accepted; nothing is checked."""
    r = rng or random.Random()
    return "".join(r.choice(CODE_ALPHABET) for _ in range(length))


def _fallback_theme(options: GenerationOptions) -> str:
    if options.preferred_genre is not None:
        return options.preferred_genre.value
    return Theme.ADVENTURE.value if options.is_engine else Theme.DEFAULT.value


def repair_payload(payload: Dict[str, Any], options: GenerationOptions) -> Dict[str, Any]:
    """Fix the harmless slips models make; anything structural is left for validation."""
    doc = dict(payload)

    theme = doc.get("theme")
    theme = theme.strip().lower() if isinstance(theme, str) else ""
    if theme not in THEME_VALUES:
        fallback = _fallback_theme(options)
        log.info("repair: theme=%r replaced with %s", doc.get("theme"), fallback)
        theme = fallback
    doc["theme"] = theme

    questions = doc.get("questions")
    if not isinstance(questions, list):
        return doc
    if len(questions) > QUESTION_COUNT:
        log.info("repair: trimming %d questions to %d", len(questions), QUESTION_COUNT)
        questions = questions[:QUESTION_COUNT]

    fixed: List[Any] = []
    seen = set()
    for idx, q in enumerate(questions):
        if not isinstance(q, dict):
            fixed.append(q)
            continue
        q = dict(q)
        ci = q.get("correctIndex")
        if isinstance(ci, str) and ci.strip().isdecimal():
            q["correctIndex"] = int(ci.strip())
        qid = q.get("id")
        if isinstance(qid, int) and not isinstance(qid, bool):
            qid = str(qid)
        if not isinstance(qid, str) or not qid.strip() or qid in seen:
            qid = f"q{idx + 1}"
            while qid in seen:
                qid += "x"
        seen.add(qid)
        q["id"] = qid
        if q.get("misconception") in ("", None):
            q.pop("misconception", None)
        fixed.append(q)
    doc["questions"] = fixed
    return doc


def parse_game_response(
    text: str,
    options: GenerationOptions,
    rng: Optional[random.Random] = None,
) -> GameData:
    """Turn one raw model answer into a GameData or raise FormatError."""
    payload = parse_json_text(text)
    if not isinstance(payload, dict):
        raise FormatError(f"expected a JSON object, got {type(payload).__name__}")
    doc = repair_payload(payload, options)
    validate_game_payload(doc)
    # Never trust these two from the model
    doc["code"] = mint_game_code(rng)
    doc["isEngine"] = options.is_engine
    try:
        return GameData.model_validate(doc)
    except ValueError as exc:
        raise FormatError(f"game data rejected: {exc}") from exc
