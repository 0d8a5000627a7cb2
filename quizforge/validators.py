from __future__ import annotations

from typing import Any, Dict, List

from jsonschema.validators import Draft202012Validator

from quizforge.errors import FormatError
from quizforge.llm_prompts import game_response_schema

_VALIDATOR = Draft202012Validator(game_response_schema())


def _path(parts) -> str:
    out = ""
    for p in parts:
        out += f"[{p}]" if isinstance(p, int) else (f".{p}" if out else str(p))
    return out or "(root)"


def collect_errors(game: Any) -> List[Dict[str, str]]:
    """
    Return a list of {"path": "...", "message": "..."} dicts for a game payload.
    Schema problems come first (missing fields, wrong types, counts, enum),
    then the checks JSON Schema cannot express.
    """
    errors: List[Dict[str, str]] = []
    for err in sorted(_VALIDATOR.iter_errors(game), key=lambda e: list(map(str, e.path))):
        errors.append({"path": _path(err.path), "message": err.message})
    if not isinstance(game, dict) or not isinstance(game.get("questions"), list):
        return errors

    seen: Dict[str, int] = {}
    for idx, q in enumerate(game["questions"]):
        if not isinstance(q, dict):
            continue
        prefix = f"questions[{idx}]"
        qid = q.get("id")
        if isinstance(qid, str):
            if qid in seen:
                errors.append({
                    "path": f"{prefix}.id",
                    "message": f"duplicate id '{qid}' (also used by questions[{seen[qid]}])",
                })
            else:
                seen[qid] = idx
        opts = q.get("options")
        if isinstance(opts, list):
            for j, opt in enumerate(opts):
                if isinstance(opt, str) and not opt.strip():
                    errors.append({"path": f"{prefix}.options[{j}]", "message": "option must not be blank"})
            ci = q.get("correctIndex")
            if isinstance(ci, int) and not isinstance(ci, bool) and not 0 <= ci < len(opts):
                errors.append({
                    "path": f"{prefix}.correctIndex",
                    "message": f"correctIndex {ci} is outside the {len(opts)} options",
                })
    return errors


def validate_game_payload(game: Any) -> None:
    """Raise FormatError carrying every problem found; otherwise return None."""
    errs = collect_errors(game)
    if errs:
        first = errs[0]
        raise FormatError(f"game failed validation at {first['path']}: {first['message']}", errs)
