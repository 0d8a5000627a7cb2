from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from quizforge.models import (
    OPTION_COUNT,
    QUESTION_COUNT,
    THEME_VALUES,
    GenerationOptions,
)
from quizforge.strategies import Strategy

# Keys of the OpenAPI subset Gemini accepts in responseSchema
_GEMINI_SCHEMA_KEYS = {
    "type",
    "format",
    "description",
    "nullable",
    "enum",
    "items",
    "properties",
    "required",
    "minItems",
    "maxItems",
    "minimum",
    "maximum",
}


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    schema: Dict[str, Any]
    temperature: float


def _mode_section(options: GenerationOptions) -> str:
    if not options.is_engine:
        return (
            "Game Mode: legacy\n"
            "Stick to a standard quiz format: a clear, friendly title and description, "
            "theme 'default' unless the subject obviously fits science or history."
        )
    genre = options.preferred_genre.value if options.preferred_genre else "Auto-detect suitable genre"
    include = ", ".join(m.value for m in options.preferred_mechanics) or "None specified"
    avoid = ", ".join(m.value for m in options.avoid_mechanics) or "None specified"
    return (
        "Game Mode: engine\n"
        f"- Preferred Genre: {genre}\n"
        f"- Mechanics to Include: {include}\n"
        f"- Mechanics to Avoid: {avoid}\n"
        "Be creative with the title and description so they match the genre "
        "(e.g. for economic use words like 'Market' or 'Trade'; for an adventure, a quest). "
        "Pick the theme that best matches the genre."
    )


def build_generation_prompt(options: GenerationOptions, content: str) -> str:
    """Instructions for one attempt; ``content`` is already fitted to the budget."""
    themes = " | ".join(THEME_VALUES)
    return f"""
You are an expert educational game designer.
Analyze the lesson content below and create the data for a classroom game.

Context:
- Learning Objective: "{options.objective}"
- Bloom's Taxonomy Level: "{options.objective_type.value}"
{_mode_section(options)}

Task:
Create a game that fulfills the learning objective at the requested taxonomy level.
Write EXACTLY {QUESTION_COUNT} questions. Each question has EXACTLY {OPTION_COUNT} plausible options,
one correct answer (correctIndex 0-{OPTION_COUNT - 1}), an explanation of why it is correct,
the key concept being tested and, where one exists, a common misconception.
Questions should test understanding, not just recall. Give every question a unique id.
theme must be one of: {themes}.

Output valid JSON only, matching the provided schema. No backticks. No explanations.

Lesson Content:
\"\"\"
{content}
\"\"\"
""".strip()


def game_response_schema() -> Dict[str, Any]:
    """JSON Schema for the model's answer; code and isEngine are minted locally."""
    return {
        "type": "object",
        "properties": {
            "title": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "theme": {"type": "string", "enum": list(THEME_VALUES)},
            "questions": {
                "type": "array",
                "minItems": QUESTION_COUNT,
                "maxItems": QUESTION_COUNT,
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string", "minLength": 1},
                        "text": {"type": "string", "minLength": 1},
                        "options": {
                            "type": "array",
                            "minItems": OPTION_COUNT,
                            "maxItems": OPTION_COUNT,
                            "items": {"type": "string"},
                        },
                        "correctIndex": {"type": "integer", "minimum": 0, "maximum": OPTION_COUNT - 1},
                        "explanation": {"type": "string"},
                        "concept": {"type": "string"},
                        "misconception": {"type": "string"},
                    },
                    "required": ["id", "text", "options", "correctIndex", "explanation", "concept"],
                },
            },
        },
        "required": ["title", "description", "theme", "questions"],
    }


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a JSON Schema dict into Gemini's responseSchema dialect."""
    out: Dict[str, Any] = {}
    for key, val in schema.items():
        if key not in _GEMINI_SCHEMA_KEYS:
            continue
        if key == "type":
            out["type"] = str(val).upper()
        elif key == "properties":
            out["properties"] = {name: to_gemini_schema(sub) for name, sub in val.items()}
            out["propertyOrdering"] = list(val.keys())
        elif key == "items":
            out["items"] = to_gemini_schema(val)
        elif key in {"minItems", "maxItems"}:
            # int64 fields are strings in the REST encoding
            out[key] = str(val)
        else:
            out[key] = val
    return out


def build_generation_request(
    options: GenerationOptions,
    content: str,
    strategy: Strategy,
    schema: Optional[Dict[str, Any]] = None,
) -> GenerationRequest:
    return GenerationRequest(
        prompt=build_generation_prompt(options, content),
        schema=to_gemini_schema(schema or game_response_schema()),
        temperature=strategy.temperature,
    )
