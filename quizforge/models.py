from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

QUESTION_COUNT = 5
OPTION_COUNT = 4


class ObjectiveType(str, Enum):
    """Bloom's taxonomy level the generated questions should target."""

    REMEMBER = "remember"
    UNDERSTAND = "understand"
    APPLY = "apply"
    ANALYZE = "analyze"
    EVALUATE = "evaluate"
    CREATE = "create"


class GameMode(str, Enum):
    LEGACY = "legacy"
    ENGINE = "engine"


class Genre(str, Enum):
    ECONOMIC = "economic"
    COMBAT = "combat"
    SPATIAL = "spatial"
    SOCIAL = "social"
    RACING = "racing"
    PUZZLE = "puzzle"


class Mechanic(str, Enum):
    ECONOMY = "economy"
    COMBAT = "combat"
    MOVEMENT = "movement"
    TIMER = "timer"


class Theme(str, Enum):
    DEFAULT = "default"
    ADVENTURE = "adventure"
    SCIENCE = "science"
    HISTORY = "history"
    ECONOMIC = "economic"
    COMBAT = "combat"
    SPATIAL = "spatial"
    SOCIAL = "social"
    RACING = "racing"
    PUZZLE = "puzzle"


THEME_VALUES = [t.value for t in Theme]


class _WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class GenerationOptions(_WireModel):
    """One generation request as entered by an educator on the create screen."""

    content: str
    objective: str
    objective_type: ObjectiveType = ObjectiveType.UNDERSTAND
    game_mode: GameMode = GameMode.ENGINE
    preferred_genre: Optional[Genre] = None
    preferred_mechanics: Tuple[Mechanic, ...] = ()
    avoid_mechanics: Tuple[Mechanic, ...] = ()

    @field_validator("content")
    @classmethod
    def _content_present(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content must not be empty")
        return v

    @field_validator("objective")
    @classmethod
    def _objective_present(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("objective must not be empty")
        return v

    @field_validator("preferred_genre", mode="before")
    @classmethod
    def _blank_genre_is_auto(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("preferred_mechanics", "avoid_mechanics", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return () if v is None else v

    @model_validator(mode="after")
    def _mechanics_disjoint(self) -> "GenerationOptions":
        both = set(self.preferred_mechanics) & set(self.avoid_mechanics)
        if both:
            names = ", ".join(sorted(m.value for m in both))
            raise ValueError(f"mechanics cannot be both preferred and avoided: {names}")
        return self

    @property
    def is_engine(self) -> bool:
        return self.game_mode == GameMode.ENGINE


class Question(_WireModel):
    id: str
    text: str
    options: List[str]
    correct_index: int
    explanation: str
    concept: str
    misconception: Optional[str] = None

    @model_validator(mode="after")
    def _correct_index_in_range(self) -> "Question":
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correctIndex {self.correct_index} out of range for {len(self.options)} options"
            )
        return self

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]


class GameData(_WireModel):
    """A validated game, ready to host or play."""

    code: str
    is_engine: bool
    title: str
    description: str
    theme: Theme
    questions: List[Question]

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
