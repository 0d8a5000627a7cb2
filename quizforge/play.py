from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

from quizforge.models import GameData, Question, _WireModel

log = logging.getLogger(__name__)

CORRECT_POINTS = 100
STREAK_BONUS = 10
ENERGY_GAIN = 25
HEALTH_LOSS = 15
METER_MAX = 100


class Phase(str, Enum):
    LOBBY = "lobby"
    QUESTION = "question"
    SUBMITTED = "submitted"
    RESULTS = "results"
    COMPLETE = "complete"


class GameState(_WireModel):
    current_question_index: int
    score: int
    answers: List[int]
    is_finished: bool


class PlaySession:
    """Single-player run through a generated game.

    lobby -> question -> submitted -> results -> question ... -> complete.
    Health and energy only move for engine games.
    """

    def __init__(self, game: GameData) -> None:
        if not game.questions:
            raise ValueError("game has no questions")
        self.game = game
        self.phase = Phase.LOBBY
        self.index = 0
        self.score = 0
        self.streak = 0
        self.health = METER_MAX
        self.energy = 0
        self.answers: List[int] = []
        self.last_correct: Optional[bool] = None

    @property
    def current_question(self) -> Question:
        return self.game.questions[self.index]

    @property
    def is_last_question(self) -> bool:
        return self.index >= len(self.game.questions) - 1

    def _require(self, *phases: Phase) -> None:
        if self.phase not in phases:
            allowed = "/".join(p.value for p in phases)
            raise ValueError(f"cannot do that in phase {self.phase.value} (needs {allowed})")

    def start(self) -> None:
        self._require(Phase.LOBBY)
        self.phase = Phase.QUESTION
        log.debug("play: started code=%s", self.game.code)

    def answer(self, index: int) -> bool:
        """Submit an option index for the current question; returns correctness."""
        self._require(Phase.QUESTION)
        question = self.current_question
        if not 0 <= index < len(question.options):
            raise ValueError(f"answer index {index} out of range")
        correct = index == question.correct_index
        if correct:
            self.score += CORRECT_POINTS + STREAK_BONUS * self.streak
            self.streak += 1
            if self.game.is_engine:
                self.energy = min(self.energy + ENERGY_GAIN, METER_MAX)
        else:
            self.streak = 0
            if self.game.is_engine:
                self.health = max(self.health - HEALTH_LOSS, 0)
        self.answers.append(index)
        self.last_correct = correct
        self.phase = Phase.SUBMITTED
        return correct

    def reveal(self) -> None:
        self._require(Phase.SUBMITTED)
        self.phase = Phase.RESULTS

    def next_question(self) -> None:
        self._require(Phase.SUBMITTED, Phase.RESULTS)
        if self.is_last_question:
            self.phase = Phase.COMPLETE
            log.debug("play: complete code=%s score=%d", self.game.code, self.score)
            return
        self.index += 1
        self.last_correct = None
        self.phase = Phase.QUESTION

    def state(self) -> GameState:
        return GameState(
            current_question_index=self.index,
            score=self.score,
            answers=list(self.answers),
            is_finished=self.phase == Phase.COMPLETE,
        )
