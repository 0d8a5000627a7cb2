import copy
import json

import pytest

from quizforge.models import GameData, GenerationOptions

_VALID_GAME = {
    "title": "Leaf Lab",
    "description": "Explore how plants turn light into food.",
    "theme": "science",
    "questions": [
        {
            "id": f"q{i + 1}",
            "text": f"Photosynthesis question {i + 1}?",
            "options": ["Light", "Water", "Carbon dioxide", "Oxygen"],
            "correctIndex": i % 4,
            "explanation": "Because that is how the light reactions work.",
            "concept": "Photosynthesis",
            "misconception": "Plants eat soil.",
        }
        for i in range(5)
    ],
}


class ScriptedClient:
    """Stands in for a model client; each call consumes the next outcome.

    An outcome is a string (returned), an exception (raised) or a zero-arg
    callable producing either.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def generate(self, prompt, schema, temperature, timeout):
        self.calls.append({"prompt": prompt, "schema": schema, "temperature": temperature, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def valid_game():
    return copy.deepcopy(_VALID_GAME)


@pytest.fixture
def valid_game_json():
    return json.dumps(_VALID_GAME)


@pytest.fixture
def scripted_client():
    return ScriptedClient


@pytest.fixture
def engine_options():
    return GenerationOptions(
        content="Photosynthesis converts light energy into chemical energy stored in glucose.",
        objective="Explain the inputs and outputs of photosynthesis",
    )


@pytest.fixture
def make_game(valid_game):
    def _make(is_engine=True):
        doc = dict(valid_game, code="AB12", isEngine=is_engine)
        return GameData.model_validate(doc)

    return _make
