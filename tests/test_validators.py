import pytest

from quizforge.errors import FormatError
from quizforge.validators import collect_errors, validate_game_payload


def test_valid_game_has_no_errors(valid_game):
    assert collect_errors(valid_game) == []
    validate_game_payload(valid_game)


def test_missing_title_reported_at_root(valid_game):
    del valid_game["title"]
    errors = collect_errors(valid_game)
    assert errors[0]["path"] == "(root)"
    assert "title" in errors[0]["message"]


def test_wrong_type_reported_with_path(valid_game):
    valid_game["questions"][2]["correctIndex"] = "first"
    paths = [e["path"] for e in collect_errors(valid_game)]
    assert "questions[2].correctIndex" in paths


def test_duplicate_ids_reported(valid_game):
    valid_game["questions"][3]["id"] = "q1"
    errors = collect_errors(valid_game)
    assert errors == [
        {"path": "questions[3].id", "message": "duplicate id 'q1' (also used by questions[0])"}
    ]


def test_blank_option_reported(valid_game):
    valid_game["questions"][0]["options"][2] = "   "
    paths = [e["path"] for e in collect_errors(valid_game)]
    assert paths == ["questions[0].options[2]"]


def test_validate_raises_with_all_errors(valid_game):
    valid_game["theme"] = "space"
    valid_game["questions"][1]["options"] = ["only one"]
    with pytest.raises(FormatError) as exc_info:
        validate_game_payload(valid_game)
    err = exc_info.value
    assert len(err.errors) >= 2
    assert "failed validation" in str(err)


def test_non_object_payload():
    assert collect_errors(["not", "a", "game"])
