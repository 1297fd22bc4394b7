import pytest

from models import QuizAttempt, _as_int, as_duration


def test_numbers_round_half_up():
    assert _as_int(62.5) == 63
    assert _as_int("2.5") == 3
    assert _as_int(None, default=7) == 7


@pytest.mark.parametrize("value", [float("inf"), "nan", "abc", True, [1]])
def test_bad_numbers_are_value_errors(value):
    with pytest.raises(ValueError):
        _as_int(value)


def test_client_percentage_rounds_half_up():
    attempt = QuizAttempt.from_dict({"userId": "u1", "topic": "Optics", "score": 5, "total": 8, "percentage": 62.5})
    assert attempt.percentage == 63


def test_duration():
    assert as_duration(None) is None
    assert as_duration("30") == 30
    with pytest.raises(ValueError):
        as_duration(-1)
    with pytest.raises(ValueError):
        QuizAttempt.from_dict({"userId": "u1", "topic": "Optics", "score": 1, "total": 2, "duration": "soon"})
