from decimal import Decimal

from iqbank import models
from iqbank.correctness import Grid, MultipleChoice, Numeric, ShortAnswer, correctness_for


def _question(qtype, correct_answer=None):
    return models.Question(question_text="q", question_type=qtype, correct_answer=correct_answer)


def test_multiple_choice_uses_flagged_option():
    opts = [
        models.QuestionOption(label="A", is_correct=False),
        models.QuestionOption(label="B", is_correct=True),
    ]
    key = correctness_for(_question(models.QuestionType.multiple_choice), opts)
    assert key == MultipleChoice("B")
    assert key.matches("B")
    assert not key.matches(" B")
    assert key.display() == "B"


def test_multiple_choice_without_flag_is_unresolvable():
    opts = [models.QuestionOption(label="A"), models.QuestionOption(label="B")]
    assert correctness_for(_question(models.QuestionType.multiple_choice), opts) is None


def test_short_answer_accepts_any_listed_answer():
    key = correctness_for(_question(models.QuestionType.short_answer, '["eating", "eat"]'), [])
    assert isinstance(key, ShortAnswer)
    assert key.matches("  Eating ")
    assert key.matches("EAT")
    assert not key.matches("drinking")


def test_short_answer_plain_string():
    key = correctness_for(_question(models.QuestionType.short_answer, "Paris"), [])
    assert key.matches("paris")
    assert key.display() == "Paris"


def test_numeric_with_tolerance():
    key = correctness_for(_question(models.QuestionType.numeric, '{"value": "3.14", "tolerance": "0.01"}'), [])
    assert key == Numeric(Decimal("3.14"), Decimal("0.01"))
    assert key.matches("3.15")
    assert key.matches("3,13")
    assert not key.matches("3.2")
    assert not key.matches("pi")
    assert not key.matches("NaN")


def test_numeric_plain_value_is_exact():
    key = correctness_for(_question(models.QuestionType.numeric, "42"), [])
    assert key.matches("42.0")
    assert not key.matches("42.01")


def test_grid_compares_normalized_cells():
    key = correctness_for(_question(models.QuestionType.grid, '[["2", "3"], ["3", 2]]'), [])
    assert isinstance(key, Grid)
    assert key.matches('[[2, 3], [" 3", "2"]]')
    assert not key.matches('[[3, 2], [2, 3]]')
    assert not key.matches('not json')
    assert not key.matches('{"a": 1}')


def test_missing_or_broken_keys_are_unresolvable():
    assert correctness_for(_question(models.QuestionType.numeric, None), []) is None
    assert correctness_for(_question(models.QuestionType.numeric, "abc"), []) is None
    assert correctness_for(_question(models.QuestionType.grid, "[1, 2]"), []) is None
    assert correctness_for(_question(models.QuestionType.short_answer, "  "), []) is None
