import math
import random

import pytest

from iqbank import assessment, models
from iqbank.correctness import MultipleChoice
from iqbank.errors import ValidationError


@pytest.mark.parametrize("p, expected", [
    (0, 70),
    (24.999, 84),
    (25, 85),
    (49.999, 99),
    (50, 100),
    (74.999, 114),
    (75, 115),
    (89.999, 129),
    (90, 130),
    (100, 150),
])
def test_iq_band_boundaries(p, expected):
    assert assessment.iq_from_percentage(p) == expected


def test_round_half_up_matches_math_round():
    assert assessment.round_half_up(2.5) == 3
    assert assessment.round_half_up(66.66666666666667) == 67
    assert assessment.round_half_up(12.5) == 13
    assert assessment.round_half_up(0) == 0


def _pool(n):
    pool = []
    for i in range(1, n + 1):
        q = models.Question(id=i, question_text=f"Q{i}")
        q.options = [
            models.QuestionOption(id=i * 10 + j, question_id=i, label=lab, option_text=lab, is_correct=(j == 0))
            for j, lab in enumerate("ABCD")
        ]
        pool.append(q)
    return pool


def test_select_session_samples_without_duplicates():
    pool = _pool(50)
    questions = assessment.select_session(pool, 20, rng=random.Random(7))
    ids = [q["id"] for q in questions]
    assert len(ids) == 20
    assert len(set(ids)) == 20
    assert set(ids) <= {q.id for q in pool}


def test_select_session_hides_correctness():
    questions = assessment.select_session(_pool(5), 20, rng=random.Random(1))
    for q in questions:
        assert "correctAnswer" not in q
        for opt in q["options"]:
            assert set(opt) == {"label", "optionText", "imageUrl"}


def test_select_session_small_pool_returns_everything():
    pool = _pool(3)
    questions = assessment.select_session(pool, 20)
    assert sorted(q["id"] for q in questions) == [1, 2, 3]
    assert assessment.select_session([], 20) == []


def test_score_counts_unknown_questions_as_incorrect():
    index = {1: MultipleChoice("D"), 2: MultipleChoice("B"), 3: None}
    card = assessment.score_answers([(1, "D"), (2, "A"), (3, "A"), (99, "C")], index)
    assert card.score == 1
    assert card.total_questions == 4
    assert card.percentage == 25.0
    assert card.iq_score == 85
    assert [g.is_correct for g in card.graded] == [True, False, False, False]


def test_score_single_correct_answer_is_top_band():
    card = assessment.score_answers([(1, "D")], {1: MultipleChoice("D")})
    assert (card.score, card.total_questions, card.iq_score) == (1, 1, 150)
    assert card.rounded_percentage == 100


def test_score_is_bounded_by_submission_length():
    index = {i: MultipleChoice("A") for i in range(1, 4)}
    card = assessment.score_answers([(1, "A"), (2, "A"), (3, "B")], index)
    assert 0 <= card.score <= card.total_questions
    assert card.rounded_percentage == 67
    assert card.iq_score == 100 + math.floor(((2 / 3) * 100 - 50) * 0.6)


def test_score_labels_are_case_sensitive():
    card = assessment.score_answers([(1, "d")], {1: MultipleChoice("D")})
    assert card.score == 0


def test_score_rejects_empty_submission():
    with pytest.raises(ValidationError):
        assessment.score_answers([], {})


@pytest.mark.parametrize("answers", [
    [("1", "A")],
    [(1, None)],
    [(True, "A")],
    [(1,)],
])
def test_score_rejects_malformed_pairs(answers):
    with pytest.raises(ValidationError) as exc:
        assessment.score_answers(answers, {})
    assert exc.value.details
