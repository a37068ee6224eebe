"""Assessment engine: session sampling, scoring and IQ derivation.

Everything here is a pure function over already-loaded rows so it can be
unit tested without a database. `services.AssessmentService` wires these
functions to the repositories.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .correctness import Correctness, correctness_for
from .errors import ValidationError
from .models import Question

DEFAULT_QUESTION_COUNT = 20


@dataclass
class GradedAnswer:
    question_id: int
    selected_answer: str
    is_correct: bool


@dataclass
class ScoreCard:
    score: int
    total_questions: int
    percentage: float
    iq_score: int
    graded: List[GradedAnswer] = field(default_factory=list)

    @property
    def rounded_percentage(self) -> int:
        return round_half_up(self.percentage)


def round_half_up(value: float) -> int:
    """Round like JavaScript's `Math.round` (halves go up, not to even)."""
    return math.floor(value + 0.5)


def iq_from_percentage(p: float) -> int:
    """Map a percentage of correct answers to an IQ-style score.

    The banding is a fixed policy kept bit-for-bit compatible with scores
    already stored; it is not a validated psychometric scale.
    """
    if p >= 90:
        return 130 + math.floor((p - 90) * 2)
    if p >= 75:
        return 115 + math.floor((p - 75) * 1)
    if p >= 50:
        return 100 + math.floor((p - 50) * 0.6)
    if p >= 25:
        return 85 + math.floor((p - 25) * 0.6)
    return 70 + math.floor(p * 0.6)


def public_question(question: Question) -> dict:
    """Client-facing view of a question. Never includes answer keys."""
    return {
        'id': question.id,
        'questionText': question.question_text,
        'imageUrl': question.image_url,
        'questionType': question.question_type,
        'options': [
            {'label': o.label, 'optionText': o.option_text, 'imageUrl': o.image_url}
            for o in question.options
        ],
    }


def select_session(pool: Sequence[Question], target_count: int = DEFAULT_QUESTION_COUNT,
                   rng: Optional[random.Random] = None) -> List[dict]:
    """Draw `min(target_count, len(pool))` distinct questions at random.

    Nothing is persisted; the client echoes back question ids with its
    answers on submission.
    """
    if target_count < 0:
        raise ValidationError('target_count must be >= 0')
    rng = rng or random
    k = min(target_count, len(pool))
    return [public_question(q) for q in rng.sample(list(pool), k)]


def validate_answers(answers) -> List[Tuple[int, str]]:
    if not answers:
        raise ValidationError('answers are required')
    pairs = []
    details = []
    for idx, item in enumerate(answers):
        try:
            qid, selected = item
        except (TypeError, ValueError):
            details.append({'index': idx, 'error': 'expected a (questionId, selectedAnswer) pair'})
            continue
        if not isinstance(qid, int) or isinstance(qid, bool):
            details.append({'index': idx, 'field': 'questionId', 'error': 'must be an integer'})
            continue
        if not isinstance(selected, str):
            details.append({'index': idx, 'field': 'selectedAnswer', 'error': 'must be a string'})
            continue
        pairs.append((qid, selected))
    if details:
        raise ValidationError('invalid answers', details=details)
    return pairs


def score_answers(answers, index: Mapping[int, Optional[Correctness]]) -> ScoreCard:
    """Score submitted `(question_id, selected_answer)` pairs.

    Questions missing from `index` (or with no resolvable key) count as
    incorrect. `total_questions` is the number of submitted pairs, not the
    size of the pool or of the session that was served.
    """
    pairs = validate_answers(answers)
    graded = []
    correct = 0
    for qid, selected in pairs:
        key = index.get(qid)
        is_correct = key is not None and key.matches(selected)
        if is_correct:
            correct += 1
        graded.append(GradedAnswer(question_id=qid, selected_answer=selected, is_correct=is_correct))
    total = len(pairs)
    percentage = (correct / total) * 100
    return ScoreCard(
        score=correct,
        total_questions=total,
        percentage=percentage,
        iq_score=iq_from_percentage(percentage),
        graded=graded,
    )


def build_index(questions: Sequence[Question]) -> Dict[int, Optional[Correctness]]:
    """Build a question id -> answer key lookup from questions with options loaded."""
    return {q.id: correctness_for(q, q.options) for q in questions}
