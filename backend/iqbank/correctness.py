"""Correctness representations for each question type.

A question's answer key is stored either on its options (multiple choice)
or in `Question.correct_answer` (JSON for grid questions). This module
turns the stored rows into one small value object per type, each able to
judge a submitted answer string and to render the key for result pages.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from .models import Question, QuestionOption, QuestionType


def _norm(s: str) -> str:
    return s.strip().casefold()


@dataclass(frozen=True)
class MultipleChoice:
    label: str

    def matches(self, submitted: str) -> bool:
        # labels are compared exactly; "d" is not "D"
        return submitted == self.label

    def display(self) -> str:
        return self.label


@dataclass(frozen=True)
class ShortAnswer:
    accepted: tuple

    def matches(self, submitted: str) -> bool:
        return _norm(submitted) in {_norm(a) for a in self.accepted}

    def display(self) -> str:
        return self.accepted[0]


@dataclass(frozen=True)
class Numeric:
    value: Decimal
    tolerance: Decimal = Decimal("0")

    def matches(self, submitted: str) -> bool:
        try:
            given = Decimal(submitted.strip().replace(",", "."))
        except InvalidOperation:
            return False
        if not given.is_finite():
            return False
        return abs(given - self.value) <= self.tolerance

    def display(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Grid:
    cells: tuple

    def matches(self, submitted: str) -> bool:
        try:
            given = _grid_cells(json.loads(submitted))
        except (ValueError, TypeError):
            return False
        return given == self.cells

    def display(self) -> str:
        return json.dumps([list(row) for row in self.cells], ensure_ascii=False)


Correctness = Union[MultipleChoice, ShortAnswer, Numeric, Grid]


def _grid_cells(data) -> tuple:
    """Normalize a 2-D array into a tuple of tuples of trimmed strings."""
    if not isinstance(data, list) or not all(isinstance(row, list) for row in data):
        raise TypeError("grid must be a list of rows")
    return tuple(tuple(_norm(str(c)) for c in row) for row in data)


def _parse_short_answer(raw: str) -> Optional[ShortAnswer]:
    # either a plain string or a JSON list of accepted strings
    try:
        data = json.loads(raw)
    except ValueError:
        data = raw
    if isinstance(data, list):
        accepted = tuple(str(a) for a in data if str(a).strip())
    else:
        accepted = (str(data),) if str(data).strip() else ()
    return ShortAnswer(accepted) if accepted else None


def _parse_numeric(raw: str) -> Optional[Numeric]:
    try:
        data = json.loads(raw)
    except ValueError:
        data = raw
    try:
        if isinstance(data, dict):
            return Numeric(Decimal(str(data["value"])), Decimal(str(data.get("tolerance", 0))))
        return Numeric(Decimal(str(data).strip()))
    except (InvalidOperation, KeyError):
        return None


def _parse_grid(raw: str) -> Optional[Grid]:
    try:
        return Grid(_grid_cells(json.loads(raw)))
    except (ValueError, TypeError):
        return None


def correctness_for(question: Question, options: Iterable[QuestionOption]) -> Optional[Correctness]:
    """Build the correctness variant for `question`.

    Returns `None` when no key can be resolved; callers score such
    questions as incorrect.
    """
    qtype = QuestionType(question.question_type)
    if qtype == QuestionType.multiple_choice:
        correct: List[QuestionOption] = [o for o in options if o.is_correct]
        if correct and correct[0].label is not None:
            return MultipleChoice(correct[0].label)
        return None
    raw = question.correct_answer
    if raw is None or not raw.strip():
        return None
    if qtype == QuestionType.short_answer:
        return _parse_short_answer(raw)
    if qtype == QuestionType.numeric:
        return _parse_numeric(raw)
    return _parse_grid(raw)
