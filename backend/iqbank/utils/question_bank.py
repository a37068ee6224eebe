"""Question bank loader.

Question authoring happens outside this service; the pool arrives as a
JSON document and is loaded once. Each item looks like:

    {"questionText": "...", "questionType": "multiple_choice",
     "imageUrl": null, "difficulty": 1,
     "options": [{"label": "A", "optionText": "96", "isCorrect": false}, ...],
     "correctAnswer": null}

Non multiple-choice items carry their key in `correctAnswer` instead of
options (a JSON array for `grid`).
"""

import json
from typing import Dict, List, Optional
from sqlmodel import Session
from .. import models, repositories
from ..correctness import correctness_for


def parse_question_bank(data: bytes) -> List[Dict]:
    """Decode a JSON question bank into a list of dicts."""
    items = json.loads(data.decode('utf-8'))
    if not isinstance(items, list):
        raise ValueError('question bank must be a JSON array')
    return items


def validate_item(p: dict) -> None:
    """Validate one bank item and raise ValueError on error."""
    if not isinstance(p, dict):
        raise ValueError('question item must be an object')
    qt = p.get('questionText')
    if not qt or not isinstance(qt, str) or not qt.strip():
        raise ValueError('missing or empty questionText')
    try:
        qtype = models.QuestionType(p.get('questionType') or 'multiple_choice')
    except ValueError:
        raise ValueError(f"unknown questionType: {p.get('questionType')}")
    options = p.get('options') or []
    if not isinstance(options, list):
        raise ValueError('options must be a list')
    labels = set()
    for o in options:
        label = o.get('label') if isinstance(o, dict) else None
        if not isinstance(label, str) or not label.strip():
            raise ValueError('each option needs a non-empty string label')
        if label in labels:
            raise ValueError(f"duplicate option label: {label}")
        labels.add(label)
    difficulty = p.get('difficulty')
    if difficulty is not None and (isinstance(difficulty, bool) or not isinstance(difficulty, int)):
        raise ValueError('difficulty must be an integer')
    if qtype == models.QuestionType.multiple_choice:
        if len(options) < 2:
            raise ValueError('multiple choice questions need at least 2 options')
        if sum(1 for o in options if o.get('isCorrect')) != 1:
            raise ValueError('multiple choice questions need exactly one correct option')
    elif p.get('correctAnswer') in (None, ''):
        raise ValueError(f'{qtype.value} questions need correctAnswer')


def _to_rows(p: dict, assessment_id: Optional[int], order: int):
    qtype = models.QuestionType(p.get('questionType') or 'multiple_choice')
    raw_key = p.get('correctAnswer')
    if raw_key is not None and not isinstance(raw_key, str):
        raw_key = json.dumps(raw_key)
    q = models.Question(
        assessment_id=assessment_id,
        question_text=p['questionText'].strip(),
        image_url=p.get('imageUrl'),
        question_type=qtype,
        correct_answer=raw_key,
        grid_data=json.dumps(p['gridData']) if p.get('gridData') is not None else None,
        difficulty=p.get('difficulty') or 1,
        question_order=order,
    )
    options = [
        models.QuestionOption(
            label=o['label'],
            option_text=o.get('optionText'),
            image_url=o.get('imageUrl'),
            is_correct=bool(o.get('isCorrect')),
        )
        for o in p.get('options') or []
    ]
    return q, options


def load_question_bank(session: Session, items: List[Dict], assessment: Optional[models.Assessment] = None,
                       deduplicate: bool = True, dry_run: bool = False) -> dict:
    """Validate and persist bank items.

    Returns `{created, skipped, errors}`. Invalid items are reported per
    index and skipped; valid ones are written in a single transaction.
    With `deduplicate`, questions whose text already exists are skipped.
    """
    repo = repositories.QuestionRepository(session)
    questions, options, errors = [], [], []
    skipped = 0
    for idx, p in enumerate(items):
        try:
            validate_item(p)
        except ValueError as e:
            errors.append({'index': idx, 'error': str(e)})
            continue
        if deduplicate and repo.exists_by_text(p['questionText'].strip()):
            skipped += 1
            continue
        q, opts = _to_rows(p, assessment.id if assessment else None, idx)
        if correctness_for(q, opts) is None:
            errors.append({'index': idx, 'error': 'correctAnswer could not be parsed'})
            continue
        questions.append(q)
        options.append(opts)
    if questions and not dry_run:
        repo.create_many(questions, options)
    return {'created': 0 if dry_run else len(questions), 'skipped': skipped, 'errors': errors}
