import os
import tempfile
from decimal import Decimal
from pathlib import Path

# Point the app at a throwaway SQLite file before anything imports iqbank.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="iqbank-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP_DIR / 'test.db'}")

import pytest
from sqlmodel import Session

from iqbank import models, repositories
from iqbank.database import engine, create_db_and_tables, drop_db_and_tables
from iqbank.services import AuthService, PWD_CTX
from iqbank.utils.question_bank import load_question_bank


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test empty tables."""
    drop_db_and_tables()
    create_db_and_tables()
    yield


@pytest.fixture
def make_user():
    """Create a user with an opening balance and return `(user, auth_headers)`."""
    def _make(username, balance="0.00", role=models.Role.user):
        with Session(engine) as session:
            user = repositories.UserRepository(session).create(models.User(
                username=username,
                email=f"{username}@example.com",
                password_hash=PWD_CTX.hash("secret123"),
                balance=Decimal(balance),
                role=role,
            ))
            session.expunge(user)
        token = AuthService.issue_token(user)
        return user, {"Authorization": f"Bearer {token}"}
    return _make


@pytest.fixture
def load_questions():
    """Load bank items and return the created question ids in order."""
    def _load(items, duration_minutes=None):
        with Session(engine) as session:
            assessment = None
            if duration_minutes is not None:
                assessment = repositories.AssessmentRepository(session).create(models.Assessment(
                    slug="iq", title="IQ", duration_minutes=duration_minutes, published=True,
                ))
            result = load_question_bank(session, items, assessment=assessment, deduplicate=False)
            assert result["errors"] == []
            return [q.id for q in repositories.QuestionRepository(session).list_pool()]
    return _load


def mc_item(text, correct="A", labels=("A", "B", "C", "D")):
    """A multiple-choice bank item with one correct label."""
    return {
        "questionText": text,
        "questionType": "multiple_choice",
        "options": [{"label": lab, "optionText": f"option {lab}", "isCorrect": lab == correct} for lab in labels],
    }


def balance_of(user_id):
    with Session(engine) as session:
        return repositories.LedgerRepository(session).balance_of(user_id)
