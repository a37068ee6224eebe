"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.

Money columns are stored as integer cents (`Money`) and surface as
two-place `decimal.Decimal`, so balance arithmetic inside SQL stays
exact on every backend. `User.balance` is only ever written by
`repositories.LedgerRepository`.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from sqlalchemy import BigInteger, CheckConstraint, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone
from typing import List

CENT = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Money(TypeDecorator):
    """`Decimal` amounts persisted as integer minor units."""
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        cents = (Decimal(str(value)) / CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(cents)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(int(value)) * CENT).quantize(CENT)


class Role(str, Enum):
    user = "user"
    admin = "admin"


class QuestionType(str, Enum):
    multiple_choice = "multiple_choice"
    short_answer = "short_answer"
    numeric = "numeric"
    grid = "grid"


class TransactionStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class User(SQLModel, table=True):
    """A registered account holder.

    Fields:
    - `username`: unique display/login name
    - `email`: unique login address
    - `password_hash`: hashed password string (never store plaintext)
    - `balance`: virtual currency, never negative
    - `role`: `user` or `admin`
    """
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_user_balance_non_negative"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    balance: Decimal = Field(default=Decimal("0.00"), sa_type=Money)
    role: Role = Field(default=Role.user)
    created_at: datetime = Field(default_factory=_utcnow)


class Assessment(SQLModel, table=True):
    """A named test definition. Only `duration_minutes` is read by the core."""
    id: Optional[int] = Field(default=None, primary_key=True)
    slug: str = Field(index=True, unique=True)
    title: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    published: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class Question(SQLModel, table=True):
    """One assessable item.

    Multiple-choice correctness lives on the options; the other types keep
    it in `correct_answer` (a JSON document for `grid`).
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    assessment_id: Optional[int] = Field(default=None, foreign_key='assessment.id', index=True)
    question_text: str
    image_url: Optional[str] = None
    question_type: QuestionType = Field(default=QuestionType.multiple_choice)
    correct_answer: Optional[str] = None
    grid_data: Optional[str] = None
    difficulty: int = 1
    question_order: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    options: List['QuestionOption'] = Relationship(back_populates='question')


class QuestionOption(SQLModel, table=True):
    """Selectable answer for a `Question`.

    `is_correct` marks whether this option is considered correct.
    """
    __table_args__ = (UniqueConstraint("question_id", "label", name="uq_option_question_label"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key='question.id', index=True)
    label: str
    option_text: Optional[str] = None
    image_url: Optional[str] = None
    is_correct: bool = False
    question: Optional[Question] = Relationship(back_populates='options')


class TestResult(SQLModel, table=True):
    """A completed, scored attempt. Immutable once stored."""
    __test__ = False

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    assessment_id: Optional[int] = Field(default=None, foreign_key='assessment.id')
    score: int
    total_questions: int
    iq_score: int
    completed_at: datetime = Field(default_factory=_utcnow)
    answers: List['UserAnswer'] = Relationship(back_populates='test_result')


class UserAnswer(SQLModel, table=True):
    """A single submitted answer inside a `TestResult`.

    `question_id` is not a foreign key: a submission may reference an
    unknown question, which is recorded and scored as incorrect.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    test_result_id: int = Field(foreign_key='testresult.id', index=True)
    question_id: int = Field(index=True)
    selected_answer: Optional[str] = None
    is_correct: bool = False
    test_result: Optional[TestResult] = Relationship(back_populates='answers')


class Transaction(SQLModel, table=True):
    """A balance transfer request between two users."""
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        CheckConstraint("sender_id <> receiver_id", name="ck_transaction_distinct_parties"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    sender_id: int = Field(foreign_key='user.id', index=True)
    receiver_id: int = Field(foreign_key='user.id', index=True)
    amount: Decimal = Field(sa_type=Money)
    status: TransactionStatus = Field(default=TransactionStatus.pending, index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    settled_at: Optional[datetime] = None
