"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
questions, results, ledger). Repositories return SQLModel objects and
perform commits/refreshes where appropriate. Multi-row writes run as one
unit and roll the session back on any failure.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from sqlmodel import Session, select
from sqlalchemy import func, or_, update
from sqlalchemy.orm import selectinload
from . import models


class UserRepository:
    """CRUD operations for `User` objects (balance excluded)."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def list_all(self) -> List[models.User]:
        """All users, newest first."""
        stmt = select(models.User).order_by(models.User.created_at.desc(), models.User.id.desc())
        return self.session.exec(stmt).all()

    def usernames(self, user_ids: Iterable[int]) -> Dict[int, str]:
        """Map the given ids to usernames in one query."""
        ids = set(user_ids)
        if not ids:
            return {}
        stmt = select(models.User.id, models.User.username).where(models.User.id.in_(ids))
        return {uid: name for uid, name in self.session.exec(stmt).all()}

    def search(self, query: str, excluding_user_id: int, limit: int) -> List[models.User]:
        """Users whose username contains `query` (case-insensitive), minus one id."""
        stmt = (
            select(models.User)
            .where(
                models.User.username.icontains(query, autoescape=True),
                models.User.id != excluding_user_id,
            )
            .order_by(models.User.username)
            .limit(limit)
        )
        return self.session.exec(stmt).all()

    def count(self) -> int:
        return self.session.exec(select(func.count()).select_from(models.User)).one()


class AssessmentRepository:
    """Read access to test definitions."""
    def __init__(self, session: Session):
        self.session = session

    def get_active(self) -> Optional[models.Assessment]:
        """Return the first published assessment, else the first one, else `None`."""
        stmt = select(models.Assessment).order_by(models.Assessment.published.desc(), models.Assessment.id)
        return self.session.exec(stmt).first()

    def create(self, assessment: models.Assessment) -> models.Assessment:
        self.session.add(assessment)
        self.session.commit()
        self.session.refresh(assessment)
        return assessment

    def get_by_slug(self, slug: str) -> Optional[models.Assessment]:
        stmt = select(models.Assessment).where(models.Assessment.slug == slug)
        return self.session.exec(stmt).first()


class QuestionRepository:
    """Question pool access. Questions are written only by the bank loader."""
    def __init__(self, session: Session):
        self.session = session

    def create_many(self, questions: List[models.Question], options: List[List[models.QuestionOption]]) -> List[models.Question]:
        """Create questions with their options in a single transaction."""
        try:
            for q, opts in zip(questions, options):
                q.options = list(opts)
                self.session.add(q)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        for q in questions:
            self.session.refresh(q)
        return questions

    def list_pool(self) -> List[models.Question]:
        """Every question with its options eagerly loaded, in authoring order."""
        stmt = (
            select(models.Question)
            .options(selectinload(models.Question.options))
            .order_by(models.Question.question_order, models.Question.id)
        )
        return self.session.exec(stmt).all()

    def get_many(self, question_ids: Iterable[int]) -> List[models.Question]:
        """Questions (with options) whose ids are in `question_ids`; unknown ids are skipped."""
        ids = set(question_ids)
        if not ids:
            return []
        stmt = (
            select(models.Question)
            .options(selectinload(models.Question.options))
            .where(models.Question.id.in_(ids))
        )
        return self.session.exec(stmt).all()

    def exists_by_text(self, question_text: str) -> bool:
        stmt = select(models.Question.id).where(models.Question.question_text == question_text)
        return self.session.exec(stmt).first() is not None


class ResultRepository:
    """Persist test results and their answers."""
    def __init__(self, session: Session):
        self.session = session

    def create_result(self, result: models.TestResult, answers: List[models.UserAnswer]) -> models.TestResult:
        """Store a `TestResult` and all of its `UserAnswer`s atomically.

        The result row is flushed first to obtain its id; nothing is
        visible to other sessions until the single commit.
        """
        try:
            self.session.add(result)
            self.session.flush()
            for a in answers:
                a.test_result_id = result.id
                self.session.add(a)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(result)
        return result

    def get(self, result_id: int) -> Optional[models.TestResult]:
        return self.session.get(models.TestResult, result_id)

    def list_for_user(self, user_id: int) -> List[models.TestResult]:
        """A user's results, most recent first."""
        stmt = (
            select(models.TestResult)
            .where(models.TestResult.user_id == user_id)
            .order_by(models.TestResult.completed_at.desc(), models.TestResult.id.desc())
        )
        return self.session.exec(stmt).all()

    def answers_for(self, result_id: int) -> List[models.UserAnswer]:
        stmt = (
            select(models.UserAnswer)
            .where(models.UserAnswer.test_result_id == result_id)
            .order_by(models.UserAnswer.id)
        )
        return self.session.exec(stmt).all()

    def count(self) -> int:
        return self.session.exec(select(func.count()).select_from(models.TestResult)).one()


class LedgerRepository:
    """The only code allowed to write `User.balance` or `Transaction.status`.

    Settlement uses conditional UPDATE statements so that the database,
    not the application, decides which of several racing writers wins.
    """

    SETTLED = 'settled'
    NOT_FOUND = 'not_found'
    NOT_PENDING = 'not_pending'
    INSUFFICIENT_FUNDS = 'insufficient_funds'

    def __init__(self, session: Session):
        self.session = session

    def create(self, tx: models.Transaction) -> models.Transaction:
        """Insert a pending transaction."""
        tx.status = models.TransactionStatus.pending
        self.session.add(tx)
        self.session.commit()
        self.session.refresh(tx)
        return tx

    def get(self, tx_id: int) -> Optional[models.Transaction]:
        return self.session.get(models.Transaction, tx_id, populate_existing=True)

    def balance_of(self, user_id: int) -> Optional[Decimal]:
        stmt = select(models.User.balance).where(models.User.id == user_id)
        return self.session.exec(stmt).first()

    def settle(self, tx_id: int, outcome: models.TransactionStatus) -> str:
        """Move a pending transaction to `outcome` as one atomic unit.

        For `completed` the status claim, the guarded debit and the credit
        commit together or not at all. Returns one of the class constants.
        """
        now = datetime.now(timezone.utc)
        try:
            # the claim is the first statement of the unit so the write lock
            # is taken before anything is read
            claim = (
                update(models.Transaction)
                .where(
                    models.Transaction.id == tx_id,
                    models.Transaction.status == models.TransactionStatus.pending,
                )
                .values(status=outcome, settled_at=now)
                .execution_options(synchronize_session=False)
            )
            if self.session.exec(claim).rowcount != 1:
                self.session.rollback()
                return self.NOT_FOUND if self.get(tx_id) is None else self.NOT_PENDING

            if outcome == models.TransactionStatus.completed:
                tx = self.get(tx_id)
                debit = (
                    update(models.User)
                    .where(models.User.id == tx.sender_id, models.User.balance >= tx.amount)
                    .values(balance=models.User.balance - tx.amount)
                    .execution_options(synchronize_session=False)
                )
                if self.session.exec(debit).rowcount != 1:
                    self.session.rollback()
                    return self.INSUFFICIENT_FUNDS
                credit = (
                    update(models.User)
                    .where(models.User.id == tx.receiver_id)
                    .values(balance=models.User.balance + tx.amount)
                    .execution_options(synchronize_session=False)
                )
                if self.session.exec(credit).rowcount != 1:
                    self.session.rollback()
                    return self.NOT_FOUND
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return self.SETTLED

    def list_for_user(self, user_id: int) -> List[models.Transaction]:
        """Transactions the user sent or received, newest first."""
        stmt = (
            select(models.Transaction)
            .where(or_(models.Transaction.sender_id == user_id, models.Transaction.receiver_id == user_id))
            .order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
        )
        return self.session.exec(stmt).all()

    def list_all(self) -> List[models.Transaction]:
        stmt = select(models.Transaction).order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
        return self.session.exec(stmt).all()

    def count_by_status(self, status: models.TransactionStatus) -> int:
        stmt = select(func.count()).select_from(models.Transaction).where(models.Transaction.status == status)
        return self.session.exec(stmt).one()

    def completed_volume(self) -> Decimal:
        # SUM keeps the column's Money type, so the total comes back as Decimal
        stmt = select(func.sum(models.Transaction.amount)).where(
            models.Transaction.status == models.TransactionStatus.completed
        )
        total = self.session.exec(stmt).one()
        return total if total is not None else Decimal("0.00")
