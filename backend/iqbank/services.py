"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the pure assessment functions. Services perform validation, execute
domain logic and persist aggregates via repositories. They raise the
errors in `errors` and leave HTTP mapping to `main`.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional
from passlib.context import CryptContext
import jwt
from sqlmodel import Session
from . import assessment, models, repositories
from .config import settings
from .correctness import correctness_for
from .errors import (
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
CENT = Decimal("0.01")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def format_money(value: Optional[Decimal]) -> str:
    """Render a balance or amount as a two-decimal string."""
    return str(Decimal(value or 0).quantize(CENT))


def user_payload(user: models.User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'role': user.role,
        'balance': format_money(user.balance),
    }


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, email: str, password: str) -> models.User:
        """Create a new user with a hashed password and a zero balance.

        Raises `ValidationError` for short usernames/passwords, malformed
        emails or duplicates.
        """
        username = (username or '').strip()
        email = (email or '').strip().lower()
        details = []
        if len(username) < 3:
            details.append({'field': 'username', 'error': 'must be at least 3 characters'})
        if not EMAIL_RE.match(email):
            details.append({'field': 'email', 'error': 'must be a valid email address'})
        if len(password or '') < 6:
            details.append({'field': 'password', 'error': 'must be at least 6 characters'})
        if details:
            raise ValidationError('invalid registration data', details=details)
        if self.user_repo.get_by_email(email):
            raise ValidationError('email is already registered')
        if self.user_repo.get_by_username(username):
            raise ValidationError('username is already taken')
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, email=email, password_hash=hashed)
        user = self.user_repo.create(u)
        logger.info("user registered id=%s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> Optional[models.User]:
        """Return the user when the credentials match, else `None`."""
        user = self.user_repo.get_by_email((email or '').strip().lower())
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return user

    @staticmethod
    def issue_token(user: models.User) -> str:
        """Sign a JWT carrying the user's id, name and role."""
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {
            "user_id": user.id,
            "username": user.username,
            "role": models.Role(user.role).value,
            "exp": int(expire.timestamp()),
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class AssessmentService:
    """Serve randomized test sessions, grade submissions and show results."""
    def __init__(self, session: Session):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)
        self.a_repo = repositories.AssessmentRepository(session)
        self.result_repo = repositories.ResultRepository(session)

    def start_session(self, target_count: Optional[int] = None, rng=None) -> dict:
        """Sample questions for a new attempt. Nothing is stored."""
        target = settings.QUESTION_COUNT if target_count is None else target_count
        pool = self.q_repo.list_pool()
        questions = assessment.select_session(pool, target, rng=rng)
        active = self.a_repo.get_active()
        return {
            'durationMinutes': active.duration_minutes if active else None,
            'totalQuestions': len(questions),
            'questions': questions,
        }

    def submit(self, user: models.User, answers: List[tuple]) -> dict:
        """Grade `(question_id, selected_answer)` pairs and store the result.

        The result and all answer rows are written in one transaction.
        """
        pairs = assessment.validate_answers(answers)
        questions = self.q_repo.get_many(qid for qid, _ in pairs)
        index = assessment.build_index(questions)
        card = assessment.score_answers(pairs, index)
        active = self.a_repo.get_active()
        result = models.TestResult(
            user_id=user.id,
            assessment_id=active.id if active else None,
            score=card.score,
            total_questions=card.total_questions,
            iq_score=card.iq_score,
        )
        rows = [
            models.UserAnswer(question_id=g.question_id, selected_answer=g.selected_answer, is_correct=g.is_correct)
            for g in card.graded
        ]
        created = self.result_repo.create_result(result, rows)
        logger.info("test submitted user=%s result=%s score=%s/%s iq=%s",
                    user.id, created.id, card.score, card.total_questions, card.iq_score)
        return {
            'id': created.id,
            'score': card.score,
            'totalQuestions': card.total_questions,
            'iqScore': card.iq_score,
            'percentage': card.rounded_percentage,
        }

    def history(self, user_id: int) -> List[models.TestResult]:
        return self.result_repo.list_for_user(user_id)

    def result_detail(self, result_id: int, requester: models.User) -> dict:
        """Return a result with every answer, its options and the answer key.

        Only the owner or an admin may see it.
        """
        result = self.result_repo.get(result_id)
        if not result:
            raise NotFoundError('test result not found')
        if result.user_id != requester.id and requester.role != models.Role.admin:
            raise ForbiddenError('not allowed to view this result')
        answers = self.result_repo.answers_for(result.id)
        questions = {q.id: q for q in self.q_repo.get_many(a.question_id for a in answers)}
        detail = []
        for a in answers:
            q = questions.get(a.question_id)
            key = correctness_for(q, q.options) if q else None
            detail.append({
                'questionId': a.question_id,
                'questionText': q.question_text if q else None,
                'questionType': q.question_type if q else None,
                'selectedAnswer': a.selected_answer,
                'isCorrect': a.is_correct,
                'options': [{'label': o.label, 'optionText': o.option_text} for o in q.options] if q else [],
                'correctAnswer': key.display() if key else None,
            })
        out = result_summary(result)
        out['answers'] = detail
        return out


def result_summary(result: models.TestResult) -> dict:
    return {
        'id': result.id,
        'userId': result.user_id,
        'score': result.score,
        'totalQuestions': result.total_questions,
        'iqScore': result.iq_score,
        'completedAt': result.completed_at,
    }


def parse_amount(raw) -> Decimal:
    """Parse a transfer amount into a positive two-place `Decimal`.

    Floats are converted through `str` so `30.1` means 30.10, not its
    binary approximation.
    """
    if isinstance(raw, bool) or raw is None:
        raise ValidationError('amount must be a number')
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError('amount must be a number')
    if not amount.is_finite() or amount <= 0:
        raise ValidationError('amount must be greater than 0')
    if amount != amount.quantize(CENT):
        raise ValidationError('amount must have at most 2 decimal places')
    if amount > settings.MAX_TRANSFER_AMOUNT:
        raise ValidationError('amount is too large')
    return amount.quantize(CENT)


class LedgerService:
    """Balance transfers: request, admin settlement and read projections.

    The balance check at request time is advisory and reserves nothing.
    Settlement re-checks solvency inside the same database transaction
    that moves the money.
    """
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.ledger = repositories.LedgerRepository(session)

    def request_transfer(self, sender: models.User, receiver_id, amount) -> models.Transaction:
        amount = parse_amount(amount)
        if isinstance(receiver_id, bool) or not isinstance(receiver_id, int):
            raise ValidationError('receiverId must be an integer')
        if receiver_id == sender.id:
            raise ValidationError('cannot transfer to yourself')
        if not self.user_repo.get(receiver_id):
            raise NotFoundError('receiver not found')
        balance = self.ledger.balance_of(sender.id)
        if balance is None:
            raise NotFoundError('sender not found')
        if balance < amount:
            raise InsufficientFundsError('insufficient balance')
        tx = self.ledger.create(models.Transaction(sender_id=sender.id, receiver_id=receiver_id, amount=amount))
        logger.info("transfer requested tx=%s sender=%s receiver=%s amount=%s",
                    tx.id, sender.id, receiver_id, format_money(amount))
        return tx

    def settle(self, tx_id: int, outcome, acting_admin: models.User) -> models.Transaction:
        """Complete or fail a pending transaction on behalf of an admin."""
        if acting_admin.role != models.Role.admin:
            raise ForbiddenError('admin privileges required')
        try:
            outcome = models.TransactionStatus(outcome)
        except ValueError:
            raise ValidationError('status must be "completed" or "failed"')
        if outcome == models.TransactionStatus.pending:
            raise ValidationError('status must be "completed" or "failed"')
        verdict = self.ledger.settle(tx_id, outcome)
        if verdict == self.ledger.NOT_FOUND:
            raise NotFoundError('transaction not found')
        if verdict == self.ledger.NOT_PENDING:
            logger.warning("settlement rejected tx=%s admin=%s: not pending", tx_id, acting_admin.id)
            raise InvalidStateError('only pending transactions can be settled')
        if verdict == self.ledger.INSUFFICIENT_FUNDS:
            logger.warning("settlement rejected tx=%s admin=%s: sender balance too low", tx_id, acting_admin.id)
            raise InsufficientFundsError("sender's balance is insufficient")
        logger.info("transaction settled tx=%s status=%s admin=%s", tx_id, outcome.value, acting_admin.id)
        return self.ledger.get(tx_id)

    def balance_of(self, user_id: int) -> Decimal:
        balance = self.ledger.balance_of(user_id)
        if balance is None:
            raise NotFoundError('user not found')
        return balance

    def history_for(self, user_id: int) -> List[dict]:
        """The user's transfers, newest first, tagged `sent` or `received`
        with the other party's id and username."""
        txs = self.ledger.list_for_user(user_id)
        names = self.user_repo.usernames({t.sender_id for t in txs} | {t.receiver_id for t in txs})
        out = []
        for t in txs:
            item = transaction_payload(t, names)
            sent = t.sender_id == user_id
            item['type'] = 'sent' if sent else 'received'
            item['counterpartyId'] = t.receiver_id if sent else t.sender_id
            item['counterpartyUsername'] = names.get(item['counterpartyId'])
            out.append(item)
        return out

    def search_transferable_users(self, query: Optional[str], excluding_user_id: int) -> List[dict]:
        query = (query or '').strip()
        if len(query) < 2:
            return []
        users = self.user_repo.search(query, excluding_user_id, settings.USER_SEARCH_LIMIT)
        return [{'id': u.id, 'username': u.username} for u in users]

    def all_transactions(self) -> List[dict]:
        txs = self.ledger.list_all()
        names = self.user_repo.usernames({t.sender_id for t in txs} | {t.receiver_id for t in txs})
        return [transaction_payload(t, names) for t in txs]


def transaction_payload(t: models.Transaction, names: dict) -> dict:
    return {
        'id': t.id,
        'senderId': t.sender_id,
        'receiverId': t.receiver_id,
        'senderUsername': names.get(t.sender_id),
        'receiverUsername': names.get(t.receiver_id),
        'amount': format_money(t.amount),
        'status': t.status,
        'createdAt': t.created_at,
        'settledAt': t.settled_at,
    }


class AdminService:
    """Read-only admin dashboards."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.result_repo = repositories.ResultRepository(session)
        self.ledger = repositories.LedgerRepository(session)

    def list_users(self) -> List[dict]:
        out = []
        for u in self.user_repo.list_all():
            item = user_payload(u)
            item['createdAt'] = u.created_at
            out.append(item)
        return out

    def user_detail(self, user_id: int) -> dict:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError('user not found')
        results = self.result_repo.list_for_user(user_id)
        out = user_payload(user)
        out['createdAt'] = user.created_at
        out['testCount'] = len(results)
        out['averageIQ'] = (
            assessment.round_half_up(sum(r.iq_score for r in results) / len(results)) if results else None
        )
        return out

    def stats(self) -> dict:
        return {
            'totalUsers': self.user_repo.count(),
            'totalTests': self.result_repo.count(),
            'pendingTransactions': self.ledger.count_by_status(models.TransactionStatus.pending),
            'totalTransactionVolume': format_money(self.ledger.completed_volume()),
        }
