"""CLI script to seed the database with accounts, a published test and a question bank.
Usage: python scripts/seed.py [--bank data/questions.json] [--admin-password PW]
"""
import sys
import argparse
import pathlib
from decimal import Decimal
from typing import Optional
# Ensure `backend/` is on sys.path so `iqbank` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from iqbank import models, repositories
from iqbank.database import engine, create_db_and_tables
from iqbank.services import PWD_CTX
from iqbank.utils.question_bank import parse_question_bank, load_question_bank

DEFAULT_BANK = ROOT / 'data' / 'questions.json'


def _ensure_user(session: Session, username: str, email: str, password: str, role: models.Role, balance: str):
    """Create an account with an opening balance unless the email exists."""
    repo = repositories.UserRepository(session)
    existing = repo.get_by_email(email)
    if existing:
        print(f'User exists: {email}')
        return existing
    user = repo.create(models.User(
        username=username,
        email=email,
        password_hash=PWD_CTX.hash(password),
        role=role,
        balance=Decimal(balance),
    ))
    print(f'Created {role.value}: {email}')
    return user


def main(bank: Optional[pathlib.Path] = None, admin_password: str = 'admin123', user_password: str = 'user123'):
    """Create demo accounts, the default test and load the question bank.

    Safe to run repeatedly: existing users, the test and identical
    question texts are left alone.
    """
    bank = bank or DEFAULT_BANK
    if not bank.exists():
        print(f'Question bank not found at {bank}')
        return
    create_db_and_tables()
    with Session(engine) as session:
        _ensure_user(session, 'admin', 'admin@iqtest.com', admin_password, models.Role.admin, '1000.00')
        _ensure_user(session, 'testuser', 'user@iqtest.com', user_password, models.Role.user, '100.00')
        a_repo = repositories.AssessmentRepository(session)
        assessment = a_repo.get_by_slug('default-iq-test')
        if not assessment:
            assessment = a_repo.create(models.Assessment(
                slug='default-iq-test',
                title='Default IQ Test',
                description='Auto-generated IQ test',
                duration_minutes=15,
                published=True,
            ))
            print(f'Created test id={assessment.id}')
        try:
            items = parse_question_bank(bank.read_bytes())
        except ValueError as e:
            print(f'Could not read {bank}: {e}')
            return
        result = load_question_bank(session, items, assessment=assessment)
        for err in result['errors']:
            print(f"Item {err['index']}: {err['error']}")
        print(f"Loaded {bank}: created {result['created']}, skipped {result['skipped']}, errors {len(result['errors'])}")


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--bank', type=pathlib.Path, help='Path to a JSON question bank')
    parser.add_argument('--admin-password', default='admin123')
    parser.add_argument('--user-password', default='user123')
    args = parser.parse_args()
    main(bank=args.bank, admin_password=args.admin_password, user_password=args.user_password)
