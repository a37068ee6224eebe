"""Pydantic request schemas used by the API.

Clients send camelCase keys (`questionId`, `receiverId`); the models also
accept the snake_case field names so Python callers and tests can use
either.
"""

from typing import Any, List
from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterIn(BaseModel):
    """Payload for user registration."""
    username: str
    email: str
    password: str


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class AnswerIn(_CamelModel):
    """Single submitted answer."""
    question_id: int = Field(alias='questionId', strict=True)
    selected_answer: str = Field(alias='selectedAnswer')


class SubmissionIn(_CamelModel):
    """Request model for grading containing a list of answers."""
    answers: List[AnswerIn]


class TransferIn(_CamelModel):
    """Transfer request. `amount` is parsed by the ledger into a Decimal."""
    receiver_id: int = Field(alias='receiverId')
    # accepted as given (number or string) so decimal precision survives
    amount: Any


class SettleIn(BaseModel):
    """Admin settlement decision."""
    status: str
