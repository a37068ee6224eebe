"""Authentication helpers and FastAPI security dependencies.

This module provides utilities to decode JWT tokens, a dependency
`get_current_user` that validates the bearer token and returns the
corresponding `User` row, and `require_admin` for admin-only routes.

Token problems raise HTTPException(401) so they are answered before any
service code runs; a valid token without the admin role gets 403.
"""

from typing import Optional
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import engine
from . import models, repositories

# auto_error=False so a missing header is reported as 401, not 403
bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The role is taken from the database row, not from the token, so a
    demoted admin loses access as soon as the row changes.
    """
    if credentials is None or credentials.scheme.lower() != 'bearer':
        raise HTTPException(status_code=401, detail='authentication required')
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not isinstance(user_id, int):
        raise HTTPException(status_code=401, detail='invalid token payload')
    with Session(engine) as session:
        user = repositories.UserRepository(session).get(user_id)
        if not user:
            raise HTTPException(status_code=401, detail='user not found')
        session.expunge(user)
        return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    """Dependency for admin-only routes."""
    if user.role != models.Role.admin:
        raise HTTPException(status_code=403, detail='admin privileges required')
    return user
