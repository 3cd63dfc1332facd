"""Authentication helpers and FastAPI security dependency.

This module provides utilities to decode JWT tokens and a FastAPI
dependency `get_current_user` that validates the bearer token and
returns the corresponding `User` model instance from the database.

Token verification raises HTTPException(401) on failure, including a
missing `Authorization` header, so it can be used directly inside route
dependencies.
"""

from typing import Optional
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from .services import JWT_SECRET, JWT_ALGORITHM
from sqlmodel import Session
from .database import engine
from . import repositories

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)):
    """FastAPI dependency that returns the authenticated user."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail='not authenticated')
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    with Session(engine) as session:
        user = repositories.UserRepository(session).get(user_id)
        if not user:
            raise HTTPException(status_code=401, detail='user not found')
        return user
