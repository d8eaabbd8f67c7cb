"""
FastAPI dependency injection functions.
Provides get_db, get_current_user (required caller) and get_optional_user
(anonymous viewers allowed).
"""
from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from talesy.core.exceptions import AuthenticationError, InvalidTokenError
from talesy.core.security import decode_access_token
from talesy.crud.user import crud_user
from talesy.db.session import get_db
from talesy.models.user import User

# Re-export get_db so routes can import from one place
__all__ = ["get_db", "get_current_user", "get_optional_user", "DBSession", "CurrentUser", "OptionalUser"]

bearer_scheme = HTTPBearer(auto_error=False)


async def _resolve_user(db: AsyncSession, token: str) -> User:
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise InvalidTokenError("Invalid or expired access token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise InvalidTokenError("Malformed token: missing subject")

    try:
        user_id = uuid.UUID(user_id_str)
    except ValueError:
        raise InvalidTokenError("Malformed token: invalid subject format")

    user = await crud_user.get(db, user_id)
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")
    return user


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ] = None,
) -> User:
    """
    Extract and validate the JWT access token from the Authorization header.
    Returns the authenticated User model.
    """
    if credentials is None:
        raise AuthenticationError("Missing authentication token")
    return await _resolve_user(db, credentials.credentials)


async def get_optional_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ] = None,
) -> User | None:
    """Like get_current_user, but an absent token yields an anonymous viewer."""
    if credentials is None:
        return None
    return await _resolve_user(db, credentials.credentials)


# Convenience type aliases for route signatures
DBSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_optional_user)]
