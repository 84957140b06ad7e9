"""
Bearer-token identity.

The identity provider is external: it hands out signed JWTs whose ``sub`` is
the user id and whose ``username`` claim names the account.  This module
only verifies those tokens and exposes the resulting principal to routers.
``create_access_token`` exists for tests and the seed script.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fastblog.config import settings

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: int
    username: str


def create_access_token(user_id: int, username: str, ttl_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.ACCESS_TOKEN_TTL_MINUTES
    payload = {
        "sub": str(user_id),
        "username": username,
        "iat": now,
        "exp": now + timedelta(minutes=ttl),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Principal:
    """Verify *token* and return its principal; raises ``jwt.InvalidTokenError``."""
    claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    try:
        return Principal(user_id=int(claims["sub"]), username=str(claims.get("username", "")))
    except (KeyError, ValueError) as exc:
        raise jwt.InvalidTokenError("malformed subject claim") from exc


async def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Principal | None:
    """Anonymous when no credentials are sent; 401 when they are sent but invalid."""
    if credentials is None:
        return None
    try:
        return decode_access_token(credentials.credentials)
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_principal(
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
