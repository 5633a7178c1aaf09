"""Password hashing and the access-token policy.

A token identifies the user (``sub``) and carries their role names for
clients; the server always reloads the user and their roles on each request.
It travels either as ``Authorization: Bearer <token>`` or in an HTTP-only
cookie, and the header wins when both are present.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastapi import Request, Response
from jose import JWTError, jwt
from passlib.context import CryptContext

from lingoclass.config import settings

if TYPE_CHECKING:
    from lingoclass.models import User

# Existing bcrypt hashes still verify and are upgraded to argon2 on login.
pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_and_update_password(password: str, hashed_password: str) -> tuple[bool, str | None]:
    """Returns (valid, new_hash); ``new_hash`` is set when the stored hash is outdated."""
    return pwd_context.verify_and_update(password, hashed_password)


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    roles: tuple[str, ...]
    expires_at: datetime


def issue_token(user: User, *, expires_in: timedelta | None = None, now: datetime | None = None) -> str:
    issued = now or datetime.now(timezone.utc)
    expires = issued + (expires_in or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {
        "sub": str(user.id),
        "roles": sorted(user.role_names),
        "iat": int(issued.timestamp()),
        "exp": int(expires.timestamp()),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def read_token(token: str) -> TokenClaims | None:
    """Returns None for expired, tampered or malformed tokens."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
    return TokenClaims(
        user_id=user_id,
        roles=tuple(payload.get("roles") or ()),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def token_from_request(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(settings.AUTH_COOKIE_NAME)


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        samesite=settings.SESSION_COOKIE_SAMESITE.lower(),
        secure=settings.SESSION_COOKIE_SECURE,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(settings.AUTH_COOKIE_NAME)
