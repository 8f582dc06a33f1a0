"""Accounts and sessions.

A session is a signed JWT in an httponly cookie. Besides the user it names
the family the user belongs to (and the member record they are, if linked),
so every family-scoped route can read its scope straight from the token.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request, Response
from passlib.context import CryptContext

# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

_pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

_PASSWORD_MIN_LENGTH = 8


def validate_password(plain: str) -> str | None:
    """Return an error message if ``plain`` is too weak, else ``None``."""
    if len(plain) < _PASSWORD_MIN_LENGTH:
        return f"Password must be at least {_PASSWORD_MIN_LENGTH} characters."
    if not any(c.isalpha() for c in plain) or not any(c.isdigit() for c in plain):
        return "Password must contain both letters and digits."
    return None


def hash_password(plain: str) -> str:
    return _pwd_ctx.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return _pwd_ctx.verify(plain, hashed)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

_JWT_ALGORITHM = "HS256"
_JWT_LIFETIME = timedelta(days=7)
_JWT_COOKIE_NAME = "family_session"
_JWT_REFRESH_FRACTION = 0.5
_JWT_REQUIRED_CLAIMS = ["sub", "iat", "exp"]

_COOKIE_OPTIONS: dict[str, Any] = {"httponly": True, "samesite": "lax", "path": "/"}


def _get_jwt_secret() -> str:
    # Development fallback; set JWT_SECRET in any real deployment.
    return os.environ.get("JWT_SECRET") or "dev-secret-change-me"


def create_jwt(
    user_id: int,
    username: str,
    role: str,
    family_id: int | None = None,
    member_id: int | None = None,
) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "family_id": family_id,
        "member_id": member_id,
        "iat": int(issued.timestamp()),
        "exp": int((issued + _JWT_LIFETIME).timestamp()),
    }
    return jwt.encode(claims, _get_jwt_secret(), algorithm=_JWT_ALGORITHM)


def decode_jwt(token: str) -> dict[str, Any]:
    """Verify ``token`` and return its claims. Raises ``jwt.PyJWTError``."""
    return jwt.decode(
        token,
        _get_jwt_secret(),
        algorithms=[_JWT_ALGORITHM],
        options={"require": _JWT_REQUIRED_CLAIMS},
    )


def claims_to_user(claims: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": int(claims["sub"]),
        "username": claims.get("username", ""),
        "role": claims.get("role", "member"),
        "family_id": claims.get("family_id"),
        "member_id": claims.get("member_id"),
    }


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=_JWT_COOKIE_NAME,
        value=token,
        max_age=int(_JWT_LIFETIME.total_seconds()),
        **_COOKIE_OPTIONS,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=_JWT_COOKIE_NAME, path=_COOKIE_OPTIONS["path"])


def start_session(response: Response, user: dict[str, Any]) -> None:
    """Issue a fresh token for ``user`` (a ``claims_to_user``-shaped dict)."""
    set_session_cookie(
        response,
        create_jwt(
            user["id"],
            user["username"],
            user["role"],
            family_id=user.get("family_id"),
            member_id=user.get("member_id"),
        ),
    )


def _should_refresh(claims: dict[str, Any]) -> bool:
    """Sliding sessions: reissue once half the token's lifetime is used up."""
    issued, expires = claims.get("iat"), claims.get("exp")
    if not issued or not expires or expires <= issued:
        return False
    return time.time() >= issued + (expires - issued) * _JWT_REFRESH_FRACTION


# ---------------------------------------------------------------------------
# Request scope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FamilyScope:
    family_id: int
    user_id: int
    member_id: int | None = None


def get_current_user(request: Request) -> dict[str, Any]:
    """The user ``AuthMiddleware`` put on ``request.state``; 401 without one."""
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_family_scope(request: Request) -> FamilyScope:
    """Return the caller's family scope; 401 when the user belongs to no family."""
    user = get_current_user(request)
    family_id = user.get("family_id")
    if not family_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return FamilyScope(family_id=int(family_id), user_id=user["id"], member_id=user.get("member_id"))


def require_role(*allowed_roles: str):
    """Dependency that returns the current user if their role is allowed, else 403."""

    def _check(request: Request) -> dict[str, Any]:
        user = get_current_user(request)
        if user["role"] not in allowed_roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return Depends(_check)
