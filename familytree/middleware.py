"""Request-level authentication middleware.

Extracts the JWT from the session cookie, validates it, and populates
``request.state.user`` (id, username, role, family_id, member_id).

Unauthenticated requests to protected paths get a 401 JSON response.
"""

from __future__ import annotations

import re

import jwt as pyjwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

try:
    from .auth import _JWT_COOKIE_NAME, _should_refresh, claims_to_user, decode_jwt, start_session
except ImportError:  # pragma: no cover
    from auth import _JWT_COOKIE_NAME, _should_refresh, claims_to_user, decode_jwt, start_session

# Paths that do NOT require authentication.
_PUBLIC_PATHS: list[re.Pattern[str]] = [
    re.compile(r"^/health$"),
    re.compile(r"^/auth/login$"),
    re.compile(r"^/auth/logout$"),
    re.compile(r"^/auth/register$"),
    re.compile(r"^/auth/members-for-register$"),
    re.compile(r"^/members/by-code$"),
    re.compile(r"^/members/by-id/\d+$"),
    re.compile(r"^/docs$"),
    re.compile(r"^/openapi\.json$"),
]


def _is_public(path: str) -> bool:
    for pat in _PUBLIC_PATHS:
        if pat.search(path):
            return True
    return False


class AuthMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces JWT-based session authentication."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path

        token = request.cookies.get(_JWT_COOKIE_NAME)
        claims = None
        if token:
            try:
                claims = decode_jwt(token)
            except pyjwt.ExpiredSignatureError:
                if not _is_public(path):
                    return JSONResponse({"detail": "Session expired"}, status_code=401)
            except pyjwt.PyJWTError:
                if not _is_public(path):
                    return JSONResponse({"detail": "Invalid session"}, status_code=401)

        if claims is None:
            if not _is_public(path):
                return JSONResponse({"detail": "Not authenticated"}, status_code=401)
            return await call_next(request)

        # Populate request.state for downstream route handlers.
        request.state.user = claims_to_user(claims)

        response = await call_next(request)

        # Sliding window refresh: issue a new token when >50% of lifetime is gone.
        if _should_refresh(claims):
            start_session(response, request.state.user)

        return response
