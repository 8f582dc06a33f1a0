"""Unit tests for familytree/auth.py: password hashing, JWT, request helpers."""

from __future__ import annotations

import time
from typing import Any
from unittest.mock import patch

import jwt as pyjwt
import pytest
from fastapi import HTTPException

from familytree.auth import (
    _JWT_COOKIE_NAME,
    _should_refresh,
    claims_to_user,
    clear_session_cookie,
    create_jwt,
    decode_jwt,
    get_current_user,
    get_family_scope,
    hash_password,
    require_role,
    set_session_cookie,
    start_session,
    validate_password,
    verify_password,
)


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class TestPasswordHashing:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("rahasia99")
        assert hashed != "rahasia99"
        assert verify_password("rahasia99", hashed)
        assert not verify_password("rahasia98", hashed)

    def test_salted(self) -> None:
        assert hash_password("same-pw1") != hash_password("same-pw1")


class TestPasswordValidation:
    def test_letters_and_digits_pass(self) -> None:
        assert validate_password("keluarga1") is None

    def test_too_short(self) -> None:
        err = validate_password("ab1")
        assert err is not None
        assert "8 characters" in err

    def test_needs_letters_and_digits(self) -> None:
        assert validate_password("12345678") is not None
        assert validate_password("abcdefgh") is not None


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------


class TestJWT:
    @patch.dict("os.environ", {"JWT_SECRET": "test-secret-key"})
    def test_claims_carry_family_scope(self) -> None:
        token = create_jwt(user_id=42, username="ali", role="admin", family_id=3, member_id=17)
        claims = decode_jwt(token)
        assert claims["sub"] == "42"
        assert claims["family_id"] == 3
        assert claims["member_id"] == 17
        assert claims_to_user(claims) == {
            "id": 42,
            "username": "ali",
            "role": "admin",
            "family_id": 3,
            "member_id": 17,
        }

    @patch.dict("os.environ", {"JWT_SECRET": "secret-A"})
    def test_wrong_secret_fails(self) -> None:
        token = create_jwt(user_id=1, username="x", role="member")
        with patch.dict("os.environ", {"JWT_SECRET": "secret-B"}):
            with pytest.raises(pyjwt.InvalidSignatureError):
                decode_jwt(token)

    @patch.dict("os.environ", {"JWT_SECRET": "test-secret-key"})
    def test_expired_token_raises(self) -> None:
        now = int(time.time())
        token = pyjwt.encode(
            {"sub": "1", "role": "member", "iat": now - 7200, "exp": now - 3600},
            "test-secret-key",
            algorithm="HS256",
        )
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_jwt(token)

    @patch.dict("os.environ", {"JWT_SECRET": "test-secret-key"})
    def test_token_without_expiry_rejected(self) -> None:
        token = pyjwt.encode({"sub": "1", "iat": int(time.time())}, "test-secret-key", algorithm="HS256")
        with pytest.raises(pyjwt.MissingRequiredClaimError):
            decode_jwt(token)

    @patch.dict("os.environ", {"JWT_SECRET": "test-secret-key"})
    def test_session_lasts_a_week(self) -> None:
        claims = decode_jwt(create_jwt(user_id=1, username="x", role="member"))
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600


# ---------------------------------------------------------------------------
# Cookies and refresh
# ---------------------------------------------------------------------------


class _FakeResponse:
    def __init__(self) -> None:
        self._cookies: dict[str, Any] = {}
        self._deleted: list[str] = []

    def set_cookie(self, **kwargs: Any) -> None:
        self._cookies[kwargs["key"]] = kwargs

    def delete_cookie(self, **kwargs: Any) -> None:
        self._deleted.append(kwargs["key"])


class TestCookies:
    def test_set_and_clear(self) -> None:
        resp = _FakeResponse()
        set_session_cookie(resp, "tok123")
        cookie = resp._cookies[_JWT_COOKIE_NAME]
        assert cookie["value"] == "tok123"
        assert cookie["httponly"] is True

        clear_session_cookie(resp)
        assert _JWT_COOKIE_NAME in resp._deleted

    @patch.dict("os.environ", {"JWT_SECRET": "test-secret-key"})
    def test_start_session_issues_scoped_token(self) -> None:
        resp = _FakeResponse()
        start_session(resp, {"id": 5, "username": "siti", "role": "member", "family_id": 2, "member_id": None})
        claims = decode_jwt(resp._cookies[_JWT_COOKIE_NAME]["value"])
        assert claims["family_id"] == 2
        assert claims["member_id"] is None


class TestShouldRefresh:
    def test_fresh_token(self) -> None:
        now = int(time.time())
        assert not _should_refresh({"iat": now, "exp": now + 86400})

    def test_old_token(self) -> None:
        now = int(time.time())
        assert _should_refresh({"iat": now - 72000, "exp": now + 14400})

    def test_missing_or_zero_lifetime(self) -> None:
        now = int(time.time())
        assert not _should_refresh({})
        assert not _should_refresh({"iat": now, "exp": now})


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


class _FakeState:
    pass


class _FakeRequest:
    def __init__(self, user: dict | None = None) -> None:
        self.state = _FakeState()
        if user is not None:
            self.state.user = user


class TestRequestHelpers:
    def test_current_user_required(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(_FakeRequest())
        assert exc_info.value.status_code == 401

    def test_family_scope(self) -> None:
        req = _FakeRequest({"id": 1, "username": "ali", "role": "member", "family_id": 3, "member_id": 9})
        scope = get_family_scope(req)
        assert (scope.family_id, scope.user_id, scope.member_id) == (3, 1, 9)

    def test_no_family_is_unauthorized(self) -> None:
        req = _FakeRequest({"id": 1, "username": "root", "role": "superadmin", "family_id": None})
        with pytest.raises(HTTPException) as exc_info:
            get_family_scope(req)
        assert exc_info.value.status_code == 401

    def test_require_role(self) -> None:
        check = require_role("admin", "superadmin").dependency
        admin = {"id": 1, "username": "a", "role": "admin"}
        assert check(_FakeRequest(admin)) is admin
        with pytest.raises(HTTPException) as exc_info:
            check(_FakeRequest({"id": 2, "username": "m", "role": "member"}))
        assert exc_info.value.status_code == 403
