"""Auth routes: registration, login/logout, current user and profile."""

from __future__ import annotations

import logging
from typing import Any, Literal, Optional

import psycopg
from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

try:
    from ..approval import get_approval_policy
    from ..auth import (
        clear_session_cookie,
        get_current_user,
        hash_password,
        start_session,
        validate_password,
        verify_password,
    )
    from ..db import db_conn, unit_of_work
    from ..errors import ForbiddenError, UnauthorizedError, ValidationError
    from ..member_code import normalize_code
except ImportError:  # pragma: no cover
    from approval import get_approval_policy
    from auth import (
        clear_session_cookie,
        get_current_user,
        hash_password,
        start_session,
        validate_password,
        verify_password,
    )
    from db import db_conn, unit_of_work
    from errors import ForbiddenError, UnauthorizedError, ValidationError
    from member_code import normalize_code

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_USER_SELECT = """
    SELECT u.id, u.username, u.name, u.role, u.status, u.family_id, u.member_id,
           f.name AS family_name, f.family_code, m.name AS member_name, m.member_code
    FROM users u
    LEFT JOIN families f ON f.id = u.family_id
    LEFT JOIN family_members m ON m.id = u.member_id
"""


def _user_row_to_dict(r: tuple) -> dict[str, Any]:
    uid, username, name, role, status, family_id, member_id, family_name, family_code, member_name, member_code = r
    return {
        "id": uid,
        "username": username,
        "name": name,
        "role": role,
        "status": status,
        "family_id": family_id,
        "member_id": member_id,
        "family_name": family_name,
        "family_code": family_code,
        "member_name": member_name,
        "member_code": member_code,
    }


def _load_user(conn: psycopg.Connection, user_id: int) -> dict[str, Any] | None:
    row = conn.execute(_USER_SELECT + " WHERE u.id = %s", (user_id,)).fetchone()
    return _user_row_to_dict(row) if row else None


class RegisterRequest(BaseModel):
    username: str
    password: str
    name: str
    family_code: str
    family_name: Optional[str] = None
    role: Literal["member", "admin"] = "member"


class LoginRequest(BaseModel):
    username: str
    password: str
    family_code: str


class ProfileUpdate(BaseModel):
    name: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


# ---------------------------------------------------------------------------
# Registration / login
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
def register(body: RegisterRequest, response: Response) -> dict[str, Any]:
    """Create a new family and its first user.

    The family code must not be in use yet. The user's initial status comes
    from the active approval policy; a session starts only if it may log in.
    """
    username = body.username.strip()
    name = body.name.strip()
    if not username or not body.password or not name:
        raise ValidationError("username, password and name are required")
    family_code = normalize_code(body.family_code)
    if not family_code:
        raise ValidationError("family_code is required")
    pw_err = validate_password(body.password)
    if pw_err:
        raise ValidationError(pw_err)

    policy = get_approval_policy()
    status = policy.initial_status()
    family_name = (body.family_name or "").strip() or f"{name}'s Family"

    with db_conn() as conn:
        with unit_of_work(conn):
            if conn.execute("SELECT 1 FROM users WHERE username = %s", (username,)).fetchone():
                raise ValidationError("username already exists")
            if conn.execute("SELECT 1 FROM families WHERE family_code = %s", (family_code,)).fetchone():
                raise ValidationError("family code is already in use")

            family_id = conn.execute(
                "INSERT INTO families (name, description, family_code) VALUES (%s, %s, %s) RETURNING id",
                (family_name, f"Family tree for {name}", family_code),
            ).fetchone()[0]
            user_id = conn.execute(
                """
                INSERT INTO users (username, password_hash, name, role, status, family_id)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (username, hash_password(body.password), name, body.role, status.value, family_id),
            ).fetchone()[0]
            conn.execute("UPDATE families SET created_by = %s WHERE id = %s", (user_id, family_id))
            user = _load_user(conn, user_id)

    log.info("registered user %s with new family %s (%s)", username, family_code, status.value)
    if policy.can_login(status):
        start_session(response, user)
    return user


@router.post("/login")
def login(body: LoginRequest, response: Response) -> dict[str, Any]:
    """Authenticate with username + password + family code, set session cookie."""
    family_code = normalize_code(body.family_code)
    if not body.username or not body.password or not family_code:
        raise ValidationError("username, password and family_code are required")

    with db_conn() as conn:
        row = conn.execute(
            """
            SELECT u.id, u.password_hash
            FROM users u
            JOIN families f ON f.id = u.family_id
            WHERE u.username = %s AND f.family_code = %s
            """,
            (body.username.strip(), family_code),
        ).fetchone()
        if not row or not verify_password(body.password, row[1]):
            raise UnauthorizedError("Invalid credentials")
        user = _load_user(conn, row[0])

    if not get_approval_policy().can_login(user["status"]):
        raise ForbiddenError(f"Account is {user['status']}")

    start_session(response, user)
    return user


@router.get("/logout")
def logout(response: Response) -> dict[str, str]:
    clear_session_cookie(response)
    return {"ok": "true"}


@router.get("/me")
def me(request: Request) -> dict[str, Any]:
    current = get_current_user(request)
    with db_conn() as conn:
        user = _load_user(conn, current["id"])
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.put("/profile")
def update_profile(body: ProfileUpdate, request: Request) -> dict[str, Any]:
    current = get_current_user(request)
    name = body.name.strip()
    if not name:
        raise ValidationError("name is required")
    with db_conn() as conn:
        with unit_of_work(conn):
            conn.execute(
                "UPDATE users SET name = %s, updated_at = now() WHERE id = %s",
                (name, current["id"]),
            )
            user = _load_user(conn, current["id"])
    return user


@router.post("/change-password")
def change_password(body: ChangePasswordRequest, request: Request) -> dict[str, Any]:
    current = get_current_user(request)
    pw_err = validate_password(body.new_password)
    if pw_err:
        raise ValidationError(pw_err)

    with db_conn() as conn:
        with unit_of_work(conn):
            row = conn.execute("SELECT password_hash FROM users WHERE id = %s", (current["id"],)).fetchone()
            if not row or not verify_password(body.current_password, row[0]):
                raise ValidationError("current password is incorrect")
            conn.execute(
                "UPDATE users SET password_hash = %s, updated_at = now() WHERE id = %s",
                (hash_password(body.new_password), current["id"]),
            )
    return {"ok": True}


@router.get("/members-for-register")
def members_for_register() -> list[dict[str, Any]]:
    """Public list of members with their family name (registration form)."""
    with db_conn() as conn:
        rows = conn.execute(
            """
            SELECT m.id, m.name, f.name
            FROM family_members m
            JOIN families f ON f.id = m.family_id
            ORDER BY f.name, m.name
            """
        ).fetchall()
    return [{"id": mid, "name": mname, "family_name": fname} for mid, mname, fname in rows]
