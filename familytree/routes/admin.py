"""Account approval routes (admin and superadmin only).

Admins see and decide on accounts of their own family; a superadmin sees all.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

try:
    from ..approval import UserStatus, get_approval_policy
    from ..auth import require_role
    from ..db import db_conn, unit_of_work
except ImportError:  # pragma: no cover
    from approval import UserStatus, get_approval_policy
    from auth import require_role
    from db import db_conn, unit_of_work

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class ApproveRequest(BaseModel):
    user_id: int
    action: str


def _family_filter(user: dict[str, Any]) -> tuple[str, tuple]:
    if user["role"] == "superadmin":
        return "", ()
    return " AND u.family_id = %s", (user.get("family_id"),)


@router.get("/pending-users")
def pending_users(user: dict = require_role("admin", "superadmin")) -> list[dict[str, Any]]:
    extra, params = _family_filter(user)
    with db_conn() as conn:
        rows = conn.execute(
            """
            SELECT u.id, u.username, u.name, u.role, u.status, u.family_id, u.member_id,
                   m.name AS member_name, u.created_at
            FROM users u
            LEFT JOIN family_members m ON m.id = u.member_id
            WHERE u.status = %s
            """
            + extra
            + " ORDER BY u.created_at DESC, u.id DESC",
            (UserStatus.PENDING.value, *params),
        ).fetchall()

    results = []
    for uid, username, name, role, status, family_id, member_id, member_name, created in rows:
        results.append({
            "id": uid,
            "username": username,
            "name": name,
            "role": role,
            "status": status,
            "family_id": family_id,
            "member_id": member_id,
            "member_name": member_name,
            "created_at": created.isoformat() if created else None,
        })
    return results


@router.post("/approve")
def approve_user(body: ApproveRequest, user: dict = require_role("admin", "superadmin")) -> dict[str, Any]:
    extra, params = _family_filter(user)
    with db_conn() as conn:
        with unit_of_work(conn):
            row = conn.execute(
                "SELECT u.status FROM users u WHERE u.id = %s" + extra,
                (body.user_id, *params),
            ).fetchone()
            if row is None:
                raise HTTPException(status_code=404, detail="user not found")
            new_status = get_approval_policy().transition(row[0], body.action)
            conn.execute(
                "UPDATE users SET status = %s, updated_at = now() WHERE id = %s",
                (new_status.value, body.user_id),
            )

    log.info("user %s set to %s by %s", body.user_id, new_status.value, user["username"])
    return {"ok": True, "user_id": body.user_id, "status": new_status.value}
