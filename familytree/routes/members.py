"""Family member routes.

Reads are scoped to the caller's family except the two public lookups
(``/members/by-code`` and ``/members/by-id/{id}``) used when linking a spouse
from another family. Every mutation runs as one unit of work.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

try:
    from ..auth import get_family_scope
    from ..db import db_conn, unit_of_work
    from ..member_code import normalize_code
    from ..members import create_member, delete_member, list_members_with_order, update_member
    from ..models import MemberPayload
    from ..store import PgFamilyStore
except ImportError:  # pragma: no cover
    from auth import get_family_scope
    from db import db_conn, unit_of_work
    from member_code import normalize_code
    from members import create_member, delete_member, list_members_with_order, update_member
    from models import MemberPayload
    from store import PgFamilyStore

router = APIRouter(prefix="/members", tags=["members"])


def _lookup_view(member) -> dict[str, Any]:
    return {
        "id": member.id,
        "name": member.name,
        "gender": member.gender,
        "member_code": member.member_code,
        "family_id": member.family_id,
    }


# ---------------------------------------------------------------------------
# Public cross-family lookups
# ---------------------------------------------------------------------------


@router.get("/by-code")
def get_member_by_code(code: str = "") -> dict[str, Any]:
    normalized = normalize_code(code)
    if not normalized:
        raise HTTPException(status_code=400, detail="code is required")
    with db_conn() as conn:
        member = PgFamilyStore(conn).get_member_by_code(normalized)
    if member is None:
        raise HTTPException(status_code=404, detail="member code not found")
    return _lookup_view(member)


@router.get("/by-id/{member_id}")
def get_member_by_id(member_id: int) -> dict[str, Any]:
    with db_conn() as conn:
        member = PgFamilyStore(conn).get_member(member_id)
    if member is None:
        raise HTTPException(status_code=404, detail="member not found")
    return _lookup_view(member)


# ---------------------------------------------------------------------------
# Family-scoped CRUD
# ---------------------------------------------------------------------------


@router.get("")
def list_members(request: Request) -> list[dict[str, Any]]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        return list_members_with_order(PgFamilyStore(conn), scope.family_id)


@router.post("", status_code=201)
def post_member(body: MemberPayload, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        with unit_of_work(conn):
            member = create_member(PgFamilyStore(conn), scope.family_id, scope.user_id, body)
    return member.to_public()


@router.get("/{member_id}")
def get_member(member_id: int, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        member = PgFamilyStore(conn).get_family_member(member_id, scope.family_id)
    if member is None:
        raise HTTPException(status_code=404, detail="member not found")
    return member.to_public()


@router.put("/{member_id}")
def put_member(member_id: int, body: MemberPayload, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        with unit_of_work(conn):
            member = update_member(PgFamilyStore(conn), scope.family_id, scope.user_id, member_id, body)
    return member.to_public()


@router.delete("/{member_id}")
def remove_member(member_id: int, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        with unit_of_work(conn):
            delete_member(PgFamilyStore(conn), scope.family_id, scope.user_id, member_id)
    return {"ok": True, "id": member_id}


@router.get("/{member_id}/history")
def member_history(member_id: int, request: Request) -> dict[str, Any]:
    """Audit trail of one member, newest first."""
    scope = get_family_scope(request)
    with db_conn() as conn:
        store = PgFamilyStore(conn)
        if store.get_family_member(member_id, scope.family_id) is None:
            raise HTTPException(status_code=404, detail="member not found")
        entries = store.list_audit_entries(member_id)
    return {"member_id": member_id, "entries": entries}
