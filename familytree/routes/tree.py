"""Tree route: the caller's family as a forest of nested nodes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

try:
    from ..auth import get_family_scope
    from ..db import db_conn
    from ..store import PgFamilyStore
    from ..tree import build_forest, load_tree_members
except ImportError:  # pragma: no cover
    from auth import get_family_scope
    from db import db_conn
    from store import PgFamilyStore
    from tree import build_forest, load_tree_members

router = APIRouter(tags=["tree"])


@router.get("/tree")
def get_tree(request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        members = load_tree_members(PgFamilyStore(conn), scope.family_id)
    return build_forest(members)
