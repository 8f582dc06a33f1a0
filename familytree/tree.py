"""Family tree assembly for the read path.

The tree is a forest: members with neither parent are roots and every other
member hangs under each of its parents that is present. A child with both
parents present therefore appears under both; within one parent's list it
appears once.
"""

from __future__ import annotations

from typing import Any, Iterable

try:
    from .members import compute_child_order, sibling_sort_key
    from .models import Member
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from members import compute_child_order, sibling_sort_key
    from models import Member


def load_tree_members(store: Any, family_id: int) -> list[Member]:
    """Members of ``family_id`` plus spouses from other families and their children.

    The extra rows are shown in the requesting family's context.
    """

    members = store.list_family_members(family_id)
    spouse_ids = {m.spouse_id for m in members if m.spouse_id is not None}
    if not spouse_ids:
        return members

    seen = {m.id for m in members}
    external_spouses = [m for m in store.list_members_by_ids(spouse_ids) if m.family_id != family_id]
    parent_ids = seen | spouse_ids
    children = store.list_children_of(parent_ids)

    out = list(members)
    for m in external_spouses + children:
        if m.id in seen:
            continue
        seen.add(m.id)
        out.append(m.copy(family_id=family_id))
    return out


def build_forest(members: Iterable[Member]) -> dict[str, list[dict[str, Any]]]:
    """Assemble and serialize the forest.

    Returns ``{"roots": [...], "members": [...]}`` where every node is a plain
    dict with a recursively sorted ``children`` list. Roots keep input order.
    """

    members = list(members)
    by_id: dict[int, Member] = {}
    for m in members:
        by_id.setdefault(m.id, m)
    ranks = compute_child_order(by_id.values())

    children: dict[int, list[int]] = {mid: [] for mid in by_id}
    roots: list[int] = []
    for m in by_id.values():
        for parent_id in (m.father_id, m.mother_id):
            if parent_id is None or parent_id not in by_id:
                continue
            if m.id not in children[parent_id]:
                children[parent_id].append(m.id)
        if m.father_id is None and m.mother_id is None:
            roots.append(m.id)

    def _order(mid: int) -> tuple:
        return sibling_sort_key(by_id[mid], ranks.get(mid))

    for kids in children.values():
        kids.sort(key=_order)

    def _node(mid: int, path: frozenset[int]) -> dict[str, Any]:
        node = by_id[mid].to_public()
        node["child_order"] = ranks.get(mid)
        inner = path | {mid}
        # A child already on the current path would be a parent cycle in malformed data.
        node["children"] = [_node(cid, inner) for cid in children[mid] if cid not in inner]
        return node

    return {
        "roots": [_node(rid, frozenset()) for rid in roots],
        "members": [_node(mid, frozenset()) for mid in by_id],
    }
