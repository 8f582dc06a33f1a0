"""Family graph engine: member mutations and the relationship bookkeeping around them.

Members of one family may be married to members of another. The foreign
spouse is never linked in place: a local clone (plus clones of the spouse's
descendants) is materialized in the family that made the link, so structural
traversal of a family tree stays inside that family. Provenance of a clone is
kept in ``cloned_from_family_id`` / ``cloned_from_member_id``.

Every public mutation expects to run inside one unit of work
(``familytree.db.unit_of_work``); audit and birthday bookkeeping are best
effort and use savepoints of their own.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import date
import logging
from typing import Any, Iterable, Optional

try:
    from .audit import AuditAction, append_audit_entry, audit_update
    from .birthdays import remove_member_birthdays, sync_member_birthdays
    from .errors import NotFoundError, ValidationError
    from .member_code import generate_member_code, normalize_code
    from .models import ClonedFrom, Member, MemberPayload
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from audit import AuditAction, append_audit_entry, audit_update
    from birthdays import remove_member_birthdays, sync_member_birthdays
    from errors import NotFoundError, ValidationError
    from member_code import generate_member_code, normalize_code
    from models import ClonedFrom, Member, MemberPayload

log = logging.getLogger(__name__)

# Columns a create/update body writes verbatim. spouse_id is resolved separately.
_PAYLOAD_COLUMNS = (
    "name",
    "gender",
    "birth_date",
    "death_date",
    "father_id",
    "mother_id",
    "child_order",
    "phone",
    "address",
    "email",
    "photo_url",
    "notes",
)

# Columns copied from a source member onto its clone.
_CLONED_COLUMNS = (
    "name",
    "gender",
    "birth_date",
    "death_date",
    "child_order",
    "phone",
    "address",
    "email",
    "photo_url",
    "notes",
)


# ---------------------------------------------------------------------------
# Ordering and traversal (pure)
# ---------------------------------------------------------------------------


def sibling_sort_key(m: Member, child_order: Optional[int] = None) -> tuple:
    """Explicit order, then birth date, then id. Missing values sort last.

    ``child_order`` overrides ``m.child_order`` (used with computed ranks).
    """
    order = m.child_order if child_order is None else child_order
    return (
        order is None,
        order if order is not None else 0,
        m.birth_date is None,
        m.birth_date or date.min,
        m.id,
    )


def compute_child_order(members: Iterable[Member]) -> dict[int, int]:
    """Rank members within each full sibling group (same father_id and mother_id).

    Members with neither parent are roots and get no rank. A stored
    ``child_order`` is kept as is; members without one get their 1-based
    position in the sorted group. Nothing is renumbered or persisted.
    """

    groups: dict[tuple[Optional[int], Optional[int]], list[Member]] = {}
    for m in members:
        if m.father_id is None and m.mother_id is None:
            continue
        groups.setdefault((m.father_id, m.mother_id), []).append(m)

    ranks: dict[int, int] = {}
    for group in groups.values():
        group.sort(key=sibling_sort_key)
        for idx, m in enumerate(group, start=1):
            ranks[m.id] = m.child_order if m.child_order is not None else idx
    return ranks


def collect_descendants(root_id: int, members: Iterable[Member]) -> list[Member]:
    """Breadth-first descendants of ``root_id`` among ``members``.

    Parents always precede their children in the result, which is what the
    id remapping during subtree cloning relies on. Each member is visited once,
    so malformed parent links cannot loop.
    """

    by_father: dict[int, list[Member]] = {}
    by_mother: dict[int, list[Member]] = {}
    for m in members:
        if m.father_id is not None:
            by_father.setdefault(m.father_id, []).append(m)
        if m.mother_id is not None:
            by_mother.setdefault(m.mother_id, []).append(m)

    out: list[Member] = []
    visited = {root_id}
    queue = deque([root_id])
    while queue:
        current = queue.popleft()
        for child in by_father.get(current, []) + by_mother.get(current, []):
            if child.id in visited:
                continue
            visited.add(child.id)
            out.append(child)
            queue.append(child.id)
    return out


def list_members_with_order(store: Any, family_id: int) -> list[dict[str, Any]]:
    members = store.list_family_members(family_id)
    ranks = compute_child_order(members)
    return [m.to_public(child_order=ranks.get(m.id)) for m in members]


# ---------------------------------------------------------------------------
# Validation and spouse resolution (read-only)
# ---------------------------------------------------------------------------


@dataclass
class SpouseChoice:
    """Outcome of resolving ``spouse_id`` / ``spouse_code``.

    ``foreign`` is set when the spouse lives in another family and has to be
    cloned; ``spouse_id`` is then filled in after cloning.
    """

    spouse_id: Optional[int] = None
    foreign: Optional[Member] = None


def _require_identity(payload: MemberPayload) -> None:
    if not payload.name or not payload.gender:
        raise ValidationError("name and gender are required")


def _check_parents(store: Any, family_id: int, payload: MemberPayload, member_id: int | None = None) -> None:
    parent_ids = {pid for pid in (payload.father_id, payload.mother_id) if pid is not None}
    if not parent_ids:
        return
    if member_id is not None and member_id in parent_ids:
        raise ValidationError("a member cannot be their own parent")
    if store.family_member_ids(parent_ids, family_id) != parent_ids:
        raise ValidationError("parents must belong to the same family")


def resolve_spouse(
    store: Any,
    family_id: int,
    payload: MemberPayload,
    *,
    member_id: int | None = None,
    current_spouse: Member | None = None,
) -> SpouseChoice:
    """Decide the spouse reference for a member without writing anything.

    ``spouse_id`` wins over ``spouse_code``. A code naming a member of the
    same family links directly; one naming a member of another family asks for
    a clone, unless ``current_spouse`` already is a clone of that member.
    """

    if payload.spouse_id is not None:
        if payload.spouse_id == member_id:
            raise ValidationError("a member cannot be their own spouse")
        if store.get_member(payload.spouse_id) is None:
            raise ValidationError("spouse not found")
        return SpouseChoice(spouse_id=payload.spouse_id)

    if not payload.spouse_code:
        return SpouseChoice()

    found = store.get_member_by_code(normalize_code(payload.spouse_code))
    if found is None:
        raise ValidationError("spouse code not found")

    if found.family_id == family_id:
        if found.id == member_id:
            raise ValidationError("a member cannot be their own spouse")
        return SpouseChoice(spouse_id=found.id)

    if current_spouse is not None and current_spouse.cloned_from == ClonedFrom(found.family_id, found.id):
        return SpouseChoice(spouse_id=current_spouse.id)

    return SpouseChoice(foreign=found)


# ---------------------------------------------------------------------------
# Cloning
# ---------------------------------------------------------------------------


def clone_member(
    store: Any,
    source: Member,
    target_family_id: int,
    *,
    spouse_id: int | None = None,
    father_id: int | None = None,
    mother_id: int | None = None,
) -> Member:
    """Copy ``source`` into ``target_family_id`` under a fresh member code.

    Provenance is recorded only when the source lives in another family.
    """

    values: dict[str, Any] = {c: getattr(source, c) for c in _CLONED_COLUMNS}
    values.update(
        family_id=target_family_id,
        member_code=generate_member_code(store),
        father_id=father_id,
        mother_id=mother_id,
        spouse_id=spouse_id,
        cloned_from_family_id=None,
        cloned_from_member_id=None,
    )
    if source.family_id != target_family_id:
        values["cloned_from_family_id"] = source.family_id
        values["cloned_from_member_id"] = source.id
    return store.insert_member(values)


def clone_spouse_line(store: Any, spouse: Member, member: Member) -> Member:
    """Clone a foreign ``spouse`` and all of its descendants into ``member``'s family.

    The spouse clone is linked to ``member``. Descendants keep their shape
    through an old-id -> new-id map; a child of the spouse whose parent slot
    matching ``member``'s gender is still empty after remapping gets
    ``member`` as that parent.
    """

    family_id = member.family_id
    clone = clone_member(store, spouse, family_id, spouse_id=member.id)

    descendants = collect_descendants(spouse.id, store.list_family_members(spouse.family_id))
    id_map: dict[int, int] = {spouse.id: clone.id}
    for d in descendants:
        father_id = id_map.get(d.father_id) if d.father_id is not None else None
        mother_id = id_map.get(d.mother_id) if d.mother_id is not None else None

        if spouse.id in (d.father_id, d.mother_id):
            if member.gender == "male":
                if father_id is None:
                    father_id = member.id
            elif mother_id is None:
                mother_id = member.id

        copy = clone_member(store, d, family_id, father_id=father_id, mother_id=mother_id)
        id_map[d.id] = copy.id

    log.info(
        "cloned member %s (+%d descendants) from family %s into family %s as %s",
        spouse.id,
        len(descendants),
        spouse.family_id,
        family_id,
        clone.id,
    )
    return clone


# ---------------------------------------------------------------------------
# Spouse pointer maintenance
# ---------------------------------------------------------------------------


def _link_back(store: Any, family_id: int, member_id: int, spouse_id: int) -> None:
    """Point ``spouse_id`` back at ``member_id`` if it lives in the same family."""
    spouse = store.get_member(spouse_id)
    if spouse is None or spouse.family_id != family_id:
        return
    if spouse.spouse_id != member_id:
        store.update_member(spouse.id, {"spouse_id": member_id})


def _release_previous_spouse(
    store: Any,
    family_id: int,
    actor_id: int | None,
    member_id: int,
    old_spouse_id: int | None,
    new_spouse_id: int | None,
) -> None:
    if old_spouse_id is None or old_spouse_id == new_spouse_id:
        return
    previous = store.get_member(old_spouse_id)
    if previous is None:
        return

    if previous.spouse_id == member_id:
        store.update_member(previous.id, {"spouse_id": None})

    # Removing a cloned partner removes the clone; its children stay, orphaned at that slot.
    if new_spouse_id is None and previous.is_clone and previous.family_id == family_id:
        append_audit_entry(
            store,
            member_id=previous.id,
            action=AuditAction.DELETE,
            changed_by=actor_id,
            old_values=previous.snapshot(),
        )
        store.clear_parent_refs(previous.id, family_id)
        store.delete_member(previous.id, family_id)
        log.info("removed cloned spouse %s from family %s", previous.id, family_id)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def _payload_values(payload: MemberPayload) -> dict[str, Any]:
    return {c: getattr(payload, c) for c in _PAYLOAD_COLUMNS}


def _reload(store: Any, member_id: int) -> Member:
    member = store.get_member(member_id)
    if member is None:
        raise NotFoundError("member not found")
    return member


def create_member(
    store: Any,
    family_id: int,
    actor_id: int | None,
    payload: MemberPayload,
    *,
    today: date | None = None,
) -> Member:
    _require_identity(payload)
    _check_parents(store, family_id, payload)
    choice = resolve_spouse(store, family_id, payload)

    values = _payload_values(payload)
    values.update(
        family_id=family_id,
        member_code=generate_member_code(store),
        spouse_id=choice.spouse_id,
    )
    member = store.insert_member(values)

    if choice.foreign is not None:
        clone = clone_spouse_line(store, choice.foreign, member)
        store.update_member(member.id, {"spouse_id": clone.id})
    elif choice.spouse_id is not None:
        _link_back(store, family_id, member.id, choice.spouse_id)

    member = _reload(store, member.id)
    append_audit_entry(
        store,
        member_id=member.id,
        action=AuditAction.CREATE,
        changed_by=actor_id,
        new_values=member.snapshot(),
    )
    if member.birth_date is not None:
        sync_member_birthdays(
            store,
            family_id=family_id,
            name=member.name,
            birth_date=member.birth_date,
            today=today,
        )
    return member


def update_member(
    store: Any,
    family_id: int,
    actor_id: int | None,
    member_id: int,
    payload: MemberPayload,
    *,
    today: date | None = None,
) -> Member:
    before = store.get_family_member(member_id, family_id)
    if before is None:
        raise NotFoundError("member not found")

    _require_identity(payload)
    _check_parents(store, family_id, payload, member_id)
    current_spouse = store.get_member(before.spouse_id) if before.spouse_id is not None else None
    choice = resolve_spouse(
        store,
        family_id,
        payload,
        member_id=member_id,
        current_spouse=current_spouse,
    )

    values = _payload_values(payload)
    values["spouse_id"] = choice.spouse_id
    store.update_member(member_id, values)

    new_spouse_id = choice.spouse_id
    if choice.foreign is not None:
        clone = clone_spouse_line(store, choice.foreign, _reload(store, member_id))
        store.update_member(member_id, {"spouse_id": clone.id})
        new_spouse_id = clone.id

    _release_previous_spouse(store, family_id, actor_id, member_id, before.spouse_id, new_spouse_id)

    if new_spouse_id is not None and choice.foreign is None:
        _link_back(store, family_id, member_id, new_spouse_id)

    after = _reload(store, member_id)
    audit_update(
        store,
        member_id=member_id,
        changed_by=actor_id,
        before=before.snapshot(),
        after=after.snapshot(),
    )
    sync_member_birthdays(
        store,
        family_id=family_id,
        name=after.name,
        birth_date=after.birth_date,
        old_name=before.name,
        old_birth_date=before.birth_date,
        is_update=True,
        today=today,
    )
    return after


def delete_member(store: Any, family_id: int, actor_id: int | None, member_id: int) -> None:
    """Delete one member; references to it in the family are nulled, never cascaded."""
    member = store.get_family_member(member_id, family_id)
    if member is None:
        raise NotFoundError("member not found")

    append_audit_entry(
        store,
        member_id=member.id,
        action=AuditAction.DELETE,
        changed_by=actor_id,
        old_values=member.snapshot(),
    )
    store.clear_parent_refs(member.id, family_id)
    store.clear_spouse_refs(member.id, family_id)
    if member.birth_date is not None:
        remove_member_birthdays(store, family_id=family_id, name=member.name)
    store.delete_member(member.id, family_id)
    log.info("deleted member %s from family %s", member.id, family_id)
