from __future__ import annotations

from datetime import date

from familytree.members import create_member
from familytree.models import Member, MemberPayload
from familytree.tree import build_forest, load_tree_members


def _m(mid: int, **kw) -> Member:
    kw.setdefault("family_id", 1)
    kw.setdefault("member_code", f"C{mid}")
    kw.setdefault("name", f"M{mid}")
    kw.setdefault("gender", "male")
    return Member(id=mid, **kw)


def _ids(nodes: list[dict]) -> list[int]:
    return [n["id"] for n in nodes]


def test_roots_are_members_without_parents() -> None:
    forest = build_forest([_m(1), _m(2, gender="female", spouse_id=1), _m(3, father_id=1, mother_id=2)])
    assert _ids(forest["roots"]) == [1, 2]
    assert len(forest["members"]) == 3


def test_child_with_both_parents_appears_under_each() -> None:
    forest = build_forest([_m(1), _m(2, gender="female"), _m(3, father_id=1, mother_id=2)])
    dad, mum = forest["roots"]
    assert _ids(dad["children"]) == [3]
    assert _ids(mum["children"]) == [3]


def test_children_sorted_by_order_then_birth_then_id() -> None:
    forest = build_forest(
        [
            _m(1),
            _m(10, father_id=1, birth_date=date(2001, 1, 1)),
            _m(11, father_id=1, birth_date=date(1999, 1, 1)),
            _m(12, father_id=1),
            _m(13, father_id=1, child_order=1, birth_date=date(2005, 1, 1)),
        ]
    )
    (root,) = forest["roots"]
    assert _ids(root["children"]) == [13, 11, 10, 12]


def test_child_order_is_computed_and_roots_have_none() -> None:
    forest = build_forest([_m(1), _m(2, father_id=1, birth_date=date(2000, 1, 1)), _m(3, father_id=1)])
    (root,) = forest["roots"]
    assert root["child_order"] is None
    assert [(c["id"], c["child_order"]) for c in root["children"]] == [(2, 1), (3, 2)]


def test_grandchildren_nest_recursively() -> None:
    forest = build_forest([_m(1), _m(2, father_id=1), _m(3, father_id=2)])
    (root,) = forest["roots"]
    assert root["children"][0]["children"][0]["id"] == 3
    assert root["children"][0]["children"][0]["children"] == []


def test_parent_outside_the_set_is_ignored() -> None:
    forest = build_forest([_m(2, father_id=99)])
    assert forest["roots"] == []
    assert forest["members"][0]["children"] == []


def test_parent_cycle_terminates() -> None:
    forest = build_forest([_m(1, father_id=2), _m(2, father_id=1)])
    assert forest["roots"] == []
    node = forest["members"][0]
    assert _ids(node["children"]) == [2]
    assert node["children"][0]["children"] == []


def test_clone_provenance_is_exposed() -> None:
    forest = build_forest([_m(1, cloned_from_family_id=2, cloned_from_member_id=8)])
    assert forest["roots"][0]["cloned_from"] == {"family_id": 2, "member_id": 8}
    assert "cloned_from_member_id" not in forest["roots"][0]


def test_load_includes_foreign_spouse_and_their_children(store) -> None:
    bride = store.add("Siti", "female", family_id=2)
    step = store.add("Budi", "male", family_id=2, mother_id=bride.id)
    ali = store.add("Ali", "male", family_id=1, spouse_id=bride.id)

    members = load_tree_members(store, 1)

    assert [m.id for m in members] == [ali.id, bride.id, step.id]
    assert {m.family_id for m in members} == {1}
    forest = build_forest(members)
    assert _ids(forest["roots"]) == [ali.id, bride.id]
    assert _ids(forest["roots"][1]["children"]) == [step.id]


def test_cloned_family_tree_shape(store) -> None:
    """Ali marries Siti from another family; her son comes along into Ali's tree."""
    bride = store.add("Siti", "female", family_id=2, birth_date=date(1970, 5, 1))
    store.add("Budi", "male", family_id=2, mother_id=bride.id, birth_date=date(1995, 1, 1))
    ali = create_member(store, 1, 7, MemberPayload(name="Ali", gender="male", spouse_code=bride.member_code))

    forest = build_forest(load_tree_members(store, 1))

    roots = {n["name"]: n for n in forest["roots"]}
    assert set(roots) == {"Ali", "Siti"}
    assert [c["name"] for c in roots["Ali"]["children"]] == ["Budi"]
    assert [c["name"] for c in roots["Siti"]["children"]] == ["Budi"]
    assert roots["Siti"]["spouse_id"] == ali.id
    assert roots["Siti"]["cloned_from"] == {"family_id": 2, "member_id": bride.id}
