from __future__ import annotations

import copy
from contextlib import contextmanager
from dataclasses import fields
from datetime import date
import itertools
from typing import Any, Iterable, Iterator, Optional

import pytest

from familytree.models import Event, Member


class MemoryStore:
    """In-memory stand-in for PgFamilyStore.

    Implements the same query primitives over plain dicts. ``savepoint()``
    snapshots the tables and restores them when the block raises, like a
    database savepoint would.
    """

    def __init__(self) -> None:
        self.members: dict[int, Member] = {}
        self.events: dict[int, Event] = {}
        self.audit: list[dict[str, Any]] = []
        self.fail_audit = False
        self.fail_events = False
        self._member_ids = itertools.count(1)
        self._event_ids = itertools.count(1)
        self._codes = itertools.count(1)

    # -- seeding ---------------------------------------------------------

    def add(self, name: str, gender: str = "male", *, family_id: int = 1, **values: Any) -> Member:
        values.setdefault("member_code", f"SEED{next(self._codes):04d}")
        return self.insert_member({"name": name, "gender": gender, "family_id": family_id, **values})

    # -- transactions ----------------------------------------------------

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        saved = copy.deepcopy((self.members, self.events, self.audit))
        try:
            yield
        except Exception:
            self.members, self.events, self.audit = saved
            raise

    # -- members ---------------------------------------------------------

    def get_member(self, member_id: int) -> Optional[Member]:
        m = self.members.get(member_id)
        return m.copy() if m else None

    def get_family_member(self, member_id: int, family_id: int) -> Optional[Member]:
        m = self.members.get(member_id)
        return m.copy() if m and m.family_id == family_id else None

    def get_member_by_code(self, code: str) -> Optional[Member]:
        for m in self.members.values():
            if m.member_code.upper() == code:
                return m.copy()
        return None

    def member_code_exists(self, code: str) -> bool:
        return any(m.member_code == code for m in self.members.values())

    def list_family_members(self, family_id: int) -> list[Member]:
        rows = [m.copy() for m in self.members.values() if m.family_id == family_id]
        rows.sort(key=lambda m: (m.birth_date is None, m.birth_date or date.min, m.id))
        return rows

    def list_members_by_ids(self, member_ids: Iterable[int]) -> list[Member]:
        return [self.members[i].copy() for i in sorted(set(member_ids)) if i in self.members]

    def list_children_of(self, parent_ids: Iterable[int]) -> list[Member]:
        ids = set(parent_ids)
        return [
            m.copy()
            for _, m in sorted(self.members.items())
            if m.father_id in ids or m.mother_id in ids
        ]

    def family_member_ids(self, member_ids: Iterable[int], family_id: int) -> set[int]:
        return {i for i in member_ids if i in self.members and self.members[i].family_id == family_id}

    def insert_member(self, values: dict[str, Any]) -> Member:
        known = {f.name for f in fields(Member)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"unknown member columns: {sorted(unknown)}")
        if self.member_code_exists(values["member_code"]):
            raise ValueError("duplicate member_code")
        member = Member(id=next(self._member_ids), **values)
        self.members[member.id] = member
        return member.copy()

    def update_member(self, member_id: int, values: dict[str, Any]) -> None:
        if member_id in self.members:
            self.members[member_id] = self.members[member_id].copy(**values)

    def clear_parent_refs(self, parent_id: int, family_id: int) -> None:
        for mid, m in list(self.members.items()):
            if m.family_id != family_id:
                continue
            changes = {}
            if m.father_id == parent_id:
                changes["father_id"] = None
            if m.mother_id == parent_id:
                changes["mother_id"] = None
            if changes:
                self.members[mid] = m.copy(**changes)

    def clear_spouse_refs(self, spouse_id: int, family_id: int) -> None:
        for mid, m in list(self.members.items()):
            if m.family_id == family_id and m.spouse_id == spouse_id:
                self.members[mid] = m.copy(spouse_id=None)

    def delete_member(self, member_id: int, family_id: int) -> None:
        m = self.members.get(member_id)
        if m and m.family_id == family_id:
            del self.members[member_id]

    # -- audit -----------------------------------------------------------

    def insert_audit_entry(self, **entry: Any) -> None:
        if self.fail_audit:
            raise RuntimeError("audit table unavailable")
        self.audit.append(dict(entry))

    def list_audit_entries(self, member_id: int) -> list[dict[str, Any]]:
        return [e for e in reversed(self.audit) if e["member_id"] == member_id]

    def audit_for(self, member_id: int, action: str | None = None) -> list[dict[str, Any]]:
        return [e for e in self.audit if e["member_id"] == member_id and (action is None or e["action"] == action)]

    # -- events ----------------------------------------------------------

    def event_exists(self, family_id: int, title: str, event_date: date) -> bool:
        return any(
            e.family_id == family_id and e.event_date == event_date and title in e.title
            for e in self.events.values()
        )

    def insert_event(
        self,
        *,
        family_id: int,
        title: str,
        description: str | None,
        event_date: date,
        event_time: Any = None,
        location: str | None = None,
        created_by: int | None = None,
    ) -> Event:
        if self.fail_events:
            raise RuntimeError("calendar table unavailable")
        event = Event(next(self._event_ids), family_id, title, description, event_date, event_time, location, created_by)
        self.events[event.id] = event
        return event

    def delete_events_by_title_substring(self, family_id: int, text: str) -> int:
        doomed = [eid for eid, e in self.events.items() if e.family_id == family_id and text in e.title]
        for eid in doomed:
            del self.events[eid]
        return len(doomed)

    def list_events(self, family_id: int, *, year: int | None = None, month: int | None = None) -> list[Event]:
        rows = [e for e in self.events.values() if e.family_id == family_id]
        if year is not None and month is not None:
            rows = [e for e in rows if e.event_date.year == year and e.event_date.month == month]
        return sorted(rows, key=lambda e: (e.event_date, e.id))

    def get_event(self, event_id: int, family_id: int) -> Optional[Event]:
        e = self.events.get(event_id)
        return e if e and e.family_id == family_id else None

    def titles(self, family_id: int = 1) -> list[str]:
        return sorted({e.title for e in self.events.values() if e.family_id == family_id})


@pytest.fixture()
def fixed_today() -> date:
    # Keep tests deterministic.
    return date(2024, 6, 1)


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()
