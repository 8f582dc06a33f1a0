"""Relational store used by the family graph engine.

The engine only needs a handful of query primitives; keeping them on one
object lets a whole create/update/delete run against a single connection
inside one transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Any, Iterable, Iterator, Optional

import psycopg
from psycopg.types.json import Jsonb

try:
    from .models import EVENT_COLUMNS, MEMBER_COLUMNS, Event, Member
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from models import EVENT_COLUMNS, MEMBER_COLUMNS, Event, Member

_MEMBER_SELECT = "SELECT " + ", ".join(MEMBER_COLUMNS) + " FROM family_members"
_EVENT_SELECT = "SELECT " + ", ".join(EVENT_COLUMNS) + " FROM family_events"

_WRITABLE_MEMBER_COLUMNS = frozenset(MEMBER_COLUMNS) - {"id"}
_WRITABLE_EVENT_COLUMNS = frozenset(EVENT_COLUMNS) - {"id", "family_id", "created_by"}


def _like_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _checked_columns(values: dict[str, Any]) -> list[str]:
    cols = list(values)
    unknown = [c for c in cols if c not in _WRITABLE_MEMBER_COLUMNS]
    if unknown:
        raise ValueError(f"unknown member columns: {unknown}")
    return cols


class PgFamilyStore:
    def __init__(self, conn: psycopg.Connection):
        self._conn = conn

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Scope whose statements roll back on error without aborting the outer transaction."""
        with self._conn.transaction():
            yield

    # -- members ---------------------------------------------------------

    def get_member(self, member_id: int) -> Optional[Member]:
        row = self._conn.execute(f"{_MEMBER_SELECT} WHERE id = %s", (member_id,)).fetchone()
        return Member.from_row(tuple(row)) if row else None

    def get_family_member(self, member_id: int, family_id: int) -> Optional[Member]:
        row = self._conn.execute(
            f"{_MEMBER_SELECT} WHERE id = %s AND family_id = %s",
            (member_id, family_id),
        ).fetchone()
        return Member.from_row(tuple(row)) if row else None

    def get_member_by_code(self, code: str) -> Optional[Member]:
        """Look up a member in any family; ``code`` must already be normalized."""
        row = self._conn.execute(
            f"{_MEMBER_SELECT} WHERE UPPER(member_code) = %s LIMIT 1",
            (code,),
        ).fetchone()
        return Member.from_row(tuple(row)) if row else None

    def member_code_exists(self, code: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM family_members WHERE member_code = %s LIMIT 1",
            (code,),
        ).fetchone()
        return row is not None

    def list_family_members(self, family_id: int) -> list[Member]:
        rows = self._conn.execute(
            f"{_MEMBER_SELECT} WHERE family_id = %s ORDER BY birth_date NULLS LAST, id",
            (family_id,),
        ).fetchall()
        return [Member.from_row(tuple(r)) for r in rows]

    def list_members_by_ids(self, member_ids: Iterable[int]) -> list[Member]:
        ids = sorted(set(member_ids))
        if not ids:
            return []
        rows = self._conn.execute(
            f"{_MEMBER_SELECT} WHERE id = ANY(%s) ORDER BY id",
            (ids,),
        ).fetchall()
        return [Member.from_row(tuple(r)) for r in rows]

    def list_children_of(self, parent_ids: Iterable[int]) -> list[Member]:
        ids = sorted(set(parent_ids))
        if not ids:
            return []
        rows = self._conn.execute(
            f"{_MEMBER_SELECT} WHERE father_id = ANY(%s) OR mother_id = ANY(%s) ORDER BY id",
            (ids, ids),
        ).fetchall()
        return [Member.from_row(tuple(r)) for r in rows]

    def family_member_ids(self, member_ids: Iterable[int], family_id: int) -> set[int]:
        """Return the subset of ``member_ids`` that belong to ``family_id``."""
        ids = sorted(set(member_ids))
        if not ids:
            return set()
        rows = self._conn.execute(
            "SELECT id FROM family_members WHERE id = ANY(%s) AND family_id = %s",
            (ids, family_id),
        ).fetchall()
        return {r[0] for r in rows}

    def insert_member(self, values: dict[str, Any]) -> Member:
        cols = _checked_columns(values)
        placeholders = ", ".join(["%s"] * len(cols))
        row = self._conn.execute(
            f"INSERT INTO family_members ({', '.join(cols)}) VALUES ({placeholders}) "
            f"RETURNING {', '.join(MEMBER_COLUMNS)}",
            tuple(values[c] for c in cols),
        ).fetchone()
        return Member.from_row(tuple(row))

    def update_member(self, member_id: int, values: dict[str, Any]) -> None:
        if not values:
            return
        cols = _checked_columns(values)
        assignments = ", ".join(f"{c} = %s" for c in cols)
        self._conn.execute(
            f"UPDATE family_members SET {assignments}, updated_at = now() WHERE id = %s",
            (*(values[c] for c in cols), member_id),
        )

    def clear_parent_refs(self, parent_id: int, family_id: int) -> None:
        """Null any father/mother slot in ``family_id`` that points at ``parent_id``."""
        self._conn.execute(
            """
            UPDATE family_members
            SET father_id = CASE WHEN father_id = %s THEN NULL ELSE father_id END,
                mother_id = CASE WHEN mother_id = %s THEN NULL ELSE mother_id END,
                updated_at = now()
            WHERE family_id = %s AND (father_id = %s OR mother_id = %s)
            """,
            (parent_id, parent_id, family_id, parent_id, parent_id),
        )

    def clear_spouse_refs(self, spouse_id: int, family_id: int) -> None:
        self._conn.execute(
            """
            UPDATE family_members
            SET spouse_id = NULL, updated_at = now()
            WHERE family_id = %s AND spouse_id = %s
            """,
            (family_id, spouse_id),
        )

    def delete_member(self, member_id: int, family_id: int) -> None:
        self._conn.execute(
            "DELETE FROM family_members WHERE id = %s AND family_id = %s",
            (member_id, family_id),
        )

    # -- audit log -------------------------------------------------------

    def insert_audit_entry(
        self,
        *,
        member_id: int,
        action: str,
        changed_by: int | None,
        changed_fields: list[str] | None,
        old_values: dict[str, Any] | None,
        new_values: dict[str, Any] | None,
    ) -> None:
        self._conn.execute(
            """
            INSERT INTO member_audit_log
              (member_id, action, changed_by, changed_fields, old_values, new_values)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                member_id,
                action,
                changed_by,
                Jsonb(changed_fields) if changed_fields is not None else None,
                Jsonb(old_values) if old_values is not None else None,
                Jsonb(new_values) if new_values is not None else None,
            ),
        )

    def list_audit_entries(self, member_id: int) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            """
            SELECT a.id, a.action, a.changed_by, u.username, a.changed_fields,
                   a.old_values, a.new_values, a.created_at
            FROM member_audit_log a
            LEFT JOIN users u ON u.id = a.changed_by
            WHERE a.member_id = %s
            ORDER BY a.created_at DESC, a.id DESC
            """,
            (member_id,),
        ).fetchall()
        out = []
        for aid, action, changed_by, username, fields, old, new, created in rows:
            out.append({
                "id": aid,
                "action": action,
                "changed_by": changed_by,
                "changed_by_username": username,
                "changed_fields": fields,
                "old_values": old,
                "new_values": new,
                "created_at": created.isoformat() if created else None,
            })
        return out

    # -- calendar --------------------------------------------------------

    def event_exists(self, family_id: int, title: str, event_date: date) -> bool:
        """True if an event titled ``title`` (or containing it) exists on ``event_date``."""
        row = self._conn.execute(
            """
            SELECT 1 FROM family_events
            WHERE family_id = %s
              AND event_date = %s
              AND (title = %s OR title LIKE %s)
            LIMIT 1
            """,
            (family_id, event_date, title, f"%{_like_escape(title)}%"),
        ).fetchone()
        return row is not None

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
        row = self._conn.execute(
            f"""
            INSERT INTO family_events
              (family_id, title, description, event_date, event_time, location, created_by)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {', '.join(EVENT_COLUMNS)}
            """,
            (family_id, title, description, event_date, event_time, location, created_by),
        ).fetchone()
        return Event(*row)

    def delete_events_by_title_substring(self, family_id: int, text: str) -> int:
        cur = self._conn.execute(
            "DELETE FROM family_events WHERE family_id = %s AND title LIKE %s",
            (family_id, f"%{_like_escape(text)}%"),
        )
        return cur.rowcount

    def list_events(
        self,
        family_id: int,
        *,
        year: int | None = None,
        month: int | None = None,
    ) -> list[Event]:
        sql = f"{_EVENT_SELECT} WHERE family_id = %s"
        params: list[Any] = [family_id]
        if year is not None and month is not None:
            sql += " AND EXTRACT(YEAR FROM event_date) = %s AND EXTRACT(MONTH FROM event_date) = %s"
            params.extend([year, month])
        sql += " ORDER BY event_date, event_time NULLS FIRST, id"
        rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [Event(*r) for r in rows]

    def get_event(self, event_id: int, family_id: int) -> Optional[Event]:
        row = self._conn.execute(
            f"{_EVENT_SELECT} WHERE id = %s AND family_id = %s",
            (event_id, family_id),
        ).fetchone()
        return Event(*row) if row else None

    def update_event(self, event_id: int, family_id: int, values: dict[str, Any]) -> None:
        cols = [c for c in values if c in _WRITABLE_EVENT_COLUMNS]
        if not cols:
            return
        assignments = ", ".join(f"{c} = %s" for c in cols)
        self._conn.execute(
            f"UPDATE family_events SET {assignments}, updated_at = now() WHERE id = %s AND family_id = %s",
            (*(values[c] for c in cols), event_id, family_id),
        )

    def delete_event(self, event_id: int, family_id: int) -> bool:
        cur = self._conn.execute(
            "DELETE FROM family_events WHERE id = %s AND family_id = %s",
            (event_id, family_id),
        )
        return cur.rowcount > 0
