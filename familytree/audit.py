"""Append-only change log for family members.

Writing an entry is best effort: the member change is the source of truth and
a failed audit insert is logged, never raised.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import Any

log = logging.getLogger(__name__)


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def changed_fields(old: dict[str, Any], new: dict[str, Any]) -> list[str]:
    """Return keys whose values differ between ``old`` and ``new`` (stable order)."""
    keys = list(old) + [k for k in new if k not in old]
    return [k for k in keys if old.get(k) != new.get(k)]


def append_audit_entry(
    store: Any,
    *,
    member_id: int,
    action: AuditAction,
    changed_by: int | None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    fields: list[str] | None = None,
) -> bool:
    """Write one audit row inside a savepoint. Returns False if it could not be written."""
    try:
        with store.savepoint():
            store.insert_audit_entry(
                member_id=member_id,
                action=action.value,
                changed_by=changed_by,
                changed_fields=fields,
                old_values=old_values,
                new_values=new_values,
            )
    except Exception:
        log.warning("audit log write failed for member %s (%s)", member_id, action.value, exc_info=True)
        return False
    return True


def audit_update(
    store: Any,
    *,
    member_id: int,
    changed_by: int | None,
    before: dict[str, Any],
    after: dict[str, Any],
) -> list[str]:
    """Record an UPDATE with only the changed columns; nothing is written if none changed."""
    fields = changed_fields(before, after)
    if fields:
        append_audit_entry(
            store,
            member_id=member_id,
            action=AuditAction.UPDATE,
            changed_by=changed_by,
            old_values={f: before.get(f) for f in fields},
            new_values={f: after.get(f) for f in fields},
            fields=fields,
        )
    return fields
