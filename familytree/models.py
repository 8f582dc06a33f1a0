"""Record types shared by the engine, the store and the routes.

Members form an arena keyed by integer id: relationship fields are plain ids,
never object references, so a family can be serialized or traversed without
back-reference cycles.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from datetime import date
import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, field_validator

try:
    from .util import blank_to_none, iso_or_none, normalize_date
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from util import blank_to_none, iso_or_none, normalize_date

Gender = Literal["male", "female"]

# Provenance marker written into ``notes`` by the previous system. Still
# recognised on read; new clones use the structured columns instead.
_LEGACY_CLONE_MARKER_RE = re.compile(r"CLONED_FROM:(\d+):(\d+)")


@dataclass(frozen=True)
class ClonedFrom:
    family_id: int
    member_id: int


@dataclass
class Member:
    id: int
    family_id: int
    member_code: str
    name: str
    gender: str
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    father_id: Optional[int] = None
    mother_id: Optional[int] = None
    spouse_id: Optional[int] = None
    child_order: Optional[int] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None
    notes: Optional[str] = None
    cloned_from_family_id: Optional[int] = None
    cloned_from_member_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: tuple[Any, ...]) -> "Member":
        """Build a member from a row selected with ``MEMBER_COLUMNS``."""
        return cls(*row)

    @property
    def cloned_from(self) -> ClonedFrom | None:
        if self.cloned_from_family_id is not None and self.cloned_from_member_id is not None:
            return ClonedFrom(self.cloned_from_family_id, self.cloned_from_member_id)
        if self.notes:
            m = _LEGACY_CLONE_MARKER_RE.search(self.notes)
            if m:
                return ClonedFrom(int(m.group(1)), int(m.group(2)))
        return None

    @property
    def is_clone(self) -> bool:
        return self.cloned_from is not None

    def copy(self, **changes: Any) -> "Member":
        return replace(self, **changes)

    def snapshot(self) -> dict[str, Any]:
        """Flat JSON-safe view of every stored column (audit log values)."""
        out = asdict(self)
        out["birth_date"] = iso_or_none(self.birth_date)
        out["death_date"] = iso_or_none(self.death_date)
        return out

    def to_public(self, *, child_order: int | None = None) -> dict[str, Any]:
        out = self.snapshot()
        del out["cloned_from_family_id"]
        del out["cloned_from_member_id"]
        origin = self.cloned_from
        out["cloned_from"] = (
            {"family_id": origin.family_id, "member_id": origin.member_id} if origin else None
        )
        if child_order is not None:
            out["child_order"] = child_order
        return out


MEMBER_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(Member))


@dataclass
class Event:
    id: int
    family_id: int
    title: str
    description: Optional[str]
    event_date: date
    event_time: Any = None
    location: Optional[str] = None
    created_by: Optional[int] = None

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "family_id": self.family_id,
            "title": self.title,
            "description": self.description,
            "event_date": iso_or_none(self.event_date),
            "event_time": self.event_time.strftime("%H:%M") if self.event_time else None,
            "location": self.location,
            "created_by": self.created_by,
        }


EVENT_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(Event))


class MemberPayload(BaseModel):
    """Create/update body for a member.

    ``spouse_code`` identifies a spouse in any family by member code and is
    ignored whenever ``spouse_id`` is given.
    """

    name: Optional[str] = None
    gender: Optional[Gender] = None
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    father_id: Optional[int] = None
    mother_id: Optional[int] = None
    spouse_id: Optional[int] = None
    spouse_code: Optional[str] = None
    child_order: Optional[int] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("birth_date", "death_date", mode="before")
    @classmethod
    def _trim_date(cls, value: Any) -> Any:
        return normalize_date(value)

    @field_validator(
        "name",
        "father_id",
        "mother_id",
        "spouse_id",
        "spouse_code",
        "child_order",
        "phone",
        "address",
        "email",
        "photo_url",
        "notes",
        mode="before",
    )
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        return blank_to_none(value)

    @field_validator("gender", mode="before")
    @classmethod
    def _lower_gender(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value
