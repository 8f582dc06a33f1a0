"""Family calendar routes.

Listing first tops up the birthday window for every member of the family, so
the calendar stays complete even for members created before the window moved.
"""

from __future__ import annotations

from datetime import date, time
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, field_validator

try:
    from ..auth import get_family_scope
    from ..birthdays import sync_family_birthdays
    from ..db import db_conn, unit_of_work
    from ..errors import ValidationError
    from ..store import PgFamilyStore
    from ..util import blank_to_none, normalize_date
except ImportError:  # pragma: no cover
    from auth import get_family_scope
    from birthdays import sync_family_birthdays
    from db import db_conn, unit_of_work
    from errors import ValidationError
    from store import PgFamilyStore
    from util import blank_to_none, normalize_date

router = APIRouter(prefix="/events", tags=["events"])


class EventPayload(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    event_date: Optional[date] = None
    event_time: Optional[time] = None
    location: Optional[str] = None

    @field_validator("event_date", mode="before")
    @classmethod
    def _trim_date(cls, value: Any) -> Any:
        return normalize_date(value)

    @field_validator("title", "description", "event_time", "location", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        return blank_to_none(value)

    def require_complete(self) -> None:
        if not self.title or self.event_date is None:
            raise ValidationError("title and event_date are required")


@router.get("")
def list_events(
    request: Request,
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=1, le=9999),
) -> list[dict[str, Any]]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        store = PgFamilyStore(conn)
        with unit_of_work(conn):
            sync_family_birthdays(store, scope.family_id, store.list_family_members(scope.family_id))
        if month is not None and year is not None:
            events = store.list_events(scope.family_id, year=year, month=month)
        else:
            events = store.list_events(scope.family_id)
    return [e.to_public() for e in events]


@router.post("", status_code=201)
def create_event(body: EventPayload, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    body.require_complete()
    with db_conn() as conn:
        with unit_of_work(conn):
            event = PgFamilyStore(conn).insert_event(
                family_id=scope.family_id,
                title=body.title,
                description=body.description,
                event_date=body.event_date,
                event_time=body.event_time,
                location=body.location,
                created_by=scope.member_id,
            )
    return event.to_public()


@router.get("/{event_id}")
def get_event(event_id: int, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        event = PgFamilyStore(conn).get_event(event_id, scope.family_id)
    if event is None:
        raise HTTPException(status_code=404, detail="event not found")
    return event.to_public()


@router.put("/{event_id}")
def update_event(event_id: int, body: EventPayload, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        store = PgFamilyStore(conn)
        with unit_of_work(conn):
            if store.get_event(event_id, scope.family_id) is None:
                raise HTTPException(status_code=404, detail="event not found")
            body.require_complete()
            store.update_event(
                event_id,
                scope.family_id,
                {
                    "title": body.title,
                    "description": body.description,
                    "event_date": body.event_date,
                    "event_time": body.event_time,
                    "location": body.location,
                },
            )
            event = store.get_event(event_id, scope.family_id)
    return event.to_public()


@router.delete("/{event_id}")
def delete_event(event_id: int, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        with unit_of_work(conn):
            deleted = PgFamilyStore(conn).delete_event(event_id, scope.family_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="event not found")
    return {"ok": True, "id": event_id}
