"""Media gallery metadata (photos and videos of family events).

Files themselves are stored elsewhere; rows only carry their URLs.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

import psycopg
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, field_validator

try:
    from ..auth import get_family_scope
    from ..db import db_conn, unit_of_work
    from ..errors import ValidationError
    from ..util import blank_to_none
except ImportError:  # pragma: no cover
    from auth import get_family_scope
    from db import db_conn, unit_of_work
    from errors import ValidationError
    from util import blank_to_none

router = APIRouter(prefix="/documentation", tags=["documentation"])

_DOC_SELECT = """
    SELECT d.id, d.family_id, d.title, d.description, d.file_type, d.file_url,
           d.thumbnail_url, d.event_id, d.uploaded_by, d.created_at,
           u.name AS uploaded_by_name, e.title AS event_title
    FROM documentation d
    LEFT JOIN users u ON u.id = d.uploaded_by
    LEFT JOIN family_events e ON e.id = d.event_id
"""


class DocumentationCreate(BaseModel):
    title: str
    file_type: Literal["photo", "video"]
    file_url: str
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    event_id: Optional[int] = None

    @field_validator("description", "thumbnail_url", "event_id", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        return blank_to_none(value)


class DocumentationUpdate(BaseModel):
    title: str
    description: Optional[str] = None
    event_id: Optional[int] = None

    @field_validator("description", "event_id", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        return blank_to_none(value)


def _row_to_dict(r: tuple) -> dict[str, Any]:
    (did, fid, title, desc, ftype, url, thumb, event_id, uploaded_by, created, uploader, event_title) = r
    return {
        "id": did,
        "family_id": fid,
        "title": title,
        "description": desc,
        "file_type": ftype,
        "file_url": url,
        "thumbnail_url": thumb,
        "event_id": event_id,
        "event_title": event_title,
        "uploaded_by": uploaded_by,
        "uploaded_by_name": uploader,
        "created_at": created.isoformat() if created else None,
    }


def _check_event(conn: psycopg.Connection, event_id: int | None, family_id: int) -> None:
    if event_id is None:
        return
    row = conn.execute(
        "SELECT 1 FROM family_events WHERE id = %s AND family_id = %s",
        (event_id, family_id),
    ).fetchone()
    if row is None:
        raise ValidationError("event not found in this family")


def _fetch(conn: psycopg.Connection, doc_id: int, family_id: int) -> dict[str, Any]:
    row = conn.execute(
        _DOC_SELECT + " WHERE d.id = %s AND d.family_id = %s",
        (doc_id, family_id),
    ).fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail="documentation not found")
    return _row_to_dict(row)


@router.get("")
def list_documentation(
    request: Request,
    event_id: Optional[int] = None,
    type: Optional[Literal["photo", "video"]] = None,
) -> list[dict[str, Any]]:
    scope = get_family_scope(request)
    sql = _DOC_SELECT + " WHERE d.family_id = %s"
    params: list[Any] = [scope.family_id]
    if event_id is not None:
        sql += " AND d.event_id = %s"
        params.append(event_id)
    if type is not None:
        sql += " AND d.file_type = %s"
        params.append(type)
    sql += " ORDER BY d.created_at DESC, d.id DESC"

    with db_conn() as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
    return [_row_to_dict(r) for r in rows]


@router.post("", status_code=201)
def create_documentation(body: DocumentationCreate, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    if not body.title.strip() or not body.file_url.strip():
        raise ValidationError("title and file_url are required")

    with db_conn() as conn:
        with unit_of_work(conn):
            _check_event(conn, body.event_id, scope.family_id)
            row = conn.execute(
                """
                INSERT INTO documentation
                  (family_id, title, description, file_type, file_url, thumbnail_url, event_id, uploaded_by)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    scope.family_id,
                    body.title.strip(),
                    body.description,
                    body.file_type,
                    body.file_url.strip(),
                    body.thumbnail_url,
                    body.event_id,
                    scope.user_id,
                ),
            ).fetchone()
            return _fetch(conn, row[0], scope.family_id)


@router.get("/{doc_id}")
def get_documentation(doc_id: int, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        return _fetch(conn, doc_id, scope.family_id)


@router.put("/{doc_id}")
def update_documentation(doc_id: int, body: DocumentationUpdate, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        with unit_of_work(conn):
            _fetch(conn, doc_id, scope.family_id)
            if not body.title.strip():
                raise ValidationError("title is required")
            _check_event(conn, body.event_id, scope.family_id)
            conn.execute(
                """
                UPDATE documentation
                SET title = %s, description = %s, event_id = %s, updated_at = now()
                WHERE id = %s AND family_id = %s
                """,
                (body.title.strip(), body.description, body.event_id, doc_id, scope.family_id),
            )
            return _fetch(conn, doc_id, scope.family_id)


@router.delete("/{doc_id}")
def delete_documentation(doc_id: int, request: Request) -> dict[str, Any]:
    scope = get_family_scope(request)
    with db_conn() as conn:
        with unit_of_work(conn):
            _fetch(conn, doc_id, scope.family_id)
            conn.execute(
                "DELETE FROM documentation WHERE id = %s AND family_id = %s",
                (doc_id, scope.family_id),
            )
    return {"ok": True, "id": doc_id}
