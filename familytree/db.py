from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    return url


@contextmanager
def db_conn() -> Iterator[psycopg.Connection]:
    """Yield a database connection.

    Leaving the block commits whatever the handler left open; an exception
    rolls it back (psycopg's connection context manager semantics).
    """
    with psycopg.connect(get_database_url()) as conn:
        yield conn


@contextmanager
def unit_of_work(conn: psycopg.Connection) -> Iterator[psycopg.Connection]:
    """Run a top-level mutation atomically.

    Everything executed inside the block commits together or not at all.
    Nested ``conn.transaction()`` blocks opened further down become savepoints.
    """
    with conn.transaction():
        yield conn
