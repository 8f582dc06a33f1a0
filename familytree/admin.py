"""CLI admin tool for the family tree database.

Usage:
    python -m familytree.admin init-db
    python -m familytree.admin create-superadmin --username=root --password=secret1
    python -m familytree.admin list-users
    python -m familytree.admin list-users --status=pending

``create-superadmin`` falls back to SUPERADMIN_USERNAME / SUPERADMIN_PASSWORD /
SUPERADMIN_NAME when the flags are omitted.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import psycopg

# Ensure the repo root is on sys.path so package imports work.
_repo_root = Path(__file__).resolve().parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

from familytree.approval import UserStatus  # noqa: E402
from familytree.auth import hash_password, validate_password  # noqa: E402

SCHEMA_PATH = _repo_root / "sql" / "schema.sql"


def _get_db_url() -> str:
    url = os.environ.get("DATABASE_URL", "")
    if not url:
        raise SystemExit("DATABASE_URL not set")
    return url


def apply_schema(conn: psycopg.Connection, path: Path = SCHEMA_PATH) -> None:
    if not path.exists():
        raise SystemExit(f"Schema file not found: {path}")
    conn.execute(path.read_text(encoding="utf-8"))


def cmd_init_db(args: argparse.Namespace) -> None:
    with psycopg.connect(_get_db_url()) as conn:
        apply_schema(conn)
        conn.commit()
    print(f"Schema applied from {SCHEMA_PATH.name}.")


def cmd_create_superadmin(args: argparse.Namespace) -> None:
    username = args.username or os.environ.get("SUPERADMIN_USERNAME", "superadmin")
    password = args.password or os.environ.get("SUPERADMIN_PASSWORD", "")
    name = args.name or os.environ.get("SUPERADMIN_NAME", "Super Admin")
    if not password:
        raise SystemExit("A password is required (--password or SUPERADMIN_PASSWORD).")
    pw_err = validate_password(password)
    if pw_err:
        raise SystemExit(f"Weak password: {pw_err}")

    with psycopg.connect(_get_db_url()) as conn:
        existing = conn.execute("SELECT username FROM users WHERE role = 'superadmin' LIMIT 1").fetchone()
        if existing:
            print(f"Superadmin already exists ('{existing[0]}').")
            return
        conn.execute(
            """
            INSERT INTO users (username, password_hash, name, role, status)
            VALUES (%s, %s, %s, 'superadmin', %s)
            """,
            (username, hash_password(password), name, UserStatus.APPROVED.value),
        )
        conn.commit()
    print(f"Superadmin '{username}' created. Change the password after first login.")


def cmd_list_users(args: argparse.Namespace) -> None:
    sql = """
        SELECT u.id, u.username, u.name, u.role, u.status, f.family_code
        FROM users u
        LEFT JOIN families f ON f.id = u.family_id
    """
    params: tuple = ()
    if args.status:
        sql += " WHERE u.status = %s"
        params = (args.status,)
    sql += " ORDER BY u.id"

    with psycopg.connect(_get_db_url()) as conn:
        rows = conn.execute(sql, params).fetchall()

    if not rows:
        print("No users.")
        return
    print(f"{'ID':<5} {'Username':<20} {'Name':<25} {'Role':<11} {'Status':<9} {'Family':<12}")
    print("-" * 86)
    for uid, uname, name, role, status, family_code in rows:
        print(f"{uid:<5} {uname:<20} {(name or '-'):<25} {role:<11} {status:<9} {(family_code or '-'):<12}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Family tree admin CLI")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-db", help="Create tables and indexes (idempotent)")

    p = sub.add_parser("create-superadmin", help="Create the first superadmin account")
    p.add_argument("--username", default=None)
    p.add_argument("--password", default=None)
    p.add_argument("--name", default=None)

    p = sub.add_parser("list-users", help="List user accounts")
    p.add_argument("--status", default=None, choices=[s.value for s in UserStatus])

    args = parser.parse_args(argv)
    commands = {
        "init-db": cmd_init_db,
        "create-superadmin": cmd_create_superadmin,
        "list-users": cmd_list_users,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    handler(args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
