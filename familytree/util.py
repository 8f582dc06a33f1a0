from __future__ import annotations

from datetime import date, datetime
import re
from typing import Any

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def normalize_date(value: Any) -> date | None:
    """Coerce a stored or submitted date to ``date``.

    Accepts ``date``/``datetime`` objects and ``YYYY-MM-DD`` strings, optionally
    followed by a time part (``T...`` or `` ...``) which is dropped. Empty
    values become ``None``; anything else raises ``ValueError``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    s = str(value).strip()
    if not s:
        return None
    s = s.split("T")[0].split(" ")[0]
    m = _ISO_DATE_RE.match(s)
    if not m:
        raise ValueError(f"invalid date: {value!r}")
    return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def iso_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def blank_to_none(value: Any) -> Any:
    """Treat empty strings and zero ids the way form submissions mean them: unset."""
    if value is None:
        return None
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    if value == 0 and not isinstance(value, bool):
        return None
    return value
