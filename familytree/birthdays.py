"""System-generated birthday events.

Each member with a birth date owns one ``Birthday <name>`` event per year in a
rolling window starting at the current calendar year. The events are plain
calendar rows; the member they belong to is identified by title only.
"""

from __future__ import annotations

from datetime import date
import logging
from typing import Any, Iterable

try:
    from .models import Member
    from .util import normalize_date
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from models import Member
    from util import normalize_date

log = logging.getLogger(__name__)

BIRTHDAY_TITLE_PREFIX = "Birthday"
BIRTHDAY_YEARS_AHEAD = 10


def birthday_title(name: str) -> str:
    return f"{BIRTHDAY_TITLE_PREFIX} {name}"


def birthday_description(name: str, age: int) -> str:
    return f"{name} turns {age}"


def birthday_for_year(birth_date: date | str | None, year: int) -> date | None:
    """Return the birthday falling in ``year``, or None.

    Month and day are taken verbatim from the stored date; there is no
    timezone or calendar arithmetic. Feb 29 yields None in non-leap years.
    """

    try:
        born = normalize_date(birth_date)
    except ValueError:
        return None
    if born is None:
        return None
    try:
        return date(year, born.month, born.day)
    except ValueError:
        return None


def ensure_birthday_events(
    store: Any,
    *,
    family_id: int,
    name: str,
    birth_date: date | str | None,
    created_by: int | None = None,
    today: date | None = None,
) -> int:
    """Insert any missing birthday events in the window. Returns how many were added.

    An event counts as present when one on the same date has the exact title
    or a title containing it, so re-running is a no-op.
    """

    born = normalize_date(birth_date)
    if born is None:
        return 0

    title = birthday_title(name)
    first_year = (today or date.today()).year
    added = 0
    for year in range(first_year, first_year + BIRTHDAY_YEARS_AHEAD):
        when = birthday_for_year(born, year)
        if when is None:
            log.debug("no %s in %d for %s", born.strftime("%m-%d"), year, name)
            continue
        if store.event_exists(family_id, title, when):
            continue
        store.insert_event(
            family_id=family_id,
            title=title,
            description=birthday_description(name, year - born.year),
            event_date=when,
            created_by=created_by,
        )
        added += 1
    return added


def delete_birthday_events(store: Any, *, family_id: int, name: str) -> int:
    return store.delete_events_by_title_substring(family_id, birthday_title(name))


def remove_member_birthdays(store: Any, *, family_id: int, name: str) -> int:
    """Drop a deleted member's birthday events. Failures are logged, not raised."""
    try:
        with store.savepoint():
            return delete_birthday_events(store, family_id=family_id, name=name)
    except Exception:
        log.warning("birthday cleanup failed for %r in family %s", name, family_id, exc_info=True)
        return 0


def sync_member_birthdays(
    store: Any,
    *,
    family_id: int,
    name: str,
    birth_date: date | None,
    old_name: str | None = None,
    old_birth_date: date | None = None,
    is_update: bool = False,
    created_by: int | None = None,
    today: date | None = None,
) -> bool:
    """Bring one member's birthday events in line with its name and birth date.

    On update, a changed name or birth date first removes every event titled
    after the old name; a removed birth date also clears events under the
    current name and nothing is regenerated. Failures roll back to a savepoint
    and are logged; the return value says whether the sync went through.
    """

    try:
        with store.savepoint():
            if is_update:
                if old_name is not None and (old_name != name or old_birth_date != birth_date):
                    delete_birthday_events(store, family_id=family_id, name=old_name)
                if birth_date is None:
                    delete_birthday_events(store, family_id=family_id, name=name)
                    return True
            ensure_birthday_events(
                store,
                family_id=family_id,
                name=name,
                birth_date=birth_date,
                created_by=created_by,
                today=today,
            )
    except Exception:
        log.warning("birthday sync failed for %r in family %s", name, family_id, exc_info=True)
        return False
    return True


def sync_family_birthdays(
    store: Any,
    family_id: int,
    members: Iterable[Member],
    *,
    today: date | None = None,
) -> int:
    """Ensure the birthday window for every member with a birth date (calendar listing)."""
    added = 0
    for m in members:
        if m.birth_date is None:
            continue
        try:
            with store.savepoint():
                added += ensure_birthday_events(
                    store,
                    family_id=family_id,
                    name=m.name,
                    birth_date=m.birth_date,
                    today=today,
                )
        except Exception:
            log.warning("birthday sync failed for member %s", m.id, exc_info=True)
    if added:
        log.info("added %d birthday events for family %s", added, family_id)
    return added
