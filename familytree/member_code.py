from __future__ import annotations

import logging
import secrets
import string
import time
from typing import Protocol

log = logging.getLogger(__name__)

MEMBER_CODE_PREFIX = "MEM"
MEMBER_CODE_MAX_ATTEMPTS = 10

_ALPHABET = string.ascii_uppercase + string.digits


class _CodeLookup(Protocol):
    def member_code_exists(self, code: str) -> bool: ...


def normalize_code(code: str) -> str:
    """Member and family codes compare case-insensitively, uppercase and trimmed."""
    return (code or "").strip().upper()


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _candidate(suffix_length: int) -> str:
    # MEM + epoch millis + random suffix, e.g. MEM1733059200000K3Q9ZD
    return f"{MEMBER_CODE_PREFIX}{int(time.time() * 1000)}{_random_suffix(suffix_length)}"


def generate_member_code(store: _CodeLookup) -> str:
    """Return a member code not yet present in the store.

    After ``MEMBER_CODE_MAX_ATTEMPTS`` collisions a longer suffix is used
    without a further check; the unique index on ``member_code`` is the
    final guard.
    """

    for _ in range(MEMBER_CODE_MAX_ATTEMPTS):
        code = _candidate(6)
        if not store.member_code_exists(code):
            return code

    log.warning("member code collided %d times, using long fallback", MEMBER_CODE_MAX_ATTEMPTS)
    return _candidate(8)
