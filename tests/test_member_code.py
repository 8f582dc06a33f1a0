from __future__ import annotations

import re

from familytree.member_code import MEMBER_CODE_MAX_ATTEMPTS, generate_member_code, normalize_code


class _Lookup:
    def __init__(self, taken: bool) -> None:
        self.taken = taken
        self.checked: list[str] = []

    def member_code_exists(self, code: str) -> bool:
        self.checked.append(code)
        return self.taken


def test_code_format() -> None:
    code = generate_member_code(_Lookup(taken=False))
    assert re.fullmatch(r"MEM\d{13}[A-Z0-9]{6}", code)


def test_collisions_fall_back_to_longer_suffix() -> None:
    lookup = _Lookup(taken=True)
    code = generate_member_code(lookup)
    assert len(lookup.checked) == MEMBER_CODE_MAX_ATTEMPTS
    assert re.fullmatch(r"MEM\d{13}[A-Z0-9]{8}", code)


def test_normalize_code() -> None:
    assert normalize_code("  mem123abc ") == "MEM123ABC"
    assert normalize_code(None) == ""
