"""Domain errors raised by the family graph engine.

Route handlers do not catch these; ``familytree.main`` maps each class to an
HTTP status via exception handlers.
"""

from __future__ import annotations


class FamilyTreeError(Exception):
    """Base class for all domain-level errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(FamilyTreeError):
    """Bad input: missing field, unresolvable spouse code, parent outside the family."""

    status_code = 400


class NotFoundError(FamilyTreeError):
    """The referenced record does not exist in the caller's family."""

    status_code = 404


class UnauthorizedError(FamilyTreeError):
    status_code = 401


class ForbiddenError(FamilyTreeError):
    status_code = 403
