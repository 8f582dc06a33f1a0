"""Account approval workflow.

Every user row carries a status. Registration asks the active policy for the
initial status; admins move accounts along with ``approve`` / ``reject``.
The default policy approves immediately, so new accounts can log in at once.
"""

from __future__ import annotations

from enum import Enum
import logging

try:
    from .errors import ValidationError
except ImportError:  # pragma: no cover
    from errors import ValidationError

log = logging.getLogger(__name__)


class UserStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


_ACTION_TARGETS = {
    "approve": UserStatus.APPROVED,
    "reject": UserStatus.REJECTED,
}


class ApprovalPolicy:
    """Decides the status of new accounts and which status transitions are legal."""

    def initial_status(self) -> UserStatus:
        return UserStatus.PENDING

    def can_login(self, status: UserStatus | str) -> bool:
        return UserStatus(status) == UserStatus.APPROVED

    def transition(self, current: UserStatus | str, action: str) -> UserStatus:
        target = _ACTION_TARGETS.get((action or "").strip().lower())
        if target is None:
            raise ValidationError("action must be 'approve' or 'reject'")
        current = UserStatus(current)
        if current == target:
            raise ValidationError(f"user is already {current.value}")
        return target


class AutoApprovePolicy(ApprovalPolicy):
    def initial_status(self) -> UserStatus:
        return UserStatus.APPROVED


_policy: ApprovalPolicy = AutoApprovePolicy()


def get_approval_policy() -> ApprovalPolicy:
    return _policy


def set_approval_policy(policy: ApprovalPolicy) -> ApprovalPolicy:
    """Install ``policy`` and return the previous one."""
    global _policy
    previous, _policy = _policy, policy
    log.info("approval policy set to %s", type(policy).__name__)
    return previous
