from __future__ import annotations

import pytest

from familytree.approval import (
    ApprovalPolicy,
    AutoApprovePolicy,
    UserStatus,
    get_approval_policy,
    set_approval_policy,
)
from familytree.errors import ValidationError


def test_default_policy_approves_new_accounts() -> None:
    policy = get_approval_policy()
    assert isinstance(policy, AutoApprovePolicy)
    assert policy.initial_status() is UserStatus.APPROVED
    assert policy.can_login("approved")


def test_pending_and_rejected_cannot_log_in() -> None:
    policy = ApprovalPolicy()
    assert policy.initial_status() is UserStatus.PENDING
    assert not policy.can_login(UserStatus.PENDING)
    assert not policy.can_login("rejected")


@pytest.mark.parametrize(
    ("current", "action", "expected"),
    [
        ("pending", "approve", UserStatus.APPROVED),
        ("pending", "reject", UserStatus.REJECTED),
        ("rejected", "Approve", UserStatus.APPROVED),
        ("approved", "reject", UserStatus.REJECTED),
    ],
)
def test_transitions(current: str, action: str, expected: UserStatus) -> None:
    assert ApprovalPolicy().transition(current, action) is expected


def test_unknown_action_rejected() -> None:
    with pytest.raises(ValidationError):
        ApprovalPolicy().transition("pending", "ban")


def test_repeated_decision_rejected() -> None:
    with pytest.raises(ValidationError, match="already approved"):
        ApprovalPolicy().transition("approved", "approve")


def test_policy_is_swappable() -> None:
    previous = set_approval_policy(ApprovalPolicy())
    try:
        assert get_approval_policy().initial_status() is UserStatus.PENDING
    finally:
        set_approval_policy(previous)
    assert get_approval_policy() is previous
