"""
Refund request state machine.

State Flow:
    REQUESTED → UNDER_REVIEW → APPROVED → PROCESSING → COMPLETED
    REQUESTED → APPROVED (approve without an explicit review step)
    REQUESTED/UNDER_REVIEW → REJECTED
    PROCESSING → FAILED
    REQUESTED/UNDER_REVIEW/APPROVED → WITHDRAWN (requesting guest only)

Terminal states: REJECTED, COMPLETED, FAILED, WITHDRAWN. Nothing leaves a
terminal state; a failed refund is re-attempted by submitting a new request.

This module is pure: it decides whether an action is legal and which status
it leads to. refund_service applies the result inside a transaction.
"""

from vilo.core.errors import InvalidStateTransition, PermissionDenied
from vilo.core.security import Actor
from vilo.models.refund import RefundStatus, ACTIVE_STATUSES, TERMINAL_STATUSES

REVIEW = "review"
APPROVE = "approve"
REJECT = "reject"
PROCESS = "process"
COMPLETE = "complete"
FAIL = "fail"
WITHDRAW = "withdraw"

# action -> (allowed source statuses, target status)
TRANSITIONS: dict[str, tuple[frozenset[str], str]] = {
    REVIEW: (frozenset({RefundStatus.REQUESTED.value}), RefundStatus.UNDER_REVIEW.value),
    APPROVE: (frozenset({RefundStatus.REQUESTED.value, RefundStatus.UNDER_REVIEW.value}), RefundStatus.APPROVED.value),
    REJECT: (frozenset({RefundStatus.REQUESTED.value, RefundStatus.UNDER_REVIEW.value}), RefundStatus.REJECTED.value),
    PROCESS: (frozenset({RefundStatus.APPROVED.value}), RefundStatus.PROCESSING.value),
    COMPLETE: (frozenset({RefundStatus.PROCESSING.value}), RefundStatus.COMPLETED.value),
    FAIL: (frozenset({RefundStatus.PROCESSING.value}), RefundStatus.FAILED.value),
    WITHDRAW: (
        frozenset({RefundStatus.REQUESTED.value, RefundStatus.UNDER_REVIEW.value, RefundStatus.APPROVED.value}),
        RefundStatus.WITHDRAWN.value,
    ),
}

ADMIN_ACTIONS = frozenset({REVIEW, APPROVE, REJECT, PROCESS, COMPLETE, FAIL})


def is_active(status: str) -> bool:
    return status in ACTIVE_STATUSES


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, action: str) -> bool:
    sources, _ = TRANSITIONS[action]
    return current in sources


def next_status(current: str, action: str) -> str:
    """Target status for `action` from `current`, or InvalidStateTransition."""
    if action not in TRANSITIONS:
        raise ValueError(f"unknown refund action '{action}'")
    sources, target = TRANSITIONS[action]
    if current not in sources:
        if is_terminal(current):
            raise InvalidStateTransition(current, action, f"Refund request is already {current}; no further changes are allowed")
        raise InvalidStateTransition(current, action)
    return target


def assert_actor_may(actor: Actor, action: str, requested_by: str) -> None:
    """Role guard. Back-office roles drive review/approval/processing; only the requester withdraws."""
    if action in ADMIN_ACTIONS:
        if not actor.is_admin:
            raise PermissionDenied(f"Your role is not allowed to {action} refunds")
        return
    if action == WITHDRAW and actor.user_id != requested_by:
        raise PermissionDenied("Only the guest who requested this refund can withdraw it")


def available_actions(current: str, actor: Actor, requested_by: str) -> list[str]:
    out = []
    for action in TRANSITIONS:
        if action == FAIL or not can_transition(current, action):
            continue
        if action in ADMIN_ACTIONS and not actor.is_admin:
            continue
        if action == WITHDRAW and actor.user_id != requested_by:
            continue
        out.append(action)
    return out
