"""Request status state machine.

PENDING is the only non-terminal state; it may move to APPROVED, REJECTED
or CANCELLED. Nothing ever returns to PENDING.
"""

from __future__ import annotations

from leave_tracker.common.constants import LeaveStatus
from leave_tracker.common.exceptions import InvalidTransitionException

TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
)

_ALLOWED: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: TERMINAL_STATUSES,
    LeaveStatus.approved: frozenset(),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}


def is_terminal(status: LeaveStatus) -> bool:
    return LeaveStatus(status) in TERMINAL_STATUSES


def can_transition(current: LeaveStatus, target: LeaveStatus) -> bool:
    return LeaveStatus(target) in _ALLOWED[LeaveStatus(current)]


def ensure_transition(current: LeaveStatus, target: LeaveStatus) -> None:
    """Raise ``InvalidTransitionException`` unless *current* → *target* is allowed."""
    if can_transition(current, target):
        return
    current = LeaveStatus(current)
    if current in TERMINAL_STATUSES:
        message = f"Leave request is already {current.value}."
    else:
        message = f"Cannot move a {current.value} leave request to {LeaveStatus(target).value}."
    raise InvalidTransitionException(current, LeaveStatus(target), message)
