# fleetdesk/core/dispatch/status.py
"""
Dispatch status machine.

    pending   -> accepted | rejected | assigned | cancelled
    accepted  -> assigned | cancelled
    assigned  -> in-progress | cancelled
    in-progress -> completed

Assignments (one per driver) move assigned -> in-progress -> completed on
their own; the dispatch status is then derived from all of them by
``rollup_status``.
"""
from __future__ import annotations

from enum import Enum
from typing import Iterable

from fleetdesk.core.errors import InvalidTransitionError, ValidationGapError


class DispatchStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        """Display form used in messages: ``IN-PROGRESS``."""
        return self.value.upper()

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: "str | DispatchStatus") -> "DispatchStatus":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationGapError(f"Unknown dispatch status: {value!r}") from None


TERMINAL_STATUSES = frozenset({
    DispatchStatus.REJECTED,
    DispatchStatus.COMPLETED,
    DispatchStatus.CANCELLED,
})

TRANSITIONS: dict[DispatchStatus, frozenset[DispatchStatus]] = {
    DispatchStatus.PENDING: frozenset({
        DispatchStatus.ACCEPTED,
        DispatchStatus.REJECTED,
        DispatchStatus.ASSIGNED,
        DispatchStatus.CANCELLED,
    }),
    DispatchStatus.ACCEPTED: frozenset({DispatchStatus.ASSIGNED, DispatchStatus.CANCELLED}),
    DispatchStatus.ASSIGNED: frozenset({DispatchStatus.IN_PROGRESS, DispatchStatus.CANCELLED}),
    DispatchStatus.IN_PROGRESS: frozenset({DispatchStatus.COMPLETED}),
    DispatchStatus.REJECTED: frozenset(),
    DispatchStatus.COMPLETED: frozenset(),
    DispatchStatus.CANCELLED: frozenset(),
}

# Per-driver assignment moves
ASSIGNMENT_TRANSITIONS: dict[DispatchStatus, frozenset[DispatchStatus]] = {
    DispatchStatus.ASSIGNED: frozenset({DispatchStatus.IN_PROGRESS}),
    DispatchStatus.IN_PROGRESS: frozenset({DispatchStatus.COMPLETED}),
    DispatchStatus.COMPLETED: frozenset(),
}


def can_transition(current: DispatchStatus, requested: DispatchStatus) -> bool:
    return requested in TRANSITIONS[current]


def ensure_transition(current: DispatchStatus, requested: DispatchStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)


def ensure_assignment_transition(current: DispatchStatus, requested: DispatchStatus) -> None:
    if requested not in ASSIGNMENT_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, requested.value)


def rollup_status(
        assignment_statuses: Iterable[DispatchStatus],
        current: DispatchStatus,
) -> DispatchStatus:
    """Overall dispatch status implied by its assignments.

    No assignments keeps ``current``. All completed -> completed. Any
    driver started or finished -> in-progress. Otherwise assigned.
    """
    statuses = list(assignment_statuses)
    if not statuses:
        return current
    if all(s == DispatchStatus.COMPLETED for s in statuses):
        return DispatchStatus.COMPLETED
    if any(s in (DispatchStatus.IN_PROGRESS, DispatchStatus.COMPLETED) for s in statuses):
        return DispatchStatus.IN_PROGRESS
    return DispatchStatus.ASSIGNED
