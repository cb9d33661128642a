"""Conflict status state machine.

Transitions move forward only: detected → analyzing → resolved.
``dismissed`` is reachable from any non-terminal status and is terminal.
"""

from __future__ import annotations

from src.core.errors import InvalidTransitionError, StateConflictError
from src.core.models import Conflict, ConflictStatus

ALLOWED_TRANSITIONS: dict[ConflictStatus, set[ConflictStatus]] = {
    ConflictStatus.DETECTED: {ConflictStatus.ANALYZING, ConflictStatus.DISMISSED},
    ConflictStatus.ANALYZING: {ConflictStatus.RESOLVED, ConflictStatus.DISMISSED},
    ConflictStatus.RESOLVED: set(),  # Terminal state
    ConflictStatus.DISMISSED: set(),  # Terminal state
}


def validate_transition(
    from_status: ConflictStatus,
    to_status: ConflictStatus,
    conflict_id: str | None = None,
) -> bool:
    """Check whether a state transition is valid.

    Raises:
        InvalidTransitionError: If the transition is not allowed.
    """
    allowed = ALLOWED_TRANSITIONS.get(from_status, set())
    if to_status not in allowed:
        raise InvalidTransitionError(from_status, to_status, conflict_id)
    return True


def is_terminal(status: ConflictStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


def require_status(conflict: Conflict, allowed: set[ConflictStatus], operation: str) -> None:
    """Raise ``StateConflictError`` unless the conflict is in an allowed status."""
    if conflict.status not in allowed:
        raise StateConflictError(
            f"Cannot {operation} conflict in status {conflict.status}",
            conflict_id=conflict.id,
            current_status=str(conflict.status),
            operation=operation,
        )
