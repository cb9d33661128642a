"""Tests for the conflict status state machine."""

from __future__ import annotations

import pytest

from src.conflicts.lifecycle import ALLOWED_TRANSITIONS, is_terminal, require_status, validate_transition
from src.core.errors import InvalidTransitionError, StateConflictError
from src.core.models import Conflict, ConflictStatus, ConflictType


class TestTransitions:
    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (ConflictStatus.DETECTED, ConflictStatus.ANALYZING),
            (ConflictStatus.DETECTED, ConflictStatus.DISMISSED),
            (ConflictStatus.ANALYZING, ConflictStatus.RESOLVED),
            (ConflictStatus.ANALYZING, ConflictStatus.DISMISSED),
        ],
    )
    def test_allowed(self, from_status: ConflictStatus, to_status: ConflictStatus) -> None:
        assert validate_transition(from_status, to_status) is True

    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (ConflictStatus.DETECTED, ConflictStatus.RESOLVED),
            (ConflictStatus.ANALYZING, ConflictStatus.DETECTED),
            (ConflictStatus.RESOLVED, ConflictStatus.ANALYZING),
            (ConflictStatus.RESOLVED, ConflictStatus.DISMISSED),
            (ConflictStatus.DISMISSED, ConflictStatus.DETECTED),
        ],
    )
    def test_rejected(self, from_status: ConflictStatus, to_status: ConflictStatus) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(from_status, to_status, "c-1")
        assert exc_info.value.kind == "state_conflict"
        assert exc_info.value.conflict_id == "c-1"
        assert exc_info.value.to_dict()["current_status"] == str(from_status)

    def test_terminal_states(self) -> None:
        assert is_terminal(ConflictStatus.RESOLVED)
        assert is_terminal(ConflictStatus.DISMISSED)
        assert not is_terminal(ConflictStatus.DETECTED)

    def test_every_status_has_an_entry(self) -> None:
        assert set(ALLOWED_TRANSITIONS) == set(ConflictStatus)


class TestRequireStatus:
    def test_passes_for_allowed_status(self) -> None:
        conflict = Conflict(id="c-1", organization_id="o", conflict_type=ConflictType.CONTRADICTION, title="t")
        require_status(conflict, {ConflictStatus.DETECTED}, "analyze")

    def test_raises_state_conflict(self) -> None:
        conflict = Conflict(
            id="c-1",
            organization_id="o",
            conflict_type=ConflictType.CONTRADICTION,
            title="t",
            status=ConflictStatus.DISMISSED,
        )
        with pytest.raises(StateConflictError, match="Cannot resolve conflict in status dismissed") as exc_info:
            require_status(conflict, {ConflictStatus.ANALYZING}, "resolve")
        assert exc_info.value.operation == "resolve"
