"""Tests for operation input validation and the engine error taxonomy."""

from __future__ import annotations

import pytest

from src.core.errors import NotFoundError, StateConflictError, ValidationError
from src.core.models import (
    CreateConflictInput,
    CreateGraphEdgeInput,
    ListConflictsQuery,
    ResolveOptions,
    TimeRange,
    UpdateConflictInput,
    parse_input,
)


def _create_payload(**overrides) -> dict:
    payload = {
        "organization_id": "org-acme",
        "conflict_type": "contradiction",
        "title": "  Launch sentiment  ",
        "items": [{"raw_insight": "Coverage is positive", "source_system": "media_monitoring"}],
    }
    payload.update(overrides)
    return payload


class TestParseInput:
    def test_valid_payload_is_normalized(self) -> None:
        parsed = parse_input(CreateConflictInput, _create_payload())
        assert parsed.title == "Launch sentiment"
        assert parsed.severity == "medium"

    def test_model_instance_passes_through(self) -> None:
        query = ListConflictsQuery(limit=5)
        assert parse_input(ListConflictsQuery, query) is query

    def test_errors_name_the_field(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_input(CreateConflictInput, _create_payload(items=[]), conflict_id="c-1")
        assert "items" in exc_info.value.message
        assert exc_info.value.conflict_id == "c-1"
        assert exc_info.value.kind == "validation_error"

    @pytest.mark.parametrize(
        "item",
        [
            {"raw_insight": "   ", "source_system": "governance"},
            {"raw_insight": "x", "source_system": "governance", "embedding": []},
            {"raw_insight": "x", "source_system": "governance", "embedding": [float("nan")]},
            {"raw_insight": "x", "source_system": "governance", "confidence": 1.5},
        ],
    )
    def test_malformed_items(self, item: dict) -> None:
        with pytest.raises(ValidationError):
            parse_input(CreateConflictInput, _create_payload(items=[item]))

    def test_single_primary(self) -> None:
        primary = {"raw_insight": "x", "source_system": "governance", "role": "primary"}
        with pytest.raises(ValidationError, match="at most one item"):
            parse_input(CreateConflictInput, _create_payload(items=[primary, primary]))

    def test_update_rejects_status(self) -> None:
        with pytest.raises(ValidationError):
            parse_input(UpdateConflictInput, {"status": "resolved"})

    def test_weights_in_range(self) -> None:
        with pytest.raises(ValidationError, match="governance"):
            parse_input(ResolveOptions, {"source_weights": {"governance": 2.0}})

    def test_time_range_order(self) -> None:
        with pytest.raises(ValidationError, match="start must not be after end"):
            parse_input(TimeRange, {"start": "2026-03-02T10:00:00Z", "end": "2026-03-01T10:00:00Z"})


class TestGraphEdgeInput:
    def test_self_loop_rejected(self) -> None:
        with pytest.raises(ValidationError, match="itself"):
            parse_input(CreateGraphEdgeInput, {"source_conflict_id": "c-1", "target_conflict_id": "c-1", "edge_type": "related"})

    def test_weight_bounds(self) -> None:
        with pytest.raises(ValidationError):
            parse_input(
                CreateGraphEdgeInput,
                {"source_conflict_id": "c-1", "target_conflict_id": "c-2", "edge_type": "related", "weight": 2},
            )


class TestErrorTaxonomy:
    def test_not_found_carries_conflict_id(self) -> None:
        error = NotFoundError("conflict", "c-9")
        assert error.to_dict() == {"kind": "not_found", "message": "conflict c-9 not found", "conflict_id": "c-9"}

    def test_state_conflict_reports_status(self) -> None:
        error = StateConflictError("Cannot resolve", "c-1", current_status="dismissed", operation="resolve")
        assert error.to_dict()["current_status"] == "dismissed"
        assert error.kind == "state_conflict"
