"""Tests for JSON and CSV conflict exports."""

from __future__ import annotations

import csv
import io
import json
from datetime import UTC, datetime, timedelta

import pytest

from src.conflicts.export import CSV_COLUMNS, ExportBundle, build_export
from src.core.errors import ValidationError
from src.core.models import (
    Conflict,
    ConflictItem,
    ConflictType,
    ExportConfig,
    ExportFormat,
    InsightConflictResolution,
    ResolutionStrategy,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
TTL = timedelta(minutes=60)


@pytest.fixture
def bundle() -> ExportBundle:
    conflict = Conflict(
        id="c-1",
        organization_id="org-acme",
        conflict_type=ConflictType.CONTRADICTION,
        title="Contradiction on brand acme (sentiment)",
        affected_systems=["media_monitoring", "governance"],
        created_at=NOW,
        updated_at=NOW,
    )
    return ExportBundle(
        conflicts=[conflict],
        items={"c-1": [ConflictItem(id="i-1", conflict_id="c-1", raw_insight="x", source_system="governance")]},
        resolutions={
            "c-1": [
                InsightConflictResolution(
                    id="r-1", conflict_id="c-1", strategy=ResolutionStrategy.WEIGHTED_TRUTH,
                    resolved_summary="positive", confidence=0.5, rationale="vote", is_accepted=True,
                )
            ]
        },
    )


class TestJsonExport:
    def test_document_shape(self, bundle: ExportBundle) -> None:
        artifact = build_export(ExportConfig(organization_id="org-acme"), bundle, NOW, TTL, "https://engine.test/")
        document = json.loads(artifact.content)

        assert artifact.content_type == "application/json"
        assert artifact.filename == "conflicts-20260302090000.json"
        assert artifact.expires_at == NOW + TTL
        assert artifact.url == f"https://engine.test/api/v1/conflicts/exports/{artifact.id}"
        assert document["conflict_count"] == 1
        assert document["generated_at"] == NOW.isoformat()
        record = document["conflicts"][0]
        assert record["conflict_type"] == "contradiction"
        assert [i["id"] for i in record["items"]] == ["i-1"]
        assert record["resolutions"][0]["strategy"] == "weighted_truth"
        assert "audit_log" not in record

    def test_sections_can_be_omitted(self, bundle: ExportBundle) -> None:
        config = ExportConfig(include_items=False, include_resolutions=False)
        record = json.loads(build_export(config, bundle, NOW, TTL).content)["conflicts"][0]
        assert "items" not in record
        assert "resolutions" not in record
        assert build_export(config, bundle, NOW, TTL).url is None


class TestCsvExport:
    def test_one_row_per_conflict(self, bundle: ExportBundle) -> None:
        artifact = build_export(ExportConfig(format=ExportFormat.CSV), bundle, NOW, TTL)
        rows = list(csv.DictReader(io.StringIO(artifact.content.decode("utf-8"))))

        assert artifact.content_type == "text/csv"
        assert list(rows[0]) == CSV_COLUMNS
        assert rows[0]["affected_systems"] == "media_monitoring;governance"
        assert rows[0]["item_count"] == "1"
        assert rows[0]["accepted_resolution_id"] == "r-1"
        assert rows[0]["resolved_at"] == ""


class TestUnsupportedFormat:
    def test_pdf_is_rejected(self, bundle: ExportBundle) -> None:
        with pytest.raises(ValidationError, match="not supported"):
            build_export(ExportConfig(format=ExportFormat.PDF), bundle, NOW, TTL)
