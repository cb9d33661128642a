"""Tests for audit entry construction and queries."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from src.conflicts.audit import AuditLogger, entry_to_dict, thaw
from src.conflicts.repository import ChangeSet, InMemoryConflictRepository
from src.core.models import ActorType, AuditEventType, ConflictStatus

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def audit(repository: InMemoryConflictRepository) -> AuditLogger:
    return AuditLogger(repository)


class TestEntryConstruction:
    def test_entry_is_frozen(self, audit: AuditLogger) -> None:
        source = {"status": ConflictStatus.DETECTED, "systems": ["a", "b"], "at": NOW}
        entry = audit.entry("c-1", AuditEventType.UPDATED, previous_state=source, created_at=NOW)

        # Later changes to the caller's dict do not leak into the entry
        source["status"] = ConflictStatus.RESOLVED
        assert entry.previous_state["status"] == "detected"  # type: ignore[index]
        assert entry.previous_state["systems"] == ("a", "b")  # type: ignore[index]
        with pytest.raises(TypeError):
            entry.previous_state["status"] = "x"  # type: ignore[index]
        with pytest.raises(AttributeError):
            entry.conflict_id = "c-2"  # type: ignore[misc]

    def test_entry_to_dict_is_plain(self, audit: AuditLogger) -> None:
        entry = audit.entry(
            "c-1",
            AuditEventType.DISMISSED,
            actor_id="analyst-1",
            actor_type=ActorType.USER,
            new_state={"status": "dismissed"},
            details={"reason": "duplicate", "ids": ["x"]},
            created_at=NOW,
        )
        data = entry_to_dict(entry)
        assert data["event_type"] == "dismissed"
        assert data["actor_type"] == "user"
        assert data["previous_state"] is None
        assert data["details"] == {"reason": "duplicate", "ids": ["x"]}
        assert data["created_at"] == NOW.isoformat()
        assert thaw(entry.details) == data["details"]


class TestQueries:
    @pytest.mark.asyncio
    async def test_query_filters_and_paginates(
        self, audit: AuditLogger, repository: InMemoryConflictRepository
    ) -> None:
        entries = [
            audit.entry("c-1", AuditEventType.CREATED, new_state={"status": "detected"}),
            audit.entry("c-1", AuditEventType.ITEM_ADDED),
            audit.entry(
                "c-1",
                AuditEventType.UPDATED,
                actor_type=ActorType.USER,
                previous_state={"status": "detected"},
                new_state={"status": "analyzing"},
            ),
            audit.entry("c-2", AuditEventType.CREATED),
        ]
        await repository.commit(ChangeSet(audit_entries=entries))

        page = await audit.query(conflict_id="c-1", limit=2)
        assert page["total"] == 3
        assert page["has_more"] is True
        assert [e.event_type for e in page["entries"]] == [AuditEventType.CREATED, AuditEventType.ITEM_ADDED]

        users = await audit.query(actor_type=ActorType.USER)
        assert users["total"] == 1

        created = await audit.query(event_types={AuditEventType.CREATED}, offset=1)
        assert created["total"] == 2
        assert created["has_more"] is False
        assert [e.conflict_id for e in created["entries"]] == ["c-2"]

        assert await audit.status_transitions("c-1") == [("detected", "analyzing")]
