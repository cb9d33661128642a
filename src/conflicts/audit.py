"""Append-only audit log for conflict state changes.

Entries are built here and committed by the orchestrator in the same
change set as the mutation they describe. Snapshots and details are
deep-frozen when an entry is built, so a written entry cannot be edited.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from src.conflicts.repository import ConflictRepository
from src.core.models import ActorType, AuditEventType, AuditLogEntry, new_id, utcnow

logger = logging.getLogger(__name__)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, list | tuple | set | frozenset):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def thaw(value: Any) -> Any:
    """Plain JSON-friendly copy of a frozen audit structure."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


def entry_to_dict(entry: AuditLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "conflict_id": entry.conflict_id,
        "event_type": str(entry.event_type),
        "actor_id": entry.actor_id,
        "actor_type": str(entry.actor_type),
        "previous_state": thaw(entry.previous_state),
        "new_state": thaw(entry.new_state),
        "details": thaw(entry.details),
        "created_at": entry.created_at.isoformat(),
    }


class AuditLogger:
    """Builds and queries audit entries. Never updates or deletes them."""

    def __init__(self, repository: ConflictRepository) -> None:
        self._repository = repository

    def entry(
        self,
        conflict_id: str | None,
        event_type: AuditEventType,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.SYSTEM,
        previous_state: Mapping[str, Any] | None = None,
        new_state: Mapping[str, Any] | None = None,
        details: Mapping[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> AuditLogEntry:
        """Build an immutable entry for the caller's change set."""
        entry = AuditLogEntry(
            id=new_id(),
            conflict_id=conflict_id,
            event_type=event_type,
            actor_id=actor_id,
            actor_type=actor_type,
            previous_state=_freeze(previous_state) if previous_state is not None else None,
            new_state=_freeze(new_state) if new_state is not None else None,
            details=_freeze(details or {}),
            created_at=created_at or utcnow(),
        )
        logger.info(
            "AUDIT event=%s conflict=%s actor=%s actor_type=%s",
            event_type,
            conflict_id or "none",
            actor_id or "system",
            actor_type,
        )
        return entry

    async def query(
        self,
        conflict_id: str | None = None,
        event_types: set[AuditEventType] | None = None,
        actor_type: ActorType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Paginated entries in write order."""
        entries = [
            e for e in await self._repository.list_audit(conflict_id)
            if (event_types is None or e.event_type in event_types)
            and (actor_type is None or e.actor_type == actor_type)
        ]
        page = entries[offset:offset + limit]
        return {"entries": page, "total": len(entries), "has_more": offset + len(page) < len(entries)}

    async def status_transitions(self, conflict_id: str) -> list[tuple[str, str]]:
        """(from, to) status pairs observed in the log for one conflict."""
        transitions = []
        for e in await self._repository.list_audit(conflict_id):
            before = (e.previous_state or {}).get("status")
            after = (e.new_state or {}).get("status")
            if before and after and before != after:
                transitions.append((before, after))
        return transitions
