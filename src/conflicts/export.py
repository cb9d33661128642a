"""Conflict export.

Produces JSON or CSV artifacts from a snapshot of conflicts and their
children. Artifacts are held in memory by the orchestrator until they
expire. PDF rendering is a report-formatting concern the engine does not
provide.
"""

from __future__ import annotations

import csv
import dataclasses
import enum
import io
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from src.conflicts.audit import entry_to_dict
from src.core.errors import ValidationError
from src.core.models import (
    AuditLogEntry,
    Conflict,
    ConflictItem,
    ExportConfig,
    ExportFormat,
    InsightConflictResolution,
    new_id,
)

logger = logging.getLogger(__name__)

CONTENT_TYPES: dict[ExportFormat, str] = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
}

CSV_COLUMNS = [
    "id",
    "organization_id",
    "conflict_type",
    "severity",
    "status",
    "title",
    "summary",
    "affected_systems",
    "cluster_id",
    "severity_score",
    "item_count",
    "resolution_count",
    "accepted_resolution_id",
    "accepted_confidence",
    "created_at",
    "updated_at",
    "resolved_at",
    "dismissed_at",
]


def _json_default(obj: Any) -> Any:
    """JSON serializer for types not handled by stdlib json."""
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Mapping):
        return dict(obj)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _serialize(data: Any) -> str:
    return json.dumps(data, default=_json_default, indent=2)


@dataclass
class ExportBundle:
    """Everything selected for one export."""

    conflicts: list[Conflict]
    items: dict[str, list[ConflictItem]] = field(default_factory=dict)
    resolutions: dict[str, list[InsightConflictResolution]] = field(default_factory=dict)
    audit: dict[str, list[AuditLogEntry]] = field(default_factory=dict)


@dataclass
class ExportArtifact:
    id: str
    format: ExportFormat
    content: bytes
    content_type: str
    filename: str
    conflict_count: int
    created_at: datetime
    expires_at: datetime
    url: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


def _conflict_record(conflict: Conflict, bundle: ExportBundle, config: ExportConfig) -> dict[str, Any]:
    record = dataclasses.asdict(conflict)
    if config.include_items:
        record["items"] = [dataclasses.asdict(i) for i in bundle.items.get(conflict.id, [])]
    if config.include_resolutions:
        record["resolutions"] = [dataclasses.asdict(r) for r in bundle.resolutions.get(conflict.id, [])]
    if config.include_audit_log:
        record["audit_log"] = [entry_to_dict(e) for e in bundle.audit.get(conflict.id, [])]
    return record


def render_json(bundle: ExportBundle, config: ExportConfig, generated_at: datetime) -> bytes:
    payload = {
        "generated_at": generated_at,
        "organization_id": config.organization_id,
        "conflict_count": len(bundle.conflicts),
        "conflicts": [_conflict_record(c, bundle, config) for c in bundle.conflicts],
    }
    return _serialize(payload).encode("utf-8")


def render_csv(bundle: ExportBundle) -> bytes:
    """One row per conflict with item and resolution counts."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for conflict in bundle.conflicts:
        resolutions = bundle.resolutions.get(conflict.id, [])
        accepted = next((r for r in resolutions if r.is_accepted), None)
        writer.writerow({
            "id": conflict.id,
            "organization_id": conflict.organization_id,
            "conflict_type": str(conflict.conflict_type),
            "severity": str(conflict.severity),
            "status": str(conflict.status),
            "title": conflict.title,
            "summary": conflict.summary or "",
            "affected_systems": ";".join(conflict.affected_systems),
            "cluster_id": conflict.cluster_id or "",
            "severity_score": conflict.analysis.severity_score if conflict.analysis else "",
            "item_count": len(bundle.items.get(conflict.id, [])),
            "resolution_count": len(resolutions),
            "accepted_resolution_id": accepted.id if accepted else "",
            "accepted_confidence": accepted.confidence if accepted else "",
            "created_at": conflict.created_at.isoformat(),
            "updated_at": conflict.updated_at.isoformat(),
            "resolved_at": conflict.resolved_at.isoformat() if conflict.resolved_at else "",
            "dismissed_at": conflict.dismissed_at.isoformat() if conflict.dismissed_at else "",
        })
    return buffer.getvalue().encode("utf-8")


def build_export(
    config: ExportConfig,
    bundle: ExportBundle,
    now: datetime,
    ttl: timedelta,
    base_url: str = "",
) -> ExportArtifact:
    """Render ``bundle`` in the requested format.

    Raises:
        ValidationError: If the format cannot be produced in process.
    """
    if config.format not in CONTENT_TYPES:
        raise ValidationError(f"Export format {config.format} is not supported; use json or csv")

    if config.format == ExportFormat.CSV:
        content = render_csv(bundle)
    else:
        content = render_json(bundle, config, now)

    export_id = new_id()
    artifact = ExportArtifact(
        id=export_id,
        format=config.format,
        content=content,
        content_type=CONTENT_TYPES[config.format],
        filename=f"conflicts-{now:%Y%m%d%H%M%S}.{config.format}",
        conflict_count=len(bundle.conflicts),
        created_at=now,
        expires_at=now + ttl,
        url=f"{base_url.rstrip('/')}/api/v1/conflicts/exports/{export_id}" if base_url else None,
    )
    logger.info(
        "Built %s export %s with %d conflicts (%d bytes)",
        config.format,
        export_id,
        artifact.conflict_count,
        len(content),
    )
    return artifact
