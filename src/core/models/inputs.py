"""Validated inputs for conflict engine operations.

These pydantic models are shared by the orchestrator and the HTTP layer.
Pydantic failures are re-raised as the engine's ``ValidationError`` by
``parse_input`` so callers only ever see one error taxonomy.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal, TypeVar

import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from src.core.errors import ValidationError
from src.core.models.conflict import (
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ExportFormat,
    GraphEdgeType,
    ItemRole,
    ResolutionStrategy,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_input(model_cls: type[ModelT], data: ModelT | dict[str, Any], conflict_id: str | None = None) -> ModelT:
    """Validate ``data`` against ``model_cls``.

    Raises:
        ValidationError: If the payload does not satisfy the model.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"Invalid {model_cls.__name__}: {problems}", conflict_id) from exc


class SourceEntityRefInput(BaseModel):
    """Schema for an entity reference on a conflict."""

    entity_type: str = Field(min_length=1, max_length=100)
    entity_id: str = Field(min_length=1, max_length=255)
    source_system: str | None = Field(default=None, max_length=100)


class ConflictItemInput(BaseModel):
    """Schema for one normalized insight."""

    raw_insight: str = Field(min_length=1, max_length=10000)
    source_system: str = Field(min_length=1, max_length=100)
    processed_insight: str | None = Field(default=None, max_length=10000)
    embedding: list[float] | None = None
    source_entity_type: str | None = Field(default=None, max_length=100)
    source_entity_id: str | None = Field(default=None, max_length=255)
    source_timestamp: datetime | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    role: ItemRole | None = None
    metric: str | None = Field(default=None, max_length=100)
    value: bool | float | str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("raw_insight")
    @classmethod
    def raw_insight_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("raw_insight must not be blank")
        return v

    @field_validator("embedding")
    @classmethod
    def embedding_finite(cls, v: list[float] | None) -> list[float] | None:
        if v is None:
            return v
        if not v:
            raise ValueError("embedding must not be empty")
        if any(not math.isfinite(x) for x in v):
            raise ValueError("embedding values must be finite")
        return v


class CreateConflictInput(BaseModel):
    """Schema for the manual conflict creation path."""

    organization_id: str = Field(min_length=1, max_length=255)
    conflict_type: ConflictType
    title: str = Field(min_length=1, max_length=255)
    severity: ConflictSeverity = ConflictSeverity.MEDIUM
    summary: str | None = Field(default=None, max_length=5000)
    source_entities: list[SourceEntityRefInput] = Field(default_factory=list)
    affected_systems: list[str] = Field(default_factory=list)
    items: list[ConflictItemInput] = Field(min_length=1)
    linked_reality_map_ids: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be blank")
        return v.strip()

    @model_validator(mode="after")
    def single_primary(self) -> CreateConflictInput:
        primaries = [item for item in self.items if item.role == ItemRole.PRIMARY]
        if len(primaries) > 1:
            raise ValueError("at most one item may be marked primary")
        return self


class UpdateConflictInput(BaseModel):
    """Schema for editing descriptive conflict fields.

    Status and severity are absent: they change only through
    the state machine and recorded analyzer runs.
    """

    model_config = pydantic.ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=255)
    summary: str | None = Field(default=None, max_length=5000)
    affected_systems: list[str] | None = None
    source_entities: list[SourceEntityRefInput] | None = None


class InsightBatchInput(BaseModel):
    """Schema for a subsystem feed push."""

    organization_id: str = Field(min_length=1, max_length=255)
    items: list[ConflictItemInput] = Field(min_length=1, max_length=1000)


class AnalyzeOptions(BaseModel):
    include_related: bool = True
    include_root_cause: bool = True


class ResolveOptions(BaseModel):
    """Schema for ResolveConflict options."""

    strategy: ResolutionStrategy | None = None
    priority_order: list[str] | None = None
    source_weights: dict[str, float] | None = None
    auto_accept: bool = False
    context_notes: str | None = Field(default=None, max_length=2000)

    @field_validator("source_weights")
    @classmethod
    def weights_in_range(cls, v: dict[str, float] | None) -> dict[str, float] | None:
        if v is None:
            return v
        for source, weight in v.items():
            if not math.isfinite(weight) or weight < 0.0 or weight > 1.0:
                raise ValueError(f"weight for {source!r} must be within [0, 1]")
        return v


class TimeRange(BaseModel):
    start: datetime | None = None
    end: datetime | None = None

    @model_validator(mode="after")
    def ordered(self) -> TimeRange:
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    def contains(self, moment: datetime) -> bool:
        if self.start and moment < self.start:
            return False
        return not (self.end and moment > self.end)


class ListConflictsQuery(BaseModel):
    """Filters, sort and pagination for ListConflicts."""

    organization_id: str | None = None
    conflict_type: list[ConflictType] | None = None
    severity: list[ConflictSeverity] | None = None
    status: list[ConflictStatus] | None = None
    affected_system: str | None = None
    cluster_id: str | None = None
    has_resolution: bool | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    search: str | None = Field(default=None, max_length=255)
    sort_by: Literal["created_at", "updated_at", "severity", "status"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class DetectionConfig(BaseModel):
    """Toggles and thresholds for a detection replay."""

    enable_contradiction_detection: bool = True
    enable_divergence_detection: bool = True
    enable_ambiguity_detection: bool = True
    enable_missing_data_detection: bool = True
    enable_inconsistency_detection: bool = True
    join_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    divergence_threshold: float | None = Field(default=None, ge=0.0)
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    max_batch_size: int = Field(default=100, ge=1, le=1000)

    def enabled_types(self) -> set[ConflictType]:
        flags = {
            ConflictType.CONTRADICTION: self.enable_contradiction_detection,
            ConflictType.DIVERGENCE: self.enable_divergence_detection,
            ConflictType.AMBIGUITY: self.enable_ambiguity_detection,
            ConflictType.MISSING_DATA: self.enable_missing_data_detection,
            ConflictType.INCONSISTENCY: self.enable_inconsistency_detection,
        }
        return {conflict_type for conflict_type, enabled in flags.items() if enabled}


class ExportConfig(BaseModel):
    format: ExportFormat = ExportFormat.JSON
    organization_id: str | None = None
    include_items: bool = True
    include_resolutions: bool = True
    include_audit_log: bool = False
    date_range: TimeRange | None = None


class CreateClusterInput(BaseModel):
    organization_id: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    conflict_ids: list[str] = Field(default_factory=list)


class CreateGraphEdgeInput(BaseModel):
    """Schema for persisting an edge between two conflicts."""

    source_conflict_id: str = Field(min_length=1)
    target_conflict_id: str = Field(min_length=1)
    edge_type: GraphEdgeType
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
    label: str | None = Field(default=None, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def no_self_loop(self) -> CreateGraphEdgeInput:
        if self.source_conflict_id == self.target_conflict_id:
            raise ValueError("an edge cannot connect a conflict to itself")
        return self


class TrackEntityInput(BaseModel):
    """Schema for registering an entity with an expected reporting cadence."""

    organization_id: str = Field(min_length=1, max_length=255)
    entity_type: str = Field(min_length=1, max_length=100)
    entity_id: str = Field(min_length=1, max_length=255)
    expected_cadence_hours: float = Field(gt=0)
    min_sources: int = Field(default=1, ge=1)
    source_systems: list[str] = Field(default_factory=list)
