"""Source normalizer: subsystem payloads to canonical insight items.

Each analysis subsystem has its own payload shape. A stateless adapter per
source system maps that shape onto ``ConflictItemInput``, extracting the
structured claim (metric and value) whenever the payload carries one.
All per-source variability stays here; the detector only ever sees
canonical items.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from src.core.errors import ValidationError
from src.core.models import ConflictItemInput, parse_input

logger = logging.getLogger(__name__)

Adapter = Callable[[dict[str, Any]], ConflictItemInput]

_CANONICAL_KEYS = frozenset({"raw_insight", "source_system"})


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, tz=UTC)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Unparseable timestamp: {value!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _entity(payload: dict[str, Any], default_type: str, id_keys: tuple[str, ...]) -> tuple[str | None, str | None]:
    entity = payload.get("entity")
    if isinstance(entity, dict):
        return entity.get("type") or default_type, entity.get("id")
    entity_type = payload.get("entity_type") or default_type
    for key in id_keys:
        if payload.get(key):
            return entity_type, str(payload[key])
    return entity_type, None


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _item(payload: dict[str, Any], source_system: str, **fields: Any) -> ConflictItemInput:
    data: dict[str, Any] = {
        "source_system": payload.get("source_system") or source_system,
        "embedding": payload.get("embedding"),
        "confidence": payload.get("confidence"),
        "processed_insight": payload.get("processed_insight"),
        "metadata": payload.get("metadata") or {},
    }
    data.update(fields)
    return parse_input(ConflictItemInput, data)


def adapt_media_monitoring(payload: dict[str, Any]) -> ConflictItemInput:
    """Mention-level sentiment findings from media monitoring."""
    entity_type, entity_id = _entity(payload, "brand", ("brand_id", "entity_id"))
    sentiment = payload.get("sentiment")
    text = _first(payload, "summary", "headline", "text")
    if text is None and sentiment:
        text = f"Media sentiment for {entity_id} is {sentiment}"
    return _item(
        payload,
        "media_monitoring",
        raw_insight=text or "",
        source_entity_type=entity_type,
        source_entity_id=entity_id,
        source_timestamp=_parse_timestamp(_first(payload, "published_at", "observed_at")),
        metric="sentiment" if sentiment else payload.get("metric"),
        value=str(sentiment).lower() if sentiment else payload.get("value"),
    )


def adapt_governance(payload: dict[str, Any]) -> ConflictItemInput:
    """Rule evaluation outcomes from the governance subsystem."""
    entity_type, entity_id = _entity(payload, "content", ("target_id", "entity_id"))
    outcome = _first(payload, "outcome", "result")
    if outcome is not None:
        metric, value = payload.get("metric") or "compliance", str(outcome).lower()
    elif payload.get("status"):
        metric, value = "status", str(payload["status"]).lower()
    else:
        metric, value = payload.get("metric"), payload.get("value")
    text = _first(payload, "message", "summary")
    if text is None and metric:
        text = f"Governance rule {payload.get('rule_id', 'evaluation')} reports {metric} {value}"
    return _item(
        payload,
        "governance",
        raw_insight=text or "",
        source_entity_type=entity_type,
        source_entity_id=entity_id,
        source_timestamp=_parse_timestamp(_first(payload, "evaluated_at", "observed_at")),
        metric=metric,
        value=value,
    )


def adapt_risk_radar(payload: dict[str, Any]) -> ConflictItemInput:
    """Risk forecasts: numeric risk score per entity."""
    entity_type, entity_id = _entity(payload, "organization", ("entity_id", "target_id"))
    score = payload.get("risk_score")
    text = _first(payload, "summary", "narrative")
    if text is None and score is not None:
        text = f"Risk score for {entity_id} is {score}"
    return _item(
        payload,
        "risk_radar",
        raw_insight=text or "",
        source_entity_type=entity_type,
        source_entity_id=entity_id,
        source_timestamp=_parse_timestamp(_first(payload, "forecast_at", "observed_at")),
        metric="risk_score" if score is not None else payload.get("metric"),
        value=float(score) if score is not None else payload.get("value"),
    )


def adapt_competitive_intelligence(payload: dict[str, Any]) -> ConflictItemInput:
    """Competitor metric observations."""
    entity_type, entity_id = _entity(payload, "competitor", ("competitor_id", "entity_id"))
    metric = payload.get("metric")
    value = payload.get("value")
    text = _first(payload, "insight", "summary")
    if text is None and metric:
        text = f"{entity_id} {metric} is {value}"
    return _item(
        payload,
        "competitive_intelligence",
        raw_insight=text or "",
        source_entity_type=entity_type,
        source_entity_id=entity_id,
        source_timestamp=_parse_timestamp(_first(payload, "observed_at", "captured_at")),
        metric=metric,
        value=value,
    )


def adapt_generic(payload: dict[str, Any]) -> ConflictItemInput:
    """Payload already in canonical shape."""
    data = dict(payload)
    if "source_timestamp" in data:
        data["source_timestamp"] = _parse_timestamp(data["source_timestamp"])
    return parse_input(ConflictItemInput, data)


DEFAULT_ADAPTERS: dict[str, Adapter] = {
    "media_monitoring": adapt_media_monitoring,
    "governance": adapt_governance,
    "risk_radar": adapt_risk_radar,
    "competitive_intelligence": adapt_competitive_intelligence,
}


class SourceNormalizer:
    """Routes subsystem payloads to the adapter registered for their source."""

    def __init__(self, adapters: dict[str, Adapter] | None = None) -> None:
        self._adapters: dict[str, Adapter] = dict(DEFAULT_ADAPTERS if adapters is None else adapters)

    def register(self, source_system: str, adapter: Adapter) -> None:
        self._adapters[source_system] = adapter

    @property
    def source_systems(self) -> list[str]:
        return sorted(self._adapters)

    def normalize(self, source_system: str, payload: dict[str, Any]) -> ConflictItemInput:
        """Convert one payload.

        Raises:
            ValidationError: If no adapter matches and the payload is not
                already canonical, or if the adapted item is invalid.
        """
        adapter = self._adapters.get(source_system)
        if adapter is not None:
            return adapter(payload)
        if _CANONICAL_KEYS <= payload.keys():
            return adapt_generic(payload)
        raise ValidationError(f"No adapter registered for source system {source_system!r}")

    def normalize_many(self, source_system: str, payloads: list[dict[str, Any]]) -> list[ConflictItemInput]:
        items = [self.normalize(source_system, payload) for payload in payloads]
        logger.debug("Normalized %d payloads from %s", len(items), source_system)
        return items
