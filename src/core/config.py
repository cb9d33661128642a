"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
Detection, analysis and resolution thresholds live here so that every
engine component reads the same tunables.
"""

from __future__ import annotations

import functools
import json
from typing import Any

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STATUS_SEQUENCES: dict[str, list[str]] = {
    "status": ["draft", "pending", "in_review", "approved", "published", "archived"],
    "stage": ["planned", "active", "completed", "closed"],
}


class Settings(BaseSettings):
    """Insight conflict engine settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "Insight Conflict Engine"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ── Backend ──────────────────────────────────────────────────
    backend_host: str = "0.0.0.0"  # noqa: S104 - intentional for container deployments  # nosec B104
    backend_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Detection ────────────────────────────────────────────────
    join_threshold: float = Field(default=0.72, ge=0.0, le=1.0)
    divergence_threshold: float = Field(default=0.25, ge=0.0)
    ambiguity_band: float = Field(default=0.05, ge=0.0, le=0.5)
    insight_history_limit: int = Field(default=200, ge=1)
    embedding_dimension: int | None = Field(default=None, ge=1)
    default_reporting_cadence_hours: float = Field(default=24.0, gt=0)
    status_sequences: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_STATUS_SEQUENCES.items()}
    )

    # ── Analysis ─────────────────────────────────────────────────
    related_k: int = Field(default=5, ge=0)
    related_min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    recency_half_life_hours: float = Field(default=72.0, gt=0)
    authoritative_sources: dict[str, str] = Field(default_factory=dict)
    source_reliability: dict[str, float] = Field(default_factory=dict)
    weight_divergence_threshold: float = Field(default=0.2, ge=0.0, le=1.0)

    # ── Resolution ───────────────────────────────────────────────
    default_priority_order: dict[str, list[str]] = Field(default_factory=dict)
    hybrid_disagreement_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    vote_tie_tolerance: float = Field(default=0.02, ge=0.0, le=1.0)
    auto_analyze_before_resolve: bool = True

    # ── Clustering ───────────────────────────────────────────────
    cluster_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    min_cluster_size: int = Field(default=3, ge=2)
    cluster_recompute_interval_seconds: int = Field(default=300, ge=0)

    # ── Concurrency ──────────────────────────────────────────────
    lock_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Generative capability (Anthropic Messages API) ────────────
    llm_model: str = "claude-sonnet-4-20250514"
    llm_api_key: SecretStr = SecretStr("")
    llm_base_url: str | None = None
    llm_timeout_seconds: float = 30.0
    llm_max_tokens: int = 2000
    llm_max_retries: int = Field(default=3, ge=0)
    llm_retry_base_delay: float = Field(default=1.0, ge=0.0)

    # ── Export ───────────────────────────────────────────────────
    export_ttl_minutes: int = Field(default=60, ge=1)
    export_base_url: str = ""

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(item) for item in parsed]
            except (json.JSONDecodeError, TypeError):
                return [origin.strip() for origin in v.split(",")]
        if isinstance(v, list):
            return [str(item) for item in v]
        return ["http://localhost:3000"]

    @field_validator("source_reliability")
    @classmethod
    def check_reliability_range(cls, v: dict[str, float]) -> dict[str, float]:
        """Reliability weights are probabilities."""
        for source, weight in v.items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"source_reliability[{source!r}] must be within [0, 1]")
        return v

    @model_validator(mode="after")
    def check_band_below_threshold(self) -> Settings:
        """The ambiguity band must not swallow the whole join range."""
        if self.ambiguity_band >= self.join_threshold:
            raise ValueError("ambiguity_band must be smaller than join_threshold")
        return self

    @property
    def ambiguity_range(self) -> tuple[float, float]:
        """Similarity interval treated as the uncertain decision boundary."""
        return (
            max(0.0, self.join_threshold - self.ambiguity_band),
            min(1.0, self.join_threshold + self.ambiguity_band),
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
