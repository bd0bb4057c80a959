from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from contractflags.aggregator import OverlapPolicy
from contractflags.models import Source
from contractflags.summary import ScoringPolicy

SOURCE_ORDER = tuple(Source)


class Settings(BaseSettings):
    # Environment variables use the CONTRACTFLAGS_ prefix, e.g. CONTRACTFLAGS_ANALYZER_A_MODEL
    model_config = SettingsConfigDict(
        env_prefix="CONTRACTFLAGS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled_analyzers: list[str] = Field(default_factory=lambda: [src.value for src in SOURCE_ORDER])
    analyzer_timeout_seconds: float = 120.0

    # LLM analyzers (any OpenAI-compatible chat completions endpoint)
    analyzer_a_model: str = "gpt-4o-mini"
    analyzer_a_base_url: str | None = None
    analyzer_a_api_key: str | None = None
    analyzer_b_model: str = "gpt-4o"
    analyzer_b_base_url: str | None = None
    analyzer_b_api_key: str | None = None
    llm_max_retries: int = 2
    llm_max_document_chars: int = 60000

    # Aggregation and scoring
    weight_critical: float = 2.0
    weight_high: float = 1.5
    weight_medium: float = 1.0
    weight_low: float = 0.5
    location_match: str = "contains"

    conflict_policy: str = "cancel"

    @field_validator("enabled_analyzers")
    @classmethod
    def validate_enabled_analyzers(cls, v: list[str]) -> list[str]:
        """Validate analyzer names."""
        known = {src.value for src in Source}
        unknown = [name for name in v if name not in known]
        if unknown:
            raise ValueError(f"Unknown analyzer(s): {', '.join(unknown)}")
        return v

    @field_validator("analyzer_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("analyzer_timeout_seconds must be positive")
        return v

    @field_validator("weight_critical", "weight_high", "weight_medium", "weight_low")
    @classmethod
    def validate_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError("severity weights must not be negative")
        return v

    @field_validator("location_match")
    @classmethod
    def validate_location_match(cls, v: str) -> str:
        if v not in ("contains", "exact"):
            raise ValueError('location_match must be "contains" or "exact"')
        return v

    @field_validator("conflict_policy")
    @classmethod
    def validate_conflict_policy(cls, v: str) -> str:
        if v not in ("cancel", "reject"):
            raise ValueError('conflict_policy must be "cancel" or "reject"')
        return v

    def scoring_policy(self) -> ScoringPolicy:
        return ScoringPolicy(
            critical=self.weight_critical,
            high=self.weight_high,
            medium=self.weight_medium,
            low=self.weight_low,
        )


def canonical_sources(names: Iterable[Source | str]) -> tuple[Source, ...]:
    """Return the distinct sources in ``names`` in fixed pipeline order."""

    selected = {Source(name) for name in names}
    return tuple(src for src in SOURCE_ORDER if src in selected)


@dataclass(frozen=True)
class AnalysisConfig:
    """Explicit per-run configuration handed to ``start_analysis``."""

    enabled: tuple[Source, ...] = SOURCE_ORDER
    timeout: float = 120.0
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    overlap: OverlapPolicy = field(default_factory=OverlapPolicy)

    def __post_init__(self):
        object.__setattr__(self, "enabled", canonical_sources(self.enabled))
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        enabled: Iterable[Source | str] | None = None,
        timeout: float | None = None,
    ) -> "AnalysisConfig":
        return cls(
            enabled=canonical_sources(enabled if enabled else settings.enabled_analyzers),
            timeout=timeout or settings.analyzer_timeout_seconds,
            scoring=settings.scoring_policy(),
            overlap=OverlapPolicy(mode=settings.location_match),
        )


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get settings singleton instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
