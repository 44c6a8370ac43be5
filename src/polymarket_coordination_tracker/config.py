"""Configuration management service with Pydantic Settings.

This module provides centralized configuration for the coordinated trading
detector, loading and validating environment variables at startup.
Detector settings are frozen: a detector instance never observes a change
to its thresholds after construction.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_WEIGHT_SUM_TOLERANCE = 1e-6


class ScoreWeights(BaseModel):
    """Weights applied to the five pairwise sub-scores (must sum to 1.0)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timing_correlation: float = Field(default=0.25, ge=0.0, le=1.0)
    market_overlap: float = Field(default=0.20, ge=0.0, le=1.0)
    size_similarity: float = Field(default=0.15, ge=0.0, le=1.0)
    direction_alignment: float = Field(default=0.25, ge=0.0, le=1.0)
    win_rate_correlation: float = Field(default=0.15, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_sum(self) -> ScoreWeights:
        total = sum(self.as_dict().values())
        if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"score weights must sum to 1.0 (got {total:.6f})")
        return self

    def as_dict(self) -> dict[str, float]:
        return {
            "timing_correlation": self.timing_correlation,
            "market_overlap": self.market_overlap,
            "size_similarity": self.size_similarity,
            "direction_alignment": self.direction_alignment,
            "win_rate_correlation": self.win_rate_correlation,
        }


class RiskThresholds(BaseModel):
    """Ascending group-score thresholds for LOW..CRITICAL risk."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    low: float = Field(default=40.0, ge=0.0, le=100.0)
    medium: float = Field(default=55.0, ge=0.0, le=100.0)
    high: float = Field(default=70.0, ge=0.0, le=100.0)
    critical: float = Field(default=85.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def validate_ascending(self) -> RiskThresholds:
        if not (self.low < self.medium < self.high < self.critical):
            raise ValueError("risk thresholds must be strictly ascending: low < medium < high < critical")
        return self


class ConfidenceThresholds(BaseModel):
    """Ascending group-score thresholds for VERY_LOW..VERY_HIGH confidence."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    very_low: float = Field(default=20.0, ge=0.0, le=100.0)
    low: float = Field(default=35.0, ge=0.0, le=100.0)
    medium: float = Field(default=50.0, ge=0.0, le=100.0)
    high: float = Field(default=70.0, ge=0.0, le=100.0)
    very_high: float = Field(default=85.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def validate_ascending(self) -> ConfidenceThresholds:
        if not (self.very_low < self.low < self.medium < self.high < self.very_high):
            raise ValueError("confidence thresholds must be strictly ascending")
        return self


class CoordinationSettings(BaseSettings):
    """Coordinated trading detector configuration.

    Nested threshold groups can be overridden from the environment with a
    double underscore, e.g. ``COORDINATION_RISK_THRESHOLDS__HIGH=75``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COORDINATION_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    simultaneous_window_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=24 * 3600,
        description="Max offset between two trades for them to count as simultaneous",
    )
    min_similarity_score: float = Field(
        default=70.0,
        ge=0.0,
        le=100.0,
        description="Minimum composite similarity (0-100) for a pair to join a group",
    )
    min_market_overlap: float = Field(
        default=30.0,
        ge=0.0,
        le=100.0,
        description="Market overlap percentage that raises the MARKET_OVERLAP flag",
    )
    min_simultaneous_trades: int = Field(
        default=3,
        ge=1,
        le=10_000,
        description="Matched simultaneous trades that raise the SEQUENTIAL_TIMING flag",
    )
    min_trades_per_wallet: int = Field(
        default=5,
        ge=1,
        le=10_000,
        description="Minimum trades per wallet (after filtering) for a pairwise analysis",
    )
    min_group_size: int = Field(
        default=2,
        ge=2,
        le=1_000,
        description="Minimum wallets in a coordinated group",
    )
    max_group_size: int = Field(
        default=50,
        ge=2,
        le=10_000,
        description="Maximum wallets kept in a single group",
    )
    max_pairs_per_wallet: int = Field(
        default=100,
        ge=1,
        le=100_000,
        description="Maximum candidate wallets compared per analysis (complexity bound)",
    )
    max_groups: int = Field(
        default=500,
        ge=1,
        le=1_000_000,
        description="Maximum groups retained in the in-memory group index",
    )
    size_similarity_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Relative size difference tolerated by the SIZE_SIMILARITY flag",
    )
    win_rate_similarity_threshold: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        description="Win-rate difference tolerated by the WIN_RATE_SIMILARITY flag",
    )
    cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0.0,
        le=30 * 24 * 3600,
        description="TTL for cached pairwise analyses",
    )
    enable_events: bool = Field(default=True, description="Publish detector events to subscribers")
    enable_caching: bool = Field(default=True, description="Cache pairwise analyses")

    score_weights: ScoreWeights = Field(default_factory=ScoreWeights)
    risk_thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    confidence_thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)

    @model_validator(mode="after")
    def validate_group_bounds(self) -> CoordinationSettings:
        if self.min_group_size > self.max_group_size:
            raise ValueError("COORDINATION_MIN_GROUP_SIZE must be <= COORDINATION_MAX_GROUP_SIZE")
        return self

    @property
    def simultaneous_window_ms(self) -> int:
        return int(self.simultaneous_window_seconds * 1000)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from polymarket_coordination_tracker.config import get_settings

        settings = get_settings()
        print(settings.coordination.max_pairs_per_wallet)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    coordination: CoordinationSettings = Field(
        default_factory=lambda: CoordinationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def summary(self) -> dict[str, str | dict[str, str]]:
        """Get a flat, printable summary of the active settings."""
        c = self.coordination
        return {
            "coordination": {
                "simultaneous_window_seconds": str(c.simultaneous_window_seconds),
                "min_similarity_score": str(c.min_similarity_score),
                "min_group_size": str(c.min_group_size),
                "max_pairs_per_wallet": str(c.max_pairs_per_wallet),
                "cache_ttl_seconds": str(c.cache_ttl_seconds),
                "enable_events": str(c.enable_events),
                "enable_caching": str(c.enable_caching),
            },
            "log_level": self.log_level,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
