"""
Settlement service configuration.
Uses SE_SETTLEMENT_ prefix; database and provider settings come from get_settings().
"""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SettlementSettings(BaseSettings):
    """Engine-specific settings; use get_settings() for DB and provider."""

    model_config = SettingsConfigDict(
        env_prefix="SE_SETTLEMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Loop
    cycle_interval_s: float = Field(default=60.0, description="Seconds between settlement cycles")
    jitter_factor: float = Field(default=0.1, description="Jitter as fraction of interval (0.1 = ±10%)")
    error_backoff_s: float = Field(default=30.0, description="Sleep after a cycle that raised")

    # Concurrency and fetching
    worker_concurrency: int = Field(default=8, description="Predictions processed concurrently per cycle")
    fetch_timeout_s: float = Field(default=15.0, description="Timeout per upstream fetch, retries included")

    # Fixture cache
    date_list_ttl_s: float = Field(default=60.0, description="Freshness window of per-date fixture lists")
    detail_ttl_s: float = Field(default=60.0, description="Freshness window of non-finished fixture details")
    soft_staleness_s: float = Field(default=900.0, description="Max age of a cached value served after an upstream failure")
    final_retention_s: float = Field(default=86400.0, description="How long finished fixture details stay cached")

    # Matching
    kickoff_tolerance_h: float = Field(default=6.0, description="Accepted distance between expected and actual kickoff")
    per_side_threshold: float = Field(default=0.6, description="Minimum similarity required on each side")
    acceptance_threshold: float = Field(default=0.75, description="Minimum mean similarity of both sides")
    team_aliases: dict[str, str] = Field(default_factory=dict, description="Extra aliases, raw name -> canonical name")

    # Pending selection
    lookback_hours: int = Field(default=48, description="Only predictions created within this window are examined")
    pending_batch_limit: int = Field(default=500, description="Max predictions examined per cycle")

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, description="Failures before opening circuit")
    circuit_recovery_s: float = Field(default=60.0, description="Seconds before half-open")

    # Metrics
    metrics_port: int = Field(default=9091, description="Port for the Prometheus metrics server")


def get_settlement_settings() -> SettlementSettings:
    """Load settlement settings."""
    return SettlementSettings()
