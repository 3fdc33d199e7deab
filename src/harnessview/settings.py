"""Environment-based configuration using pydantic-settings.

All tunables of the coordination layer live here: throttle intervals per
update kind, cache limits per regime profile, memory guardian cadence and
thresholds, and the render lock watchdog. Values load from environment
variables prefixed ``HARNESSVIEW_`` (nested fields use ``__``, e.g.
``HARNESSVIEW_GUARDIAN__MEMORY_BUDGET_MB=2000``) and from an optional ``.env``.
"""

from __future__ import annotations

from typing import Dict

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import UpdateKind


class CacheLimits(BaseModel):
    capacity: int = Field(ge=1, description="Steady-state entry bound")
    pressure_threshold: int = Field(ge=2, description="Size that triggers bulk eviction")
    keep_recent: int = Field(ge=0, description="Entries kept by bulk eviction")

    @model_validator(mode="after")
    def validate_ordering(self):
        if self.pressure_threshold <= self.capacity:
            raise ValueError("pressure_threshold must be larger than capacity")
        if self.keep_recent > self.capacity:
            raise ValueError("keep_recent must not exceed capacity")
        return self


class CacheSettings(BaseModel):
    idle: CacheLimits = Field(
        default_factory=lambda: CacheLimits(capacity=30, pressure_threshold=45, keep_recent=10)
    )
    systematic: CacheLimits = Field(
        default_factory=lambda: CacheLimits(capacity=10, pressure_threshold=20, keep_recent=5)
    )
    walkthrough: CacheLimits = Field(
        default_factory=lambda: CacheLimits(capacity=40, pressure_threshold=60, keep_recent=15)
    )
    tier_q8: CacheLimits = Field(
        default_factory=lambda: CacheLimits(capacity=5, pressure_threshold=10, keep_recent=2)
    )
    max_fragment_chars: int = Field(default=50_000, ge=1)


def _default_intervals() -> Dict[UpdateKind, int]:
    return {
        UpdateKind.TEST_BED: 2000,
        UpdateKind.RESULT: 500,
        UpdateKind.WALKTHROUGH: 300,
        UpdateKind.LIVE: 500,
    }


def _default_q8_intervals() -> Dict[UpdateKind, int]:
    # Q8 trials are slow and heavy; back off so rendering does not interfere
    return {
        UpdateKind.TEST_BED: 5000,
        UpdateKind.RESULT: 1000,
        UpdateKind.WALKTHROUGH: 1500,
        UpdateKind.LIVE: 2000,
    }


class ThrottleSettings(BaseModel):
    intervals_ms: Dict[UpdateKind, int] = Field(default_factory=_default_intervals)
    q8_intervals_ms: Dict[UpdateKind, int] = Field(default_factory=_default_q8_intervals)

    @field_validator("intervals_ms", "q8_intervals_ms")
    def validate_intervals(cls, v):
        for kind, interval in v.items():
            if interval < 0:
                raise ValueError(f"Interval for {kind} must be non-negative")
        return v

    def interval_for(self, kind: UpdateKind, q8_active: bool = False) -> int:
        table = self.q8_intervals_ms if q8_active else self.intervals_ms
        if kind in table:
            return table[kind]
        return self.intervals_ms.get(kind, 0)


class GuardianSettings(BaseModel):
    # Seconds between samples; minutes-scale by default, never sub-second
    systematic_interval_s: float = Field(default=60.0, ge=1.0)
    systematic_q8_interval_s: float = Field(default=30.0, ge=1.0)
    walkthrough_interval_s: float = Field(default=180.0, ge=1.0)
    walkthrough_q8_interval_s: float = Field(default=120.0, ge=1.0)

    # Usage ratio thresholds relative to memory_budget_mb
    threshold: float = Field(default=1.0, gt=0)
    q8_threshold: float = Field(default=0.8, gt=0)
    walkthrough_threshold: float = Field(default=1.0, gt=0)
    walkthrough_q8_threshold: float = Field(default=1.2, gt=0)

    memory_budget_mb: float = Field(default=1000.0, gt=0)
    max_consecutive_failures: int = Field(default=3, ge=1)


class HarnessSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HARNESSVIEW_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Logging
    log_level: str = Field(default="INFO", description="Application log level")
    log_format: str = Field(default="text", description="Log format: json or text")

    throttle: ThrottleSettings = Field(default_factory=ThrottleSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    guardian: GuardianSettings = Field(default_factory=GuardianSettings)

    render_lock_timeout_ms: int = Field(default=3000, ge=1)
    render_retry_delay_ms: int = Field(default=2000, ge=0)
    progressive_grace_ms: int = Field(default=2000, ge=0)

    tiered_test_id: str = Field(default="T10", description="Test governed by tier disclosure")

    @field_validator("log_format")
    def validate_log_format(cls, v):
        if v.lower() not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v.lower()


__all__ = [
    "CacheLimits",
    "CacheSettings",
    "ThrottleSettings",
    "GuardianSettings",
    "HarnessSettings",
]
