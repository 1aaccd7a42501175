"""Bounded exponential backoff for heartbeat retries."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from watchbudget.config.settings import HeartbeatConfig


class BackoffPolicy(BaseModel):
    """Delay schedule for consecutive heartbeat failures.

    The n-th consecutive failure waits ``base_interval * multiplier**(n-1)``
    seconds, capped at ``ceiling``. With the defaults that is
    60, 120, 240, 300, 300, ... and retries continue for as long as the
    session is active (``max_attempts=None``).
    """

    model_config = ConfigDict(frozen=True)

    base_interval: float = Field(default=60.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    ceiling: float = Field(default=300.0, gt=0)
    max_attempts: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _ceiling_not_below_base(self) -> BackoffPolicy:
        if self.ceiling < self.base_interval:
            raise ValueError("ceiling must be >= base_interval")
        return self

    @classmethod
    def from_config(cls, config: HeartbeatConfig) -> BackoffPolicy:
        return cls(
            base_interval=config.base_interval,
            multiplier=config.multiplier,
            ceiling=config.ceiling,
            max_attempts=config.max_attempts,
        )

    def delay_for(self, failures: int) -> float:
        """Seconds to wait after ``failures`` consecutive failures (>= 1)."""
        if failures < 1:
            return self.base_interval
        return min(self.base_interval * self.multiplier ** (failures - 1), self.ceiling)

    def exhausted(self, failures: int) -> bool:
        return self.max_attempts is not None and failures >= self.max_attempts
