"""Backoff policy applied after failed folder scans.

The delay grows linearly with the number of consecutive failures and is
capped, so a folder stuck behind an unresponsive mail client keeps being
retried at a bounded rate until it is explicitly stopped.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class BackoffPolicy(BaseModel):
    """Capped linear backoff.

    Attributes:
        base_interval_ms: Delay unit, normally the monitor's polling interval
        max_interval_ms: Upper bound for any backoff delay
    """

    base_interval_ms: int = Field(..., ge=1)
    max_interval_ms: int = Field(..., ge=1)

    def delay_ms(self, consecutive_failures: int) -> int:
        """Delay before the next tick after ``consecutive_failures`` failures.

        Returns ``min(base * failures, max)``; zero failures means the normal
        polling interval.
        """
        failures = max(1, consecutive_failures)
        return min(self.base_interval_ms * failures, self.max_interval_ms)

    def delay_seconds(self, consecutive_failures: int) -> float:
        return self.delay_ms(consecutive_failures) / 1000.0


__all__ = ["BackoffPolicy"]
