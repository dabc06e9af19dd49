from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(slots=True)
class AgentHealth:
    """Liveness and counters reported by a background agent."""

    name: str
    healthy: bool = False
    ready: bool = False
    last_error: str | None = None
    last_success_at: datetime | None = None
    last_run_at: datetime | None = None
    consecutive_failures: int = 0
    metrics: dict[str, int] = field(default_factory=dict)

    def mark_run(self) -> None:
        self.last_run_at = datetime.now(timezone.utc)

    def mark_success(self) -> None:
        self.healthy = True
        self.ready = True
        self.last_error = None
        self.consecutive_failures = 0
        self.last_success_at = datetime.now(timezone.utc)

    def mark_error(self, error: Exception) -> None:
        self.healthy = False
        self.consecutive_failures += 1
        self.last_error = str(error) or type(error).__name__

    def increment(self, metric: str, amount: int = 1) -> int:
        """Add to a cumulative counter; returns the new total."""
        self.metrics[metric] = self.metrics.get(metric, 0) + amount
        return self.metrics[metric]

    def payload(self) -> dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "ready": self.ready,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "last_success_at": _iso(self.last_success_at),
            "last_run_at": _iso(self.last_run_at),
            "metrics": dict(self.metrics),
        }
