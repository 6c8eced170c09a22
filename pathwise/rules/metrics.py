from __future__ import annotations

import threading
from datetime import datetime, timezone

from pydantic import BaseModel


class MetricsSnapshot(BaseModel):
    total_executions: int = 0
    successful_matches: int = 0
    average_execution_time: float = 0.0
    last_executed: datetime | None = None


class RuleMetrics:
    """Per-rule execution counters shared by every concurrent evaluation.

    One instance belongs to a rule aggregate and is handed by reference to each
    published snapshot of that rule, so counters survive cache reloads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_executions = 0
        self._successful_matches = 0
        self._average_execution_time = 0.0
        self._last_executed: datetime | None = None

    def record(self, matched: bool, elapsed_ms: float) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._total_executions += 1
            if matched:
                self._successful_matches += 1
            # Running mean over every execution recorded so far
            self._average_execution_time += (
                elapsed_ms - self._average_execution_time
            ) / self._total_executions
            self._last_executed = now

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                total_executions=self._total_executions,
                successful_matches=self._successful_matches,
                average_execution_time=round(self._average_execution_time, 4),
                last_executed=self._last_executed,
            )
