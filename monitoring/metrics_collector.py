"""
MetricsCollector — real-time observability counters for the response service.

Tracks ingestion throughput, rule activity and enforcement, and exposes
them via a ``snapshot()`` method for API consumption (``GET /api/status``).
"""

from __future__ import annotations

import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Centralized metrics collection for the response service.

    Uses a sliding window of recent processing timestamps to compute
    events/second in real time.

    Usage::

        metrics = MetricsCollector()
        metrics.record_event(matched_rules=1, faults=0)
        snapshot = metrics.snapshot()
    """

    _RATE_WINDOW_SECONDS = 5.0

    def __init__(self) -> None:
        self._start_time = time.monotonic()
        self._started_at = datetime.now(timezone.utc)

        self._event_times: deque[float] = deque()
        self._total_events = 0
        self._rule_triggers = 0
        self._rule_faults = 0
        self._processing_errors = 0
        self._unblocks = 0
        self._swept = 0

    # ── Recording ───────────────────────────────────────────────────────

    def record_event(self, *, matched_rules: int = 0, faults: int = 0) -> None:
        """Record that an event went through classification and rules."""
        self._total_events += 1
        self._rule_triggers += matched_rules
        self._rule_faults += faults
        self._event_times.append(time.monotonic())

    def record_error(self) -> None:
        self._processing_errors += 1

    def record_unblock(self) -> None:
        self._unblocks += 1

    def record_sweep(self, removed: int) -> None:
        self._swept += removed

    # ── Queries ─────────────────────────────────────────────────────────

    def events_per_second(self) -> float:
        """Compute current events/second from recent timestamps."""
        now = time.monotonic()
        cutoff = now - self._RATE_WINDOW_SECONDS

        while self._event_times and self._event_times[0] < cutoff:
            self._event_times.popleft()

        if not self._event_times:
            return 0.0

        span = now - self._event_times[0]
        if span <= 0:
            return float(len(self._event_times))

        return len(self._event_times) / span

    def uptime_seconds(self) -> float:
        return time.monotonic() - self._start_time

    @property
    def total_events(self) -> int:
        return self._total_events

    def snapshot(
        self,
        *,
        queue_depth: int = 0,
        queue_dropped: int = 0,
        blocked_ips: int = 0,
        engine_stats: dict[str, Any] | None = None,
        block_stats: dict[str, Any] | None = None,
        dispatcher_stats: dict[str, Any] | None = None,
        workers: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Build a complete metrics snapshot for API consumption."""
        return {
            "events_per_second": round(self.events_per_second(), 2),
            "total_events_processed": self._total_events,
            "rule_triggers": self._rule_triggers,
            "rule_faults": self._rule_faults,
            "processing_errors": self._processing_errors,
            "manual_unblocks": self._unblocks,
            "expired_blocks_swept": self._swept,
            "blocked_ips": blocked_ips,
            "queue_depth": queue_depth,
            "queue_dropped": queue_dropped,
            "uptime_seconds": round(self.uptime_seconds(), 1),
            "started_at": self._started_at.isoformat(),
            "components": {
                "rule_engine": engine_stats or {},
                "blocks": block_stats or {},
                "dispatcher": dispatcher_stats or {},
                "workers": workers or {},
            },
        }
