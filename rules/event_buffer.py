"""
EventBuffer — timestamp-ordered rolling buffer for count conditions.

Owned exclusively by the ``RuleEngine``. Events are kept sorted by
``(timestamp, arrival sequence)`` so window lookups and eviction use
``bisect``. Expiry is relative to the newest timestamp seen, never the
wall clock, which keeps evaluation deterministic for replays and tests.
"""

from __future__ import annotations

import bisect
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from events.event_models import ClassifiedEvent

logger = logging.getLogger(__name__)


class EventBuffer:
    """Rolling buffer of classified events bounded by a retention horizon.

    Usage::

        buffer = EventBuffer(max_events=100_000)
        buffer.horizon_seconds = 300
        buffer.append(event)
        n = buffer.count(start, end, predicate)
    """

    def __init__(self, *, max_events: int, horizon_seconds: float = 0.0) -> None:
        self._max_events = max_events
        self._horizon_seconds = horizon_seconds
        self._keys: list[tuple[datetime, int]] = []
        self._events: list[ClassifiedEvent] = []
        self._seq = 0
        self._latest: datetime | None = None
        self._overflowed = 0

    # ── Configuration ───────────────────────────────────────────────────

    @property
    def horizon_seconds(self) -> float:
        return self._horizon_seconds

    @horizon_seconds.setter
    def horizon_seconds(self, value: float) -> None:
        self._horizon_seconds = max(0.0, float(value))
        self.evict()

    # ── Recording ───────────────────────────────────────────────────────

    def append(self, event: ClassifiedEvent) -> None:
        """Insert an event in timestamp order, then evict expired entries."""
        key = (event.timestamp, self._seq)
        self._seq += 1

        if not self._keys or key >= self._keys[-1]:
            self._keys.append(key)
            self._events.append(event)
        else:
            idx = bisect.bisect_right(self._keys, key)
            self._keys.insert(idx, key)
            self._events.insert(idx, event)

        if self._latest is None or event.timestamp > self._latest:
            self._latest = event.timestamp

        self.evict()

        if len(self._events) > self._max_events:
            excess = len(self._events) - self._max_events
            del self._keys[:excess]
            del self._events[:excess]
            if not self._overflowed:
                logger.warning(
                    "EventBuffer: cap of %d events reached, dropping oldest events",
                    self._max_events,
                )
            self._overflowed += excess

    def evict(self) -> int:
        """Drop events older than ``latest - horizon``. Returns count removed."""
        if self._latest is None or not self._keys:
            return 0
        cutoff = self._latest - timedelta(seconds=self._horizon_seconds)
        idx = bisect.bisect_left(self._keys, (cutoff, -1))
        if idx:
            del self._keys[:idx]
            del self._events[:idx]
        return idx

    def clear(self) -> None:
        self._keys.clear()
        self._events.clear()
        self._latest = None

    # ── Queries ─────────────────────────────────────────────────────────

    def window(self, start: datetime, end: datetime) -> list[ClassifiedEvent]:
        """Events with ``start <= timestamp <= end``."""
        lo = bisect.bisect_left(self._keys, (start, -1))
        hi = bisect.bisect_right(self._keys, (end, self._seq))
        return self._events[lo:hi]

    def count(
        self,
        start: datetime,
        end: datetime,
        predicate: Callable[[ClassifiedEvent], bool] | None = None,
    ) -> int:
        """Count events in ``[start, end]`` satisfying ``predicate``."""
        events = self.window(start, end)
        if predicate is None:
            return len(events)
        return sum(1 for e in events if predicate(e))

    @property
    def latest_timestamp(self) -> datetime | None:
        return self._latest

    def __len__(self) -> int:
        return len(self._events)

    def get_stats(self) -> dict[str, Any]:
        return {
            "buffered_events": len(self._events),
            "horizon_seconds": self._horizon_seconds,
            "max_events": self._max_events,
            "overflowed": self._overflowed,
        }
