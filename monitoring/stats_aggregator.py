"""
Stats aggregation over classified events.

``aggregate`` and ``breakdown`` are pure folds. ``RecentEventWindow`` keeps
the most recent N classified events so stats can be recomputed on demand.
"""

from __future__ import annotations

import math
import threading
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Iterable

from config.settings import get_settings
from events.event_models import Classification, ClassifiedEvent


@dataclass(frozen=True)
class Stats:
    """Classification summary of a set of events."""

    total_logs: int = 0
    malicious_count: int = 0
    benign_count: int = 0
    accuracy: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_logs": self.total_logs,
            "malicious_count": self.malicious_count,
            "benign_count": self.benign_count,
            "accuracy": self.accuracy,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def aggregate(events: Iterable[ClassifiedEvent]) -> Stats:
    """Fold events into counters. Order of ``events`` does not matter."""
    total = 0
    malicious = 0
    for event in events:
        total += 1
        if event.classification is Classification.MALICIOUS:
            malicious += 1

    benign = total - malicious
    accuracy = _round_half_up(benign / total * 100) if total > 0 else 0
    return Stats(
        total_logs=total,
        malicious_count=malicious,
        benign_count=benign,
        accuracy=accuracy,
    )


def breakdown(events: Iterable[ClassifiedEvent]) -> dict[str, dict[str, int]]:
    """Count events per event kind and per severity."""
    by_kind: Counter[str] = Counter()
    by_severity: Counter[str] = Counter()
    for event in events:
        by_kind[event.event_kind.value] += 1
        by_severity[event.severity.value] += 1
    return {
        "by_event_kind": dict(sorted(by_kind.items())),
        "by_severity": dict(sorted(by_severity.items())),
    }


class RecentEventWindow:
    """Bounded, thread-safe window of the most recently ingested events.

    Usage::

        window = RecentEventWindow(max_events=1000)
        window.record(event)
        stats = window.stats()
    """

    def __init__(self, max_events: int | None = None) -> None:
        self._max_events = max_events or get_settings().RECENT_EVENT_LIMIT
        self._events: deque[ClassifiedEvent] = deque(maxlen=self._max_events)
        self._lock = threading.Lock()

    @property
    def max_events(self) -> int:
        return self._max_events

    def record(self, event: ClassifiedEvent) -> None:
        with self._lock:
            self._events.append(event)

    def snapshot(self) -> list[ClassifiedEvent]:
        """Copy of the window, oldest first."""
        with self._lock:
            return list(self._events)

    def latest(self, limit: int | None = None) -> list[ClassifiedEvent]:
        """Most recent events first, optionally capped at ``limit``."""
        events = self.snapshot()
        events.reverse()
        return events if limit is None else events[:limit]

    def stats(self) -> Stats:
        return aggregate(self.snapshot())

    def breakdown(self) -> dict[str, dict[str, int]]:
        return breakdown(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
