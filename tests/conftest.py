"""
Shared test fixtures and configuration for pytest.
"""

from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Ensure project root is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ["ENVIRONMENT"] = "development"
os.environ["SEED_DEFAULT_RULES"] = "true"
os.environ["COWRIE_LOG_PATHS"] = ""
# High enough that the API suite never trips the limiter
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["JWT_SECRET"] = "test-secret"

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    """Point the state store at a temp dir and clear the settings cache."""
    monkeypatch.setenv("STATE_STORE_PATH", str(tmp_path / "state.json"))
    from config.settings import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_event():
    """Factory for classified events at ``T0 + seconds``."""
    from events.event_models import (
        Classification,
        ClassifiedEvent,
        EventKind,
        Severity,
    )

    counter = {"n": 0}

    def _make(
        seconds: float = 0,
        ip: str = "203.0.113.45",
        kind: EventKind = EventKind.SSH_LOGIN_ATTEMPT,
        classification: Classification = Classification.MALICIOUS,
        severity: Severity = Severity.HIGH,
    ) -> ClassifiedEvent:
        counter["n"] += 1
        return ClassifiedEvent(
            id=f"evt-{counter['n']}",
            timestamp=T0 + timedelta(seconds=seconds),
            source_ip=ip,
            event_kind=kind,
            classification=classification,
            severity=severity,
        )

    return _make


@pytest.fixture
def cowrie_record():
    """Factory for raw Cowrie JSON records at ``T0 + seconds``."""

    def _make(
        eventid: str = "cowrie.login.failed",
        seconds: float = 0,
        src_ip: str = "203.0.113.45",
        **extra,
    ) -> dict:
        record = {
            "eventid": eventid,
            "timestamp": (T0 + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z"),
            "src_ip": src_ip,
        }
        record.update(extra)
        return record

    return _make
