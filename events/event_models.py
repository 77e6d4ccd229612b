"""
Event models — typed data containers for the ingestion pipeline.

All events are immutable dataclasses with strict typing.
No business logic lives here — pure data carriers.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    """Normalized attack category of a classified event."""

    SSH_LOGIN_ATTEMPT = "SSHLoginAttempt"
    SQL_INJECTION_ATTEMPT = "SQLInjectionAttempt"
    COMMAND_INJECTION = "CommandInjection"
    PORT_SCAN = "PortScan"
    REMOTE_CODE_EXECUTION = "RemoteCodeExecution"
    FILE_DOWNLOAD = "FileDownload"
    PHISHING_ATTEMPT = "PhishingAttempt"

    @property
    def label(self) -> str:
        """Human-readable label shown on dashboards."""
        return _EVENT_KIND_LABELS[self]


_EVENT_KIND_LABELS: dict[EventKind, str] = {
    EventKind.SSH_LOGIN_ATTEMPT: "SSH Login Attempt",
    EventKind.SQL_INJECTION_ATTEMPT: "SQL Injection Attempt",
    EventKind.COMMAND_INJECTION: "Command Injection",
    EventKind.PORT_SCAN: "Port Scan",
    EventKind.REMOTE_CODE_EXECUTION: "Remote Code Execution",
    EventKind.FILE_DOWNLOAD: "File Download",
    EventKind.PHISHING_ATTEMPT: "Phishing Attempt",
}


class Classification(str, Enum):
    """Verdict attached to a classified event."""

    MALICIOUS = "malicious"
    BENIGN = "benign"


class Severity(str, Enum):
    """Severity classification for sensor events."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> Severity | None:
        """Return the matching severity, or ``None`` for anything unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Epoch seconds stay below this until the year 5138.
_EPOCH_MS_THRESHOLD = 1e11


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts ``datetime`` objects, ISO strings (with or without a trailing
    ``Z``) and epoch seconds. Epoch values above ``_EPOCH_MS_THRESHOLD``
    are read as milliseconds. Naive values are treated as UTC. Falls back
    to the current time when the value cannot be parsed or is out of range.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if abs(value) > _EPOCH_MS_THRESHOLD else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return datetime.now(timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return datetime.now(timezone.utc)
    else:
        return datetime.now(timezone.utc)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class RawSensorEvent:
    """A single record pushed by a sensor (Cowrie honeypot JSON output).

    Attributes:
        event_id: The sensor's event identifier (e.g. ``cowrie.login.failed``).
        timestamp: When the event occurred (UTC).
        source_ip: The originating address, kept as an opaque key.
        message: Free-text message emitted by the sensor.
        input: Command input captured by the sensor, if any.
        session: Sensor session identifier.
        severity: Optional explicit severity carried by real-time feeds.
        id: Record identifier assigned by the sensor or storage layer.
    """

    event_id: str
    timestamp: datetime
    source_ip: str
    message: str = ""
    input: str = ""
    session: str = ""
    severity: str | None = None
    id: str = ""

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> RawSensorEvent:
        """Build a raw event from a Cowrie JSON record.

        Unknown keys are ignored. A missing id gets a fresh UUID and a
        missing timestamp falls back to the current time.
        """
        record_id = record.get("_id") or record.get("id") or uuid.uuid4().hex
        severity = record.get("severity")
        return cls(
            event_id=str(record.get("eventid") or record.get("event_id") or ""),
            timestamp=parse_timestamp(record.get("timestamp")),
            source_ip=str(record.get("src_ip") or record.get("source_ip") or ""),
            message=str(record.get("message") or ""),
            input=str(record.get("input") or ""),
            session=str(record.get("session") or ""),
            severity=str(severity) if severity else None,
            id=str(record_id),
        )


@dataclass(frozen=True)
class ClassifiedEvent:
    """A normalized security event produced by the classifier.

    Attributes:
        id: Opaque event identifier.
        timestamp: When the event occurred (UTC, comparable).
        source_ip: The originating address (not validated as an IP).
        event_kind: Normalized attack category.
        classification: Malicious or benign verdict.
        severity: Low / medium / high.
        details: Free-text details (sensor message or captured input).
    """

    id: str
    timestamp: datetime
    source_ip: str
    event_kind: EventKind
    classification: Classification
    severity: Severity
    details: str = ""

    @property
    def is_malicious(self) -> bool:
        return self.classification is Classification.MALICIOUS

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "source_ip": self.source_ip,
            "event": self.event_kind.label,
            "event_kind": self.event_kind.value,
            "classification": self.classification.value,
            "severity": self.severity.value,
            "details": self.details,
        }
