"""
EventClassifier — deterministic lookup classification of raw sensor events.

Maps a sensor event identifier to ``(event_kind, classification, severity)``
through an immutable table injected at construction. The Cowrie table is
used when none is given.

Unknown identifiers fall back to ``SSHLoginAttempt / benign / low``. This
fails open and is kept for compatibility with existing dashboards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from events.event_models import (
    Classification,
    ClassifiedEvent,
    EventKind,
    RawSensorEvent,
    Severity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationEntry:
    """Target of one classification table row."""

    event_kind: EventKind
    classification: Classification
    severity: Severity


DEFAULT_CLASSIFICATION = ClassificationEntry(
    event_kind=EventKind.SSH_LOGIN_ATTEMPT,
    classification=Classification.BENIGN,
    severity=Severity.LOW,
)


ClassificationTable = Mapping[str, ClassificationEntry]


def build_table(rows: Mapping[str, ClassificationEntry]) -> ClassificationTable:
    """Freeze a mapping of event identifiers into a read-only table."""
    return MappingProxyType(dict(rows))


COWRIE_TABLE: ClassificationTable = build_table({
    "cowrie.login.failed": ClassificationEntry(
        EventKind.SSH_LOGIN_ATTEMPT, Classification.MALICIOUS, Severity.HIGH
    ),
    "cowrie.login.success": ClassificationEntry(
        EventKind.SSH_LOGIN_ATTEMPT, Classification.BENIGN, Severity.MEDIUM
    ),
    "cowrie.command.input": ClassificationEntry(
        EventKind.COMMAND_INJECTION, Classification.MALICIOUS, Severity.HIGH
    ),
    "cowrie.session.connect": ClassificationEntry(
        EventKind.PORT_SCAN, Classification.MALICIOUS, Severity.MEDIUM
    ),
    "cowrie.direct-tcpip": ClassificationEntry(
        EventKind.REMOTE_CODE_EXECUTION, Classification.MALICIOUS, Severity.HIGH
    ),
    "cowrie.session.file_download": ClassificationEntry(
        EventKind.FILE_DOWNLOAD, Classification.MALICIOUS, Severity.HIGH
    ),
    "cowrie.session.file_upload": ClassificationEntry(
        EventKind.FILE_DOWNLOAD, Classification.MALICIOUS, Severity.HIGH
    ),
    "cowrie.session.closed": ClassificationEntry(
        EventKind.SSH_LOGIN_ATTEMPT, Classification.BENIGN, Severity.LOW
    ),
    "cowrie.log.closed": ClassificationEntry(
        EventKind.SSH_LOGIN_ATTEMPT, Classification.BENIGN, Severity.LOW
    ),
})


class EventClassifier:
    """Total classification function over raw sensor events.

    The table decides kind and classification. An explicit, recognised
    severity on the raw event overrides the table severity; nothing else
    on the raw event can change the verdict.

    Usage::

        classifier = EventClassifier()
        event = classifier.classify(raw)
    """

    def __init__(
        self,
        table: ClassificationTable | None = None,
        *,
        default: ClassificationEntry = DEFAULT_CLASSIFICATION,
    ) -> None:
        self._table = COWRIE_TABLE if table is None else build_table(table)
        self._default = default
        self._unknown_count = 0

    @property
    def table(self) -> ClassificationTable:
        return self._table

    @property
    def unknown_count(self) -> int:
        """Number of events that fell back to the default classification."""
        return self._unknown_count

    def lookup(self, event_id: str) -> ClassificationEntry:
        """Return the table entry for an identifier, or the default."""
        entry = self._table.get(event_id)
        if entry is None:
            self._unknown_count += 1
            logger.debug("EventClassifier: unknown event id %r, using default", event_id)
            return self._default
        return entry

    def classify(self, raw: RawSensorEvent) -> ClassifiedEvent:
        entry = self.lookup(raw.event_id)

        severity = entry.severity
        if raw.severity:
            explicit = Severity.parse(raw.severity)
            if explicit is None:
                logger.debug(
                    "EventClassifier: ignoring unrecognised severity %r on %s",
                    raw.severity,
                    raw.id,
                )
            else:
                severity = explicit

        return ClassifiedEvent(
            id=raw.id,
            timestamp=raw.timestamp,
            source_ip=raw.source_ip,
            event_kind=entry.event_kind,
            classification=entry.classification,
            severity=severity,
            details=raw.message or raw.input or "",
        )
