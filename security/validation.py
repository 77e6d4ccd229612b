"""
Validation — sanity checks on sensor payloads pushed over the API.

Validates:
  • Batch size limits
  • Required Cowrie fields (``eventid``, ``src_ip``)
  • Field length limits
"""

from __future__ import annotations

import logging
from typing import Any

from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

# ── Constants ───────────────────────────────────────────────────────────

MAX_EVENTS_PER_BATCH = 10_000
MAX_ADDRESS_LENGTH = 64
MAX_EVENT_ID_LENGTH = 128
MAX_TEXT_LENGTH = 10_000


def validate_event_record(record: Any, index: int = 0) -> dict[str, Any]:
    """Validate one Cowrie record and return a sanitized copy.

    Oversized free-text fields are truncated rather than rejected.

    Raises:
        ValidationError: If the record is not an object or lacks required fields.
    """
    if not isinstance(record, dict):
        raise ValidationError(f"Event {index} is not an object")

    event_id = record.get("eventid")
    if not isinstance(event_id, str) or not event_id.strip():
        raise ValidationError(f"Event {index} is missing 'eventid'")
    if len(event_id) > MAX_EVENT_ID_LENGTH:
        raise ValidationError(f"Event {index} has an oversized 'eventid'")

    src_ip = record.get("src_ip")
    if not isinstance(src_ip, str) or not src_ip.strip():
        raise ValidationError(f"Event {index} is missing 'src_ip'")
    if len(src_ip) > MAX_ADDRESS_LENGTH:
        raise ValidationError(f"Event {index} has an oversized 'src_ip'")

    sanitized = dict(record)
    sanitized["eventid"] = event_id.strip()
    sanitized["src_ip"] = src_ip.strip()
    for key in ("message", "input"):
        value = sanitized.get(key)
        if isinstance(value, str) and len(value) > MAX_TEXT_LENGTH:
            logger.warning("Truncating oversized '%s' on event %d (%d chars)", key, index, len(value))
            sanitized[key] = value[:MAX_TEXT_LENGTH]
    return sanitized


def validate_event_batch(records: Any) -> list[dict[str, Any]]:
    """Validate a batch of Cowrie records.

    Raises:
        ValidationError: If the batch is malformed, empty or too large.
    """
    if not isinstance(records, list):
        raise ValidationError("'events' must be a list of objects")
    if not records:
        raise ValidationError("'events' must not be empty")
    if len(records) > MAX_EVENTS_PER_BATCH:
        raise ValidationError(
            f"Too many events: {len(records)} (max: {MAX_EVENTS_PER_BATCH})"
        )
    return [validate_event_record(r, i) for i, r in enumerate(records)]
