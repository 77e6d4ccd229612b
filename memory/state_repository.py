"""
StateRepository — restart recovery for rules and active blocks.

In-memory snapshot with JSON file persistence. Writes are done by the
response service (after management operations, on a checkpoint cadence
and at shutdown), never from inside rule evaluation.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from config.settings import get_settings
from core.exceptions import PersistenceError, ValidationError
from enforcement.block_lifecycle import BlockedAddress
from rules.rule_models import Rule

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


class StateRepository:
    """Loads and saves the rule set and block table as one JSON document.

    Usage::

        repo = StateRepository()
        rules, blocks = repo.load()
        repo.save(engine.list_rules(), blocks.list_active())
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path or get_settings().STATE_STORE_PATH)
        self._saves = 0

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    # ── Persistence ─────────────────────────────────────────────────────

    def save(
        self,
        rules: Iterable[Rule],
        blocks: Iterable[BlockedAddress],
    ) -> None:
        document = {
            "version": _FORMAT_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "rules": [r.to_dict() for r in rules],
            "blocks": [b.to_dict() for b in blocks],
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(document, indent=2, default=str))
            os.replace(tmp, self._path)
        except OSError as exc:
            raise PersistenceError(
                f"Failed to write state store {self._path}: {exc}"
            ) from exc
        self._saves += 1
        logger.debug(
            "Saved %d rules and %d blocks to %s",
            len(document["rules"]),
            len(document["blocks"]),
            self._path,
        )

    def load(self) -> tuple[list[Rule], list[BlockedAddress]]:
        """Return persisted rules and blocks; empty lists when unavailable.

        Entries that cannot be parsed and repeated rule ids are skipped
        with a warning, so a damaged file never prevents startup.
        """
        if not self._path.exists():
            return [], []

        try:
            document = json.loads(self._path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load state store %s: %s", self._path, exc)
            return [], []

        if not isinstance(document, dict):
            logger.warning(
                "Ignoring state store %s: expected an object, got %s",
                self._path,
                type(document).__name__,
            )
            return [], []

        rules: list[Rule] = []
        seen: set[str] = set()
        for data in _entries(document, "rules"):
            try:
                rule = Rule.from_dict(data)
            except ValidationError as exc:
                logger.warning("Skipping persisted rule %r: %s", _entry_id(data), exc.message)
                continue
            except (AttributeError, TypeError) as exc:
                logger.warning("Skipping persisted rule %r: %s", _entry_id(data), exc)
                continue
            if rule.id in seen:
                logger.warning("Skipping persisted rule %r: duplicate id", rule.id)
                continue
            seen.add(rule.id)
            rules.append(rule)

        blocks: list[BlockedAddress] = []
        for data in _entries(document, "blocks"):
            try:
                blocks.append(BlockedAddress.from_dict(data))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping persisted block %r: %s", data, exc)

        logger.info(
            "Loaded %d rules and %d blocks from %s", len(rules), len(blocks), self._path
        )
        return rules, blocks

    @property
    def saves(self) -> int:
        return self._saves


def _entries(document: dict[str, Any], key: str) -> list[Any]:
    entries = document.get(key) or []
    if not isinstance(entries, list):
        logger.warning("Ignoring persisted '%s': expected a list", key)
        return []
    return entries


def _entry_id(data: Any) -> Any:
    return data.get("id") if isinstance(data, dict) else data
