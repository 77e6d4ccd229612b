"""
RuleEngine — evaluates automated-response rules against the event stream.

Design:
  - One writer lock serializes ``ingest`` and rule management, so events
    are evaluated strictly in arrival order.
  - After every mutation an immutable tuple of frozen rules is published;
    readers use it without taking the lock.
  - A malformed rule is skipped for the current event and recorded as a
    fault. It never aborts ingestion or other rules.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from config.settings import get_settings
from core.exceptions import DuplicateRuleIDError, RuleConfigFault, UnknownRuleIDError
from events.event_models import ClassifiedEvent
from rules.condition_evaluator import max_window_seconds, rule_matches, validate_rule
from rules.event_buffer import EventBuffer
from rules.rule_models import (
    Action,
    Condition,
    EmittedAction,
    Rule,
    RuleFault,
    TriggerRecord,
)

logger = logging.getLogger(__name__)

ActionHandler = Callable[[EmittedAction], Any]


@dataclass
class IngestResult:
    """Outcome of evaluating one event against every enabled rule."""

    event: ClassifiedEvent
    matched_rule_ids: list[str] = field(default_factory=list)
    emitted: list[EmittedAction] = field(default_factory=list)
    faults: list[RuleFault] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return bool(self.matched_rule_ids)


class RuleEngine:
    """Holds the rule set and fires rule actions for matching events.

    Usage::

        engine = RuleEngine(action_handler=dispatcher.dispatch)
        engine.create_rule(rule)
        result = engine.ingest(event)
        engine.set_enabled(rule.id, False)
    """

    def __init__(
        self,
        *,
        action_handler: ActionHandler | None = None,
        buffer_max_events: int | None = None,
        history_limit: int | None = None,
        fault_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self._action_handler = action_handler
        self._lock = threading.Lock()
        self._rules: dict[str, Rule] = {}
        self._published: tuple[Rule, ...] = ()
        self._buffer = EventBuffer(
            max_events=buffer_max_events or settings.RULE_BUFFER_MAX_EVENTS
        )
        self._history: deque[TriggerRecord] = deque(
            maxlen=history_limit or settings.RULE_HISTORY_LIMIT
        )
        self._faults: deque[RuleFault] = deque(
            maxlen=fault_limit or settings.RULE_FAULT_LIMIT
        )
        self._total_events = 0
        self._total_triggers = 0
        self._total_faults = 0

    # ── Ingestion ───────────────────────────────────────────────────────

    def ingest(self, event: ClassifiedEvent) -> IngestResult:
        """Evaluate one event against every enabled rule, in declaration order."""
        result = IngestResult(event=event)

        with self._lock:
            self._total_events += 1
            self._buffer.append(event)

            for rule in list(self._rules.values()):
                if not rule.enabled:
                    continue

                try:
                    validate_rule(rule)
                    matched = rule_matches(rule, event, self._buffer)
                except RuleConfigFault as fault:
                    result.faults.append(self._record_fault(rule, event, fault))
                    continue

                if not matched:
                    continue

                updated = rule.triggered(event.timestamp)
                self._rules[rule.id] = updated
                self._total_triggers += 1
                result.matched_rule_ids.append(rule.id)
                self._history.append(
                    TriggerRecord(
                        rule_id=rule.id,
                        rule_name=rule.name,
                        event_id=event.id,
                        source_ip=event.source_ip,
                        triggered_at=updated.last_triggered_at or event.timestamp,
                        action_kinds=tuple(a.kind.value for a in rule.actions),
                    )
                )
                logger.info(
                    "RuleEngine: rule '%s' triggered by %s from %s (count=%d)",
                    rule.name,
                    event.event_kind.value,
                    event.source_ip,
                    updated.trigger_count,
                )

                for action in rule.actions:
                    emitted = EmittedAction(
                        rule_id=rule.id,
                        rule_name=rule.name,
                        action=action,
                        event=event,
                    )
                    result.emitted.append(emitted)
                    if self._action_handler is None:
                        continue
                    try:
                        self._action_handler(emitted)
                    except Exception as exc:
                        logger.error(
                            "RuleEngine: %s handler failed for rule '%s': %s",
                            action.kind.value,
                            rule.name,
                            exc,
                        )

            if result.matched_rule_ids:
                self._publish()

        return result

    # ── Rule management ─────────────────────────────────────────────────

    def create_rule(self, rule: Rule) -> Rule:
        """Register a new rule at the end of the declaration order."""
        with self._lock:
            if rule.id in self._rules:
                raise DuplicateRuleIDError(rule.id)
            self._rules[rule.id] = rule
            self._rules_changed()
        logger.info("RuleEngine: created rule '%s' (%s)", rule.name, rule.id)
        return rule

    def edit_rule(
        self,
        rule_id: str,
        *,
        conditions: Iterable[Condition] | None = None,
        actions: Iterable[Action] | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> Rule:
        """Replace a rule's definition. Counters and position are kept."""
        with self._lock:
            current = self._get(rule_id)
            changes: dict[str, Any] = {}
            if conditions is not None:
                changes["conditions"] = tuple(conditions)
            if actions is not None:
                changes["actions"] = tuple(actions)
            if name is not None:
                changes["name"] = name
            if description is not None:
                changes["description"] = description
            updated = replace(current, **changes)
            self._rules[rule_id] = updated
            self._rules_changed()
        logger.info("RuleEngine: edited rule '%s' (%s)", updated.name, rule_id)
        return updated

    def delete_rule(self, rule_id: str) -> Rule:
        with self._lock:
            removed = self._get(rule_id)
            del self._rules[rule_id]
            self._rules_changed()
        logger.info("RuleEngine: deleted rule '%s' (%s)", removed.name, rule_id)
        return removed

    def set_enabled(self, rule_id: str, enabled: bool) -> Rule:
        """Enable or disable a rule. Past triggers and blocks are untouched."""
        with self._lock:
            updated = replace(self._get(rule_id), enabled=enabled)
            self._rules[rule_id] = updated
            self._rules_changed()
        logger.info(
            "RuleEngine: rule '%s' %s", updated.name, "enabled" if enabled else "disabled"
        )
        return updated

    def load_rules(self, rules: Iterable[Rule]) -> int:
        """Replace the whole rule set (used when restoring persisted state)."""
        with self._lock:
            self._rules = {}
            for rule in rules:
                if rule.id in self._rules:
                    raise DuplicateRuleIDError(rule.id)
                self._rules[rule.id] = rule
            self._rules_changed()
            return len(self._rules)

    # ── Snapshots (lock-free reads) ─────────────────────────────────────

    def get_rule(self, rule_id: str) -> Rule:
        for rule in self._published:
            if rule.id == rule_id:
                return rule
        raise UnknownRuleIDError(rule_id)

    def list_rules(self) -> list[Rule]:
        return list(self._published)

    def trigger_history(self, limit: int | None = None) -> list[TriggerRecord]:
        """Most recent triggers first."""
        history = list(self._history)
        history.reverse()
        return history if limit is None else history[:limit]

    def faults(self, limit: int | None = None) -> list[RuleFault]:
        """Most recent rule faults first."""
        faults = list(self._faults)
        faults.reverse()
        return faults if limit is None else faults[:limit]

    @property
    def horizon_seconds(self) -> float:
        return self._buffer.horizon_seconds

    def get_stats(self) -> dict[str, Any]:
        rules = self._published
        return {
            "rules": len(rules),
            "enabled_rules": sum(1 for r in rules if r.enabled),
            "total_events": self._total_events,
            "total_triggers": self._total_triggers,
            "total_faults": self._total_faults,
            "buffer": self._buffer.get_stats(),
        }

    # ── Internal ────────────────────────────────────────────────────────

    def _get(self, rule_id: str) -> Rule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise UnknownRuleIDError(rule_id) from None

    def _rules_changed(self) -> None:
        self._buffer.horizon_seconds = max_window_seconds(self._rules.values())
        self._publish()

    def _publish(self) -> None:
        self._published = tuple(self._rules.values())

    def _record_fault(
        self, rule: Rule, event: ClassifiedEvent, fault: RuleConfigFault
    ) -> RuleFault:
        record = RuleFault(
            rule_id=rule.id,
            rule_name=rule.name,
            event_id=event.id,
            reason=fault.message,
            occurred_at=datetime.now(timezone.utc),
        )
        self._faults.append(record)
        self._total_faults += 1
        logger.warning(
            "RuleEngine: skipped rule '%s' for event %s: %s",
            rule.name,
            event.id,
            fault.message,
        )
        return record
