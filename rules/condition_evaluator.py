"""
Condition evaluation for automated-response rules.

``validate_rule`` checks that a rule can be evaluated at all and raises
``RuleConfigFault`` otherwise. ``rule_matches`` then evaluates every
condition against the current event and the rolling buffer. Neither
function has side effects.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable

from core.exceptions import RuleConfigFault
from events.event_models import ClassifiedEvent
from rules.event_buffer import EventBuffer
from rules.rule_models import (
    Action,
    ActionKind,
    Condition,
    ConditionKind,
    Operator,
    Rule,
)

FIELD_KINDS = frozenset({
    ConditionKind.IP,
    ConditionKind.EVENT_KIND,
    ConditionKind.CLASSIFICATION,
})

_FIELD_OPERATORS = frozenset({Operator.EQUALS, Operator.CONTAINS, Operator.IN})
_COUNT_OPERATORS = frozenset({Operator.EQUALS, Operator.GREATER_THAN, Operator.LESS_THAN})


# ── Validation ──────────────────────────────────────────────────────────


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def window_seconds(rule: Rule, condition: Condition) -> float | None:
    """Resolve the trailing window of a count condition.

    The condition's own ``time_window_seconds`` wins; otherwise the first
    ``timeWindow`` condition of the rule supplies it.
    """
    if condition.time_window_seconds is not None:
        return condition.time_window_seconds
    for other in rule.conditions:
        if other.kind is ConditionKind.TIME_WINDOW and _is_number(other.value):
            return float(other.value)
    return None


def _validate_condition(rule: Rule, condition: Condition) -> None:
    kind = condition.kind
    value = condition.value

    if value is None or value == "" or value == frozenset():
        raise RuleConfigFault(rule.id, f"{kind.value} condition has no value")

    if kind in FIELD_KINDS:
        if condition.operator not in _FIELD_OPERATORS:
            raise RuleConfigFault(
                rule.id,
                f"operator {condition.operator.value!r} is not valid for {kind.value}",
            )
        if _is_number(value):
            raise RuleConfigFault(rule.id, f"{kind.value} condition needs a text value")
        if condition.operator is Operator.IN and not isinstance(value, frozenset):
            raise RuleConfigFault(rule.id, "'in' operator needs a list of values")
    elif kind is ConditionKind.COUNT:
        if condition.operator not in _COUNT_OPERATORS:
            raise RuleConfigFault(
                rule.id,
                f"operator {condition.operator.value!r} is not valid for count",
            )
        if not _is_number(value):
            raise RuleConfigFault(rule.id, "count condition needs a numeric value")
        window = window_seconds(rule, condition)
        if window is None:
            raise RuleConfigFault(rule.id, "count condition has no time window")
        if window <= 0:
            raise RuleConfigFault(rule.id, "count condition time window must be positive")
    elif kind is ConditionKind.TIME_WINDOW:
        if not _is_number(value) or value <= 0:
            raise RuleConfigFault(rule.id, "timeWindow condition needs a positive number of seconds")
    else:
        raise RuleConfigFault(rule.id, f"unsupported condition kind {kind!r}")


def _require(rule: Rule, action: Action, key: str) -> object:
    value = action.config.get(key)
    if value is None or value == "" or value == [] or value == {}:
        raise RuleConfigFault(
            rule.id, f"{action.kind.value} action is missing '{key}'"
        )
    return value


def _validate_action(rule: Rule, action: Action) -> None:
    kind = action.kind
    if kind is ActionKind.BLOCK_IP:
        duration = _require(rule, action, "duration_minutes")
        if not _is_number(duration) or duration <= 0:
            raise RuleConfigFault(rule.id, "block_ip duration_minutes must be a positive number")
    elif kind is ActionKind.NOTIFY:
        channels = _require(rule, action, "channels")
        if isinstance(channels, str) or not all(isinstance(c, str) for c in channels):
            raise RuleConfigFault(rule.id, "notify channels must be a list of names")
    elif kind is ActionKind.REPORT:
        _require(rule, action, "report_type")
    elif kind is ActionKind.CUSTOM_SCRIPT:
        _require(rule, action, "path")
        params = action.config.get("params", {})
        if not isinstance(params, dict):
            raise RuleConfigFault(rule.id, "custom_script params must be an object")
    else:
        raise RuleConfigFault(rule.id, f"unsupported action kind {kind!r}")


def validate_rule(rule: Rule) -> None:
    """Raise ``RuleConfigFault`` if any condition or action is malformed."""
    for condition in rule.conditions:
        _validate_condition(rule, condition)
    for action in rule.actions:
        _validate_action(rule, action)


# ── Evaluation ──────────────────────────────────────────────────────────


def _field_values(kind: ConditionKind, event: ClassifiedEvent) -> tuple[str, ...]:
    if kind is ConditionKind.IP:
        return (event.source_ip,)
    if kind is ConditionKind.EVENT_KIND:
        return (event.event_kind.value, event.event_kind.label)
    return (event.classification.value,)


def field_matches(condition: Condition, event: ClassifiedEvent) -> bool:
    """Evaluate an ip / eventKind / classification condition."""
    candidates = _field_values(condition.kind, event)
    value = condition.value

    if condition.operator is Operator.EQUALS:
        return any(c == value for c in candidates)
    if condition.operator is Operator.IN:
        return any(c in value for c in candidates)
    # CONTAINS: membership for a set value, substring otherwise
    if isinstance(value, frozenset):
        return any(c in value for c in candidates)
    return any(value in c for c in candidates)


def _compare(operator: Operator, observed: int, expected: float) -> bool:
    if operator is Operator.GREATER_THAN:
        return observed > expected
    if operator is Operator.LESS_THAN:
        return observed < expected
    return observed == expected


def count_in_window(
    rule: Rule,
    condition: Condition,
    event: ClassifiedEvent,
    buffer: EventBuffer,
) -> int:
    """Count buffered events in the trailing window matching the rule's field conditions."""
    window = timedelta(seconds=window_seconds(rule, condition) or 0.0)
    filters = [c for c in rule.conditions if c.kind in FIELD_KINDS]

    def _matches(candidate: ClassifiedEvent) -> bool:
        return all(field_matches(c, candidate) for c in filters)

    return buffer.count(
        event.timestamp - window,
        event.timestamp,
        _matches if filters else None,
    )


def condition_matches(
    rule: Rule,
    condition: Condition,
    event: ClassifiedEvent,
    buffer: EventBuffer,
) -> bool:
    kind = condition.kind
    if kind in FIELD_KINDS:
        return field_matches(condition, event)
    if kind is ConditionKind.COUNT:
        observed = count_in_window(rule, condition, event, buffer)
        return _compare(condition.operator, observed, float(condition.value))
    if kind is ConditionKind.TIME_WINDOW:
        return True
    raise RuleConfigFault(rule.id, f"unsupported condition kind {kind!r}")


def rule_matches(rule: Rule, event: ClassifiedEvent, buffer: EventBuffer) -> bool:
    """True iff every condition of ``rule`` holds for ``event``.

    A rule without conditions never matches.
    """
    if not rule.conditions:
        return False
    return all(condition_matches(rule, c, event, buffer) for c in rule.conditions)


def max_window_seconds(rules: Iterable[Rule]) -> float:
    """Largest count window across enabled rules, 0 when there is none."""
    horizon = 0.0
    for rule in rules:
        if not rule.enabled:
            continue
        for condition in rule.conditions:
            if condition.kind is not ConditionKind.COUNT:
                continue
            window = window_seconds(rule, condition)
            if window is not None and window > horizon:
                horizon = window
    return horizon
