"""
Rule models — automated-response rules, their conditions and actions.

Condition and action kinds are closed enumerations. Models are frozen;
the rule engine replaces a rule with an updated copy when it is toggled,
edited or triggered.

Structural problems (unknown kind or operator, wrong types) are rejected
with ``ValidationError`` when a rule is built from a dict. Missing
configuration values are tolerated here and surface as rule faults at
evaluation time.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from core.exceptions import ValidationError
from events.event_models import ClassifiedEvent, parse_timestamp

ConditionValue = Union[str, float, frozenset, None]


class ConditionKind(str, Enum):
    IP = "ip"
    EVENT_KIND = "eventKind"
    CLASSIFICATION = "classification"
    COUNT = "count"
    TIME_WINDOW = "timeWindow"


class Operator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    IN = "in"


class ActionKind(str, Enum):
    BLOCK_IP = "block_ip"
    NOTIFY = "notify"
    REPORT = "report"
    CUSTOM_SCRIPT = "custom_script"


def _parse_enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {what}: {value!r}. Valid values: {valid}"
        ) from None


def _parse_value(value: Any) -> ConditionValue:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        raise ValidationError("Condition value must be a string, number or list of strings")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        if not all(isinstance(item, str) for item in value):
            raise ValidationError("Condition value lists must contain only strings")
        return frozenset(value)
    raise ValidationError("Condition value must be a string, number or list of strings")


@dataclass(frozen=True)
class Condition:
    """One predicate of a rule. All conditions of a rule must hold."""

    kind: ConditionKind
    operator: Operator
    value: ConditionValue = None
    time_window_seconds: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        window = data.get("time_window_seconds")
        if window is not None:
            if isinstance(window, bool) or not isinstance(window, (int, float)):
                raise ValidationError("time_window_seconds must be a number")
            window = float(window)
        return cls(
            kind=_parse_enum(ConditionKind, data.get("kind"), "condition kind"),
            operator=_parse_enum(Operator, data.get("operator"), "operator"),
            value=_parse_value(data.get("value")),
            time_window_seconds=window,
        )

    def to_dict(self) -> dict[str, Any]:
        value: Any = self.value
        if isinstance(value, frozenset):
            value = sorted(value)
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "operator": self.operator.value,
            "value": value,
        }
        if self.time_window_seconds is not None:
            data["time_window_seconds"] = self.time_window_seconds
        return data


@dataclass(frozen=True)
class Action:
    """One response step. ``config`` is treated as read-only."""

    kind: ActionKind
    config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise ValidationError("Action config must be an object")
        return cls(
            kind=_parse_enum(ActionKind, data.get("kind"), "action kind"),
            config=dict(config),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "config": dict(self.config)}


@dataclass(frozen=True)
class Rule:
    """An automated-response definition (conditions AND-ed, actions ordered)."""

    id: str
    name: str
    description: str = ""
    enabled: bool = True
    conditions: tuple[Condition, ...] = ()
    actions: tuple[Action, ...] = ()
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    last_triggered_at: datetime | None = None
    trigger_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rule:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Rule name is required")

        trigger_count = data.get("trigger_count", 0)
        if not isinstance(trigger_count, int) or trigger_count < 0:
            raise ValidationError("trigger_count must be a non-negative integer")

        created_at = (
            parse_timestamp(data["created_at"])
            if data.get("created_at")
            else datetime.now(timezone.utc)
        )
        last = data.get("last_triggered_at")
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            name=name.strip(),
            description=str(data.get("description") or ""),
            enabled=bool(data.get("enabled", True)),
            conditions=tuple(
                Condition.from_dict(c) for c in data.get("conditions") or []
            ),
            actions=tuple(Action.from_dict(a) for a in data.get("actions") or []),
            created_at=created_at,
            last_triggered_at=parse_timestamp(last) if last else None,
            trigger_count=trigger_count,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "created_at": self.created_at.isoformat(),
            "last_triggered_at": (
                self.last_triggered_at.isoformat() if self.last_triggered_at else None
            ),
            "trigger_count": self.trigger_count,
        }

    def triggered(self, at: datetime) -> Rule:
        """Copy with the trigger counter bumped.

        ``last_triggered_at`` never precedes ``created_at``, even when an
        old event is replayed.
        """
        return replace(
            self,
            trigger_count=self.trigger_count + 1,
            last_triggered_at=max(at, self.created_at),
        )


@dataclass(frozen=True)
class EmittedAction:
    """An action fired by a rule for a specific event."""

    rule_id: str
    rule_name: str
    action: Action
    event: ClassifiedEvent

    @property
    def kind(self) -> ActionKind:
        return self.action.kind

    def to_payload(self) -> dict[str, Any]:
        """Payload handed to external notifier / reporter sinks."""
        return {
            "kind": self.action.kind.value,
            "config": dict(self.action.config),
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "event_id": self.event.id,
            "source_ip": self.event.source_ip,
            "event_kind": self.event.event_kind.value,
            "classification": self.event.classification.value,
            "severity": self.event.severity.value,
            "timestamp": self.event.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TriggerRecord:
    """History entry written whenever a rule fires."""

    rule_id: str
    rule_name: str
    event_id: str
    source_ip: str
    triggered_at: datetime
    action_kinds: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "event_id": self.event_id,
            "source_ip": self.source_ip,
            "triggered_at": self.triggered_at.isoformat(),
            "action_kinds": list(self.action_kinds),
        }


@dataclass(frozen=True)
class RuleFault:
    """A rule skipped for one event because its configuration is malformed."""

    rule_id: str
    rule_name: str
    event_id: str
    reason: str
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "event_id": self.event_id,
            "reason": self.reason,
            "occurred_at": self.occurred_at.isoformat(),
        }
