"""
ActionDispatcher — routes rule actions to their handlers.

``block_ip`` actions go to the ``BlockLifecycleManager``; ``notify``,
``report`` and ``custom_script`` go to an external ``ActionSink``.
Delivery guarantees belong to the sink; a failing sink is logged and
counted, never raised back into rule evaluation.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Protocol

from enforcement.block_lifecycle import BlockLifecycleManager
from rules.rule_models import ActionKind, EmittedAction

logger = logging.getLogger(__name__)


class ActionSink(Protocol):
    """External notifier / reporter contract."""

    def deliver(self, emitted: EmittedAction) -> None:
        ...


class LoggingActionSink:
    """Default sink: logs each payload and keeps a bounded outbox.

    Dashboards and report jobs poll ``outbox()`` in place of a real
    notifier integration.
    """

    def __init__(self, max_items: int = 500) -> None:
        self._outbox: deque[dict[str, Any]] = deque(maxlen=max_items)

    def deliver(self, emitted: EmittedAction) -> None:
        payload = emitted.to_payload()
        self._outbox.append(payload)
        logger.info(
            "ActionSink: %s from rule '%s' for %s — config=%s",
            payload["kind"],
            payload["rule_name"],
            payload["source_ip"],
            payload["config"],
        )

    def outbox(self) -> list[dict[str, Any]]:
        return list(self._outbox)


class ActionDispatcher:
    """Executes emitted actions in the order the rule engine fires them.

    Usage::

        dispatcher = ActionDispatcher(blocks, sink)
        engine = RuleEngine(action_handler=dispatcher.dispatch)
    """

    def __init__(
        self,
        blocks: BlockLifecycleManager,
        sink: ActionSink | None = None,
    ) -> None:
        self._blocks = blocks
        self._sink = sink or LoggingActionSink()
        self._dispatched: dict[str, int] = {kind.value: 0 for kind in ActionKind}
        self._failures = 0

    @property
    def sink(self) -> ActionSink:
        return self._sink

    def dispatch(self, emitted: EmittedAction) -> dict[str, Any]:
        """Execute one action. Returns an enforcement record."""
        kind = emitted.action.kind
        record: dict[str, Any] = {
            "action": kind.value,
            "rule_id": emitted.rule_id,
            "target": emitted.event.source_ip,
            "event_id": emitted.event.id,
        }

        try:
            if kind is ActionKind.BLOCK_IP:
                blocked = self._blocks.block(
                    emitted.event.source_ip,
                    reason=f"Automated response: {emitted.rule_name}",
                    duration_minutes=emitted.action.config["duration_minutes"],
                    origin_rule_id=emitted.rule_id,
                    at=emitted.event.timestamp,
                )
                record["expires_at"] = blocked.expires_at.isoformat()
            else:
                self._sink.deliver(emitted)
        except Exception as exc:
            # failures stay local to this action
            self._failures += 1
            record["success"] = False
            record["error"] = str(exc)
            logger.error(
                "ActionDispatcher: %s for rule %s failed: %s",
                kind.value,
                emitted.rule_id,
                exc,
            )
            return record

        self._dispatched[kind.value] += 1
        record["success"] = True
        return record

    def get_stats(self) -> dict[str, Any]:
        return {
            "dispatched": dict(self._dispatched),
            "failures": self._failures,
        }
