"""
BlockLifecycleManager — in-memory registry of blocked source addresses.

Models only the block / expire / unblock bookkeeping; nothing here touches
the OS firewall. Every block carries a deterministic expiry.

State per address::

    Unblocked → Blocked → (Expired | ManuallyUnblocked) → Unblocked

Mutations are serialized by a lock. After each mutation a read-only
mapping is published, so ``is_blocked`` / ``list_active`` never wait on a
writer; they filter out records that have expired but were not swept yet.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from config.settings import get_settings
from core.exceptions import NotBlockedError, ValidationError
from events.event_models import parse_timestamp

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BlockedAddress:
    """A single active block record."""

    ip: str
    reason: str
    blocked_at: datetime
    expires_at: datetime
    origin_rule_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "reason": self.reason,
            "blocked_at": self.blocked_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "origin_rule_id": self.origin_rule_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlockedAddress:
        return cls(
            ip=str(data["ip"]),
            reason=str(data.get("reason") or ""),
            blocked_at=parse_timestamp(data["blocked_at"]),
            expires_at=parse_timestamp(data["expires_at"]),
            origin_rule_id=data.get("origin_rule_id"),
        )


class BlockLifecycleManager:
    """Owns the set of currently blocked addresses.

    Features:
      - At most one active record per address (re-block replaces)
      - Manual unblock and automatic expiry via ``sweep_expired``
      - Lock-free snapshot reads
      - Bounded audit log

    Usage::

        blocks = BlockLifecycleManager()
        blocks.block("203.0.113.45", reason="brute_force", duration_minutes=60)
        assert blocks.is_blocked("203.0.113.45")
        blocks.unblock("203.0.113.45", actor="admin")
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        audit_limit: int | None = None,
    ) -> None:
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._blocked: dict[str, BlockedAddress] = {}
        self._published: Mapping[str, BlockedAddress] = MappingProxyType({})
        self._audit_log: deque[dict[str, Any]] = deque(
            maxlen=audit_limit or get_settings().BLOCK_AUDIT_LIMIT
        )
        self._total_blocks = 0
        self._total_unblocks = 0
        self._total_expired = 0

    # ── Block / Unblock ─────────────────────────────────────────────────

    def block(
        self,
        ip: str,
        reason: str,
        duration_minutes: float,
        origin_rule_id: str | None = None,
        *,
        at: datetime | None = None,
    ) -> BlockedAddress:
        """Block ``ip`` until ``at + duration_minutes`` (``at`` defaults to now).

        An existing block on the same address is replaced, not stacked.
        """
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, (int, float)):
            raise ValidationError("duration_minutes must be a number")
        if duration_minutes <= 0:
            raise ValidationError(
                f"duration_minutes must be positive, got {duration_minutes}"
            )

        blocked_at = at or self._clock()
        record = BlockedAddress(
            ip=ip,
            reason=reason,
            blocked_at=blocked_at,
            expires_at=blocked_at + timedelta(minutes=duration_minutes),
            origin_rule_id=origin_rule_id,
        )

        with self._lock:
            replaced = ip in self._blocked
            self._blocked[ip] = record
            self._total_blocks += 1
            self._log_action(
                "replaced" if replaced else "blocked",
                ip,
                reason=reason,
                origin_rule_id=origin_rule_id,
                expires_at=record.expires_at.isoformat(),
            )
            self._publish()

        logger.info(
            "BlockLifecycle: BLOCKED %s — reason=%s, expires=%s, rule=%s%s",
            ip,
            reason,
            record.expires_at.isoformat(),
            origin_rule_id or "N/A",
            " (replaced previous block)" if replaced else "",
        )
        return record

    def unblock(self, ip: str, actor: str = "system") -> BlockedAddress:
        """Remove an active block immediately.

        Authorization is the caller's job. Raises ``NotBlockedError`` when
        ``ip`` has no active block.
        """
        now = self._clock()
        with self._lock:
            record = self._blocked.get(ip)
            if record is None:
                raise NotBlockedError(ip)
            if record.is_expired(now):
                self._expire(ip)
                self._publish()
                raise NotBlockedError(ip)

            del self._blocked[ip]
            self._total_unblocks += 1
            self._log_action("unblocked", ip, reason="manual", actor=actor)
            self._publish()

        logger.info("BlockLifecycle: UNBLOCKED %s (manual, by %s)", ip, actor)
        return record

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Remove every block with ``expires_at <= now``. Returns count removed."""
        now = now or self._clock()
        with self._lock:
            expired = [ip for ip, r in self._blocked.items() if r.is_expired(now)]
            for ip in expired:
                self._expire(ip)
            if expired:
                self._publish()
        return len(expired)

    def restore(self, records: Iterable[BlockedAddress]) -> int:
        """Load persisted records, dropping any that already expired."""
        now = self._clock()
        restored = 0
        with self._lock:
            for record in records:
                if record.is_expired(now):
                    continue
                self._blocked[record.ip] = record
                restored += 1
            self._publish()
        if restored:
            logger.info("BlockLifecycle: restored %d active blocks", restored)
        return restored

    # ── Query ───────────────────────────────────────────────────────────

    def is_blocked(self, ip: str) -> bool:
        return self.get(ip) is not None

    def get(self, ip: str) -> BlockedAddress | None:
        """Active record for ``ip``, or ``None``."""
        record = self._published.get(ip)
        if record is None or record.is_expired(self._clock()):
            return None
        return record

    def list_active(self) -> list[BlockedAddress]:
        """Active blocks, soonest expiry first."""
        now = self._clock()
        active = [r for r in self._published.values() if not r.is_expired(now)]
        return sorted(active, key=lambda r: (r.expires_at, r.ip))

    def get_audit_log(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._audit_log)

    def get_stats(self) -> dict[str, Any]:
        return {
            "currently_blocked": len(self.list_active()),
            "total_blocks": self._total_blocks,
            "total_unblocks": self._total_unblocks,
            "total_expired": self._total_expired,
            "audit_log_size": len(self._audit_log),
        }

    # ── Internal ────────────────────────────────────────────────────────

    def _expire(self, ip: str) -> None:
        del self._blocked[ip]
        self._total_expired += 1
        self._log_action("expired", ip, reason="expired")
        logger.info("BlockLifecycle: UNBLOCKED %s (expired)", ip)

    def _publish(self) -> None:
        self._published = MappingProxyType(dict(self._blocked))

    def _log_action(self, action: str, ip: str, **kwargs: Any) -> None:
        """Record an action in the audit log."""
        self._audit_log.append({
            "action": action,
            "ip": ip,
            "timestamp": self._clock().isoformat(),
            **kwargs,
        })
