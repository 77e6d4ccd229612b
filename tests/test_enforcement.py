"""
Tests for the block lifecycle, action dispatch and state persistence.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def blocks(clock):
    from enforcement.block_lifecycle import BlockLifecycleManager

    return BlockLifecycleManager(clock=clock)


# ═════════════════════════════════════════════════════════════════════════
# Block lifecycle
# ═════════════════════════════════════════════════════════════════════════


class TestBlockLifecycle:
    def test_block_and_check(self, blocks):
        record = blocks.block("10.0.0.1", reason="test", duration_minutes=60)
        assert blocks.is_blocked("10.0.0.1")
        assert record.expires_at == T0 + timedelta(minutes=60)
        assert blocks.get("10.0.0.1") == record

    def test_unrelated_address_not_blocked(self, blocks):
        blocks.block("10.0.0.1", reason="test", duration_minutes=5)
        assert not blocks.is_blocked("10.0.0.2")

    def test_block_at_explicit_time(self, blocks):
        at = T0 - timedelta(minutes=10)
        record = blocks.block("10.0.0.1", reason="rule", duration_minutes=60, at=at)
        assert record.blocked_at == at
        assert record.expires_at == at + timedelta(minutes=60)

    def test_expired_block_hidden_before_sweep(self, blocks, clock):
        blocks.block("10.0.0.1", reason="test", duration_minutes=1)
        clock.advance(minutes=1)
        assert not blocks.is_blocked("10.0.0.1")
        assert blocks.list_active() == []

    def test_sweep_removes_expired(self, blocks, clock):
        blocks.block("10.0.0.1", reason="short", duration_minutes=1)
        blocks.block("10.0.0.2", reason="long", duration_minutes=60)
        clock.advance(minutes=2)

        assert blocks.sweep_expired() == 1
        assert blocks.sweep_expired() == 0
        assert [r.ip for r in blocks.list_active()] == ["10.0.0.2"]
        assert blocks.get_stats()["total_expired"] == 1

    def test_reblock_replaces(self, blocks, clock):
        blocks.block("10.0.0.1", reason="first", duration_minutes=10)
        clock.advance(minutes=5)
        second = blocks.block("10.0.0.1", reason="second", duration_minutes=10)

        active = blocks.list_active()
        assert len(active) == 1
        assert active[0] == second
        assert active[0].expires_at == T0 + timedelta(minutes=15)
        assert blocks.get_audit_log()[-1]["action"] == "replaced"

    def test_unblock(self, blocks):
        blocks.block("10.0.0.1", reason="test", duration_minutes=10)
        removed = blocks.unblock("10.0.0.1", actor="analyst")
        assert removed.ip == "10.0.0.1"
        assert not blocks.is_blocked("10.0.0.1")
        assert blocks.get_audit_log()[-1]["actor"] == "analyst"

    def test_unblock_unknown_raises(self, blocks):
        from core.exceptions import NotBlockedError

        with pytest.raises(NotBlockedError):
            blocks.unblock("10.0.0.1")

    def test_unblock_expired_raises_and_removes(self, blocks, clock):
        from core.exceptions import NotBlockedError

        blocks.block("10.0.0.1", reason="test", duration_minutes=1)
        clock.advance(minutes=3)
        with pytest.raises(NotBlockedError):
            blocks.unblock("10.0.0.1")
        assert blocks.sweep_expired() == 0
        assert blocks.get_stats()["total_expired"] == 1

    @pytest.mark.parametrize("duration", [0, -5, "60", True])
    def test_invalid_duration_rejected(self, blocks, duration):
        from core.exceptions import ValidationError

        with pytest.raises(ValidationError):
            blocks.block("10.0.0.1", reason="bad", duration_minutes=duration)
        assert not blocks.is_blocked("10.0.0.1")

    def test_list_active_sorted_by_expiry(self, blocks):
        blocks.block("10.0.0.3", reason="r", duration_minutes=30)
        blocks.block("10.0.0.1", reason="r", duration_minutes=90)
        blocks.block("10.0.0.2", reason="r", duration_minutes=10)
        assert [r.ip for r in blocks.list_active()] == ["10.0.0.2", "10.0.0.3", "10.0.0.1"]

    def test_restore_drops_expired(self, blocks):
        from enforcement.block_lifecycle import BlockedAddress

        live = BlockedAddress("10.0.0.1", "r", T0, T0 + timedelta(minutes=5))
        stale = BlockedAddress("10.0.0.2", "r", T0 - timedelta(hours=2), T0 - timedelta(hours=1))
        assert blocks.restore([live, stale]) == 1
        assert blocks.is_blocked("10.0.0.1")
        assert not blocks.is_blocked("10.0.0.2")

    def test_record_dict_round_trip(self):
        from enforcement.block_lifecycle import BlockedAddress

        record = BlockedAddress("10.0.0.1", "r", T0, T0 + timedelta(minutes=5), "bf")
        assert BlockedAddress.from_dict(record.to_dict()) == record


# ═════════════════════════════════════════════════════════════════════════
# Action dispatcher
# ═════════════════════════════════════════════════════════════════════════


def _emitted(make_event, kind: str, config: dict, seconds: float = 0):
    from rules.rule_models import Action, ActionKind, EmittedAction

    return EmittedAction(
        rule_id="bf",
        rule_name="Brute Force Protection",
        action=Action(ActionKind(kind), config),
        event=make_event(seconds),
    )


class TestActionDispatcher:
    def test_block_ip_uses_event_time(self, blocks, make_event):
        from enforcement.action_dispatcher import ActionDispatcher

        dispatcher = ActionDispatcher(blocks)
        record = dispatcher.dispatch(
            _emitted(make_event, "block_ip", {"duration_minutes": 60}, seconds=200)
        )

        assert record["success"] is True
        blocked = blocks.get("203.0.113.45")
        assert blocked.expires_at == T0 + timedelta(seconds=200, minutes=60)
        assert blocked.origin_rule_id == "bf"
        assert blocked.reason == "Automated response: Brute Force Protection"

    def test_other_kinds_go_to_sink(self, blocks, make_event):
        from enforcement.action_dispatcher import ActionDispatcher, LoggingActionSink

        sink = LoggingActionSink()
        dispatcher = ActionDispatcher(blocks, sink)
        dispatcher.dispatch(_emitted(make_event, "notify", {"channels": ["telegram"]}))
        dispatcher.dispatch(_emitted(make_event, "report", {"report_type": "incident"}))

        assert [p["kind"] for p in sink.outbox()] == ["notify", "report"]
        assert blocks.list_active() == []
        assert dispatcher.get_stats()["dispatched"]["notify"] == 1

    def test_sink_failure_is_contained(self, blocks, make_event):
        from enforcement.action_dispatcher import ActionDispatcher

        class BrokenSink:
            def deliver(self, emitted):
                raise ConnectionError("telegram unreachable")

        dispatcher = ActionDispatcher(blocks, BrokenSink())
        record = dispatcher.dispatch(_emitted(make_event, "notify", {"channels": ["telegram"]}))

        assert record["success"] is False
        assert "unreachable" in record["error"]
        assert dispatcher.get_stats()["failures"] == 1


# ═════════════════════════════════════════════════════════════════════════
# State repository
# ═════════════════════════════════════════════════════════════════════════


class TestStateRepository:
    def test_missing_file_loads_empty(self, tmp_path):
        from memory.state_repository import StateRepository

        repo = StateRepository(tmp_path / "none.json")
        assert not repo.exists()
        assert repo.load() == ([], [])

    def test_save_and_load(self, tmp_path):
        from enforcement.block_lifecycle import BlockedAddress
        from memory.state_repository import StateRepository
        from rules.default_rules import default_rules

        repo = StateRepository(tmp_path / "state.json")
        block = BlockedAddress("10.0.0.1", "r", T0, T0 + timedelta(minutes=5), "bf")
        repo.save(default_rules(), [block])

        rules, blocks = repo.load()
        assert [r.id for r in rules] == ["brute-force-protection", "sql-injection-alert"]
        assert blocks == [block]
        assert repo.saves == 1

    def test_corrupt_file_ignored(self, tmp_path):
        from memory.state_repository import StateRepository

        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert StateRepository(path).load() == ([], [])

    def test_bad_entries_skipped(self, tmp_path):
        from memory.state_repository import StateRepository

        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "version": 1,
            "rules": [{"id": "nameless"}, {"id": "ok", "name": "OK"}],
            "blocks": [{"reason": "no ip"}],
        }))
        rules, blocks = StateRepository(path).load()
        assert [r.id for r in rules] == ["ok"]
        assert blocks == []

    @pytest.mark.parametrize("document", ["[]", '"state"', "42", "null"])
    def test_non_object_document_ignored(self, tmp_path, document):
        from memory.state_repository import StateRepository

        path = tmp_path / "state.json"
        path.write_text(document)
        assert StateRepository(path).load() == ([], [])

    def test_malformed_and_duplicate_entries_skipped(self, tmp_path):
        from memory.state_repository import StateRepository

        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "version": 1,
            "rules": [
                "not-a-rule",
                {"id": "bad-conditions", "name": "Bad", "conditions": ["ip"]},
                {"id": "bad-actions", "name": "Bad", "actions": 7},
                {"id": "ok", "name": "OK"},
                {"id": "ok", "name": "Second copy"},
            ],
            "blocks": [
                ["10.0.0.1"],
                {"ip": "10.0.0.2", "blocked_at": "2026-03-01T12:00:00Z"},
            ],
        }))
        rules, blocks = StateRepository(path).load()
        assert [(r.id, r.name) for r in rules] == [("ok", "OK")]
        assert blocks == []

    def test_non_list_sections_ignored(self, tmp_path):
        from memory.state_repository import StateRepository

        path = tmp_path / "state.json"
        path.write_text(json.dumps({"rules": {"id": "x", "name": "X"}, "blocks": "none"}))
        assert StateRepository(path).load() == ([], [])

    def test_unwritable_path_raises(self, tmp_path):
        from core.exceptions import PersistenceError
        from memory.state_repository import StateRepository

        blocker = tmp_path / "file"
        blocker.write_text("x")
        repo = StateRepository(blocker / "state.json")
        with pytest.raises(PersistenceError):
            repo.save([], [])


# ═════════════════════════════════════════════════════════════════════════
# Concurrent callers
# ═════════════════════════════════════════════════════════════════════════


class TestBlockLifecycleConcurrency:
    def test_parallel_block_unblock_sweep(self, clock):
        from concurrent.futures import ThreadPoolExecutor

        from core.exceptions import NotBlockedError
        from enforcement.block_lifecycle import BlockLifecycleManager

        blocks = BlockLifecycleManager(clock=clock, audit_limit=100_000)
        ips = [f"10.0.0.{n}" for n in range(8)]
        stale = T0 - timedelta(minutes=5)

        def _worker(worker: int) -> tuple[int, int]:
            block_calls = unblocked = 0
            for step in range(200):
                ip = ips[(worker + step) % len(ips)]
                op = step % 4
                if op == 0:
                    blocks.block(ip, reason="live", duration_minutes=60)
                    block_calls += 1
                elif op == 1:
                    # already expired when written, left for the sweeper
                    blocks.block(ip, reason="stale", duration_minutes=1, at=stale)
                    block_calls += 1
                elif op == 2:
                    try:
                        blocks.unblock(ip, actor=f"worker-{worker}")
                        unblocked += 1
                    except NotBlockedError:
                        pass
                else:
                    blocks.sweep_expired()
                    blocks.list_active()
                    blocks.is_blocked(ip)
            return block_calls, unblocked

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(_worker, range(8)))

        blocks.sweep_expired()
        total_block_calls = sum(r[0] for r in results)
        total_unblocked = sum(r[1] for r in results)

        active = blocks.list_active()
        assert len({r.ip for r in active}) == len(active)
        assert all(r.reason == "live" for r in active)

        stats = blocks.get_stats()
        replaced = sum(1 for e in blocks.get_audit_log() if e["action"] == "replaced")
        assert stats["total_blocks"] == total_block_calls
        assert stats["total_unblocks"] == total_unblocked
        assert stats["total_blocks"] == (
            replaced + stats["total_unblocks"] + stats["total_expired"] + len(active)
        )
