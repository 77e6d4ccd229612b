"""
Tests for the ingestion path and the response service.

Covers:
  - Event queue backpressure and drain
  - Cowrie streamer line parsing and file tailing
  - Worker manager supervision
  - End-to-end brute force → block flow
  - Persistence across a service restart
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_service(tmp_path, clock):
    """Factory for services sharing one state file and fake clock."""

    def _make(**kwargs):
        from daemon.response_service import ResponseService
        from memory.state_repository import StateRepository

        kwargs.setdefault("repository", StateRepository(tmp_path / "state.json"))
        kwargs.setdefault("clock", clock)
        return ResponseService(**kwargs)

    return _make


async def _wait_for(predicate, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.02)


# ═════════════════════════════════════════════════════════════════════════
# Event Queue
# ═════════════════════════════════════════════════════════════════════════


class TestEventQueue:
    @pytest.mark.asyncio
    async def test_put_and_get(self):
        from events.event_queue import EventQueue

        queue: EventQueue[str] = EventQueue(max_size=10)
        await queue.put("hello")
        assert await queue.get() == "hello"

    @pytest.mark.asyncio
    async def test_try_put_drops_when_full(self):
        from events.event_queue import EventQueue

        queue: EventQueue[str] = EventQueue(max_size=2)
        assert queue.try_put("a") is True
        assert queue.try_put("b") is True
        assert queue.try_put("c") is False  # dropped

        metrics = queue.metrics()
        assert metrics.dropped == 1
        assert metrics.enqueued == 2
        assert metrics.peak_depth == 2

    @pytest.mark.asyncio
    async def test_drain_returns_items_in_order(self):
        from events.event_queue import EventQueue

        queue: EventQueue[str] = EventQueue(max_size=10)
        for item in ("a", "b", "c"):
            queue.try_put(item)
        assert queue.drain() == ["a", "b", "c"]
        assert queue.empty


# ═════════════════════════════════════════════════════════════════════════
# Cowrie Streamer
# ═════════════════════════════════════════════════════════════════════════


class TestCowrieStreamer:
    @pytest.mark.asyncio
    async def test_feed_line_parses_json(self, cowrie_record):
        from events.cowrie_streamer import CowrieStreamer
        from events.event_queue import EventQueue

        queue = EventQueue(max_size=10)
        streamer = CowrieStreamer(queue)
        assert streamer.feed_line(json.dumps(cowrie_record()))
        raw = await queue.get()
        assert raw.event_id == "cowrie.login.failed"
        assert raw.timestamp == T0

    @pytest.mark.asyncio
    async def test_malformed_lines_are_counted(self):
        from events.cowrie_streamer import CowrieStreamer
        from events.event_queue import EventQueue

        queue = EventQueue(max_size=10)
        streamer = CowrieStreamer(queue)
        assert streamer.feed_line("not json") is False
        assert streamer.feed_line("[1, 2]") is False
        assert streamer.malformed_lines == 2
        assert queue.empty

    @pytest.mark.asyncio
    async def test_tails_configured_file(self, tmp_path, monkeypatch, cowrie_record):
        from config.settings import get_settings
        from events.cowrie_streamer import CowrieStreamer
        from events.event_queue import EventQueue

        log_path = tmp_path / "cowrie.json"
        log_path.write_text("")
        monkeypatch.setenv("COWRIE_LOG_PATHS", f"{log_path}:honeypot")
        get_settings.cache_clear()

        queue = EventQueue(max_size=10)
        streamer = CowrieStreamer(queue, poll_interval=0.02)
        await streamer.start()
        try:
            with log_path.open("a") as fh:
                fh.write(json.dumps(cowrie_record()) + "\n")
                fh.write("garbage\n")
            await _wait_for(lambda: streamer.lines_read == 2)
        finally:
            await streamer.stop()

        assert queue.depth == 1
        assert streamer.malformed_lines == 1

    @pytest.mark.asyncio
    async def test_unparseable_record_does_not_replay_chunk(
        self, tmp_path, monkeypatch, cowrie_record
    ):
        from config.settings import get_settings
        from events.cowrie_streamer import CowrieStreamer
        from events.event_models import RawSensorEvent
        from events.event_queue import EventQueue

        original = RawSensorEvent.from_dict

        def _from_dict(record):
            if record.get("eventid") == "cowrie.broken":
                raise ValueError("unusable record")
            return original(record)

        monkeypatch.setattr(RawSensorEvent, "from_dict", _from_dict)

        log_path = tmp_path / "cowrie.json"
        log_path.write_text("")
        monkeypatch.setenv("COWRIE_LOG_PATHS", f"{log_path}:honeypot")
        get_settings.cache_clear()

        queue = EventQueue(max_size=100)
        streamer = CowrieStreamer(queue, poll_interval=0.01)
        await streamer.start()
        try:
            with log_path.open("a") as fh:
                fh.write(json.dumps(cowrie_record()) + "\n")
                fh.write(json.dumps(cowrie_record("cowrie.broken")) + "\n")
            await _wait_for(lambda: streamer.lines_read == 2)
            await asyncio.sleep(0.2)
        finally:
            await streamer.stop()

        assert queue.depth == 1
        assert streamer.lines_read == 2
        assert streamer.malformed_lines == 1


# ═════════════════════════════════════════════════════════════════════════
# Worker Manager
# ═════════════════════════════════════════════════════════════════════════


class TestWorkerManager:
    @pytest.mark.asyncio
    async def test_periodic_job_runs(self):
        from daemon.worker_manager import WorkerManager

        calls = []
        manager = WorkerManager()
        await manager.start_periodic("tick", 0.01, lambda: calls.append(1))
        await _wait_for(lambda: len(calls) >= 3)
        await manager.stop_all()

        status = manager.get_status()["tick"]
        assert status["status"] == "stopped"
        assert status["runs"] >= 3

    @pytest.mark.asyncio
    async def test_periodic_job_runs_in_executor(self):
        import threading

        from daemon.worker_manager import WorkerManager

        threads = []
        manager = WorkerManager()
        await manager.start_periodic("tick", 0.01, lambda: threads.append(threading.get_ident()))
        await _wait_for(lambda: len(threads) >= 2)
        await manager.stop_all()

        assert threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_failed_worker_is_restarted(self):
        from daemon.worker_manager import WorkerManager

        attempts = []

        async def _flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise RuntimeError("boom")
            await asyncio.sleep(10)

        manager = WorkerManager(max_restarts=3, restart_delay=0.01)
        await manager.start_worker("flaky", _flaky)
        await _wait_for(lambda: len(attempts) == 3)
        status = manager.get_status()["flaky"]
        await manager.stop_all()

        assert status["restart_count"] == 2
        assert status["last_error"] == "boom"


# ═════════════════════════════════════════════════════════════════════════
# Response Service
# ═════════════════════════════════════════════════════════════════════════


class TestResponseService:
    def test_seeds_default_rules_on_first_start(self, make_service):
        service = make_service()
        ids = [r.id for r in service.engine.list_rules()]
        assert ids == ["brute-force-protection", "sql-injection-alert"]

    def test_no_seed_when_disabled(self, make_service, monkeypatch):
        from config.settings import get_settings

        monkeypatch.setenv("SEED_DEFAULT_RULES", "false")
        get_settings.cache_clear()
        assert make_service().engine.list_rules() == []

    def test_brute_force_end_to_end(self, make_service, clock, cowrie_record):
        service = make_service()

        # 6 failed logins within 4 minutes
        results = [
            service.process(cowrie_record("cowrie.login.failed", seconds=i * 40))
            for i in range(6)
        ]
        clock.now = T0 + timedelta(seconds=200)

        assert [r.matched for r in results] == [False] * 5 + [True]
        assert service.blocks.is_blocked("203.0.113.45")
        block = service.blocks.get("203.0.113.45")
        assert block.expires_at == T0 + timedelta(seconds=200, minutes=60)
        assert block.origin_rule_id == "brute-force-protection"
        assert service.engine.get_rule("brute-force-protection").trigger_count == 1

        outbox = service.dispatcher.sink.outbox()
        assert [p["kind"] for p in outbox] == ["notify"]
        assert outbox[0]["config"] == {"channels": ["telegram", "email"]}

        stats = service.stats()
        assert stats.total_logs == 6
        assert stats.malicious_count == 6
        assert stats.accuracy == 0

    def test_block_expires_after_duration(self, make_service, clock, cowrie_record):
        service = make_service()
        for i in range(6):
            service.process(cowrie_record(seconds=i * 40))

        clock.now = T0 + timedelta(seconds=200, minutes=60)
        assert not service.blocks.is_blocked("203.0.113.45")
        assert service.sweep_expired() == 1

    def test_unblock(self, make_service, clock, cowrie_record):
        from core.exceptions import NotBlockedError

        service = make_service()
        for i in range(6):
            service.process(cowrie_record(seconds=i * 40))

        service.unblock("203.0.113.45", actor="analyst")
        assert not service.blocks.is_blocked("203.0.113.45")
        with pytest.raises(NotBlockedError):
            service.unblock("203.0.113.45", actor="analyst")
        assert service.get_status()["manual_unblocks"] == 1

    def test_disable_keeps_existing_block(self, make_service, cowrie_record):
        service = make_service()
        for i in range(6):
            service.process(cowrie_record(seconds=i * 40))

        service.set_rule_enabled("brute-force-protection", False)
        result = service.process(cowrie_record(seconds=250))

        assert not result.matched
        assert service.blocks.is_blocked("203.0.113.45")
        assert service.engine.get_rule("brute-force-protection").trigger_count == 1

    def test_state_survives_restart(self, make_service, cowrie_record):
        from rules.rule_models import Rule

        first = make_service()
        first.create_rule(Rule.from_dict({
            "id": "port-scan",
            "name": "Port scan watch",
            "conditions": [{"kind": "eventKind", "operator": "equals", "value": "PortScan"}],
            "actions": [{"kind": "report", "config": {"report_type": "scan"}}],
        }))
        for i in range(6):
            first.process(cowrie_record(seconds=i * 40))
        assert first.checkpoint() is True

        second = make_service()
        ids = [r.id for r in second.engine.list_rules()]
        assert ids == ["brute-force-protection", "sql-injection-alert", "port-scan"]
        assert second.engine.get_rule("brute-force-protection").trigger_count == 1
        assert second.blocks.is_blocked("203.0.113.45")

    def test_deleted_rules_stay_deleted_after_restart(self, make_service):
        first = make_service()
        first.delete_rule("sql-injection-alert")

        second = make_service()
        assert [r.id for r in second.engine.list_rules()] == ["brute-force-protection"]

    @pytest.mark.parametrize(
        "content",
        [
            "[]",
            json.dumps({"rules": [{"id": "dup", "name": "A"}, {"id": "dup", "name": "B"}]}),
            json.dumps({"rules": [{"id": "r", "name": "R", "conditions": [1]}], "blocks": [2]}),
        ],
    )
    def test_starts_from_damaged_state_file(self, make_service, tmp_path, content):
        (tmp_path / "state.json").write_text(content)

        service = make_service()
        assert len({r.id for r in service.engine.list_rules()}) == len(service.engine.list_rules())
        assert service.blocks.list_active() == []
        assert service.checkpoint() is True

    def test_queue_backpressure(self, make_service, monkeypatch, cowrie_record):
        from config.settings import get_settings

        monkeypatch.setenv("EVENT_QUEUE_MAX_SIZE", "3")
        get_settings.cache_clear()
        service = make_service()

        accepted = [service.submit(cowrie_record(seconds=i)) for i in range(5)]
        assert accepted == [True, True, True, False, False]
        assert service.get_status()["queue_dropped"] == 2

    @pytest.mark.asyncio
    async def test_consumer_processes_queued_events(self, make_service, clock, cowrie_record):
        service = make_service()
        await service.start()
        try:
            for i in range(6):
                assert service.submit(cowrie_record(seconds=i * 40))
            await _wait_for(lambda: service.get_status()["total_events_processed"] == 6)
        finally:
            await service.stop()

        clock.now = T0 + timedelta(seconds=200)
        assert service.blocks.is_blocked("203.0.113.45")
        assert not service.running
        status = service.get_status()
        assert set(status["components"]["workers"]) == {
            "event_consumer",
            "block_sweeper",
            "state_checkpoint",
        }

    @pytest.mark.asyncio
    async def test_stop_processes_leftovers_and_checkpoints(self, make_service, cowrie_record):
        service = make_service()
        for i in range(6):
            service.submit(cowrie_record(seconds=i * 40))

        await service.stop()

        assert service.get_status()["total_events_processed"] == 6
        restored = make_service()
        assert restored.blocks.is_blocked("203.0.113.45")

    @pytest.mark.asyncio
    async def test_simulated_brute_force_blocks_attacker(self, tmp_path):
        from daemon.response_service import ResponseService
        from memory.state_repository import StateRepository

        service = ResponseService(repository=StateRepository(tmp_path / "sim.json"))
        await service.start()
        try:
            assert await service.simulate_brute_force() is True
        finally:
            await service.stop()


# ═════════════════════════════════════════════════════════════════════════
# Daemon Lifecycle
# ═════════════════════════════════════════════════════════════════════════


class TestDaemonLifecycle:
    @pytest.mark.asyncio
    async def test_run_until_shutdown_requested(self, make_service, cowrie_record):
        from daemon.lifecycle import DaemonLifecycle

        service = make_service()
        lifecycle = DaemonLifecycle(service, shutdown_timeout=5.0)
        runner = asyncio.create_task(lifecycle.run())
        await _wait_for(lambda: service.running)

        for i in range(6):
            service.submit(cowrie_record(seconds=i * 40))
        lifecycle.request_shutdown()
        await asyncio.wait_for(runner, timeout=5.0)

        assert not service.running
        assert service.get_status()["total_events_processed"] == 6
        assert make_service().blocks.is_blocked("203.0.113.45")

    @pytest.mark.asyncio
    async def test_overrun_drain_still_checkpoints(self, make_service, monkeypatch, cowrie_record):
        from daemon.lifecycle import DaemonLifecycle
        from daemon.response_service import ResponseService

        service = make_service()
        lifecycle = DaemonLifecycle(service, shutdown_timeout=0.05)
        await lifecycle.start()
        for i in range(6):
            service.process(cowrie_record(seconds=i * 40))

        async def _stuck_stop():
            await asyncio.sleep(10)

        monkeypatch.setattr(service, "stop", _stuck_stop)
        try:
            await lifecycle.stop()
            assert make_service().blocks.is_blocked("203.0.113.45")
        finally:
            await ResponseService.stop(service)
