"""
ResponseService — the event-driven automated-response daemon.

Wires together classification, stats, rule evaluation and block
enforcement, and runs the background workers that:

  1. Consume raw sensor events from the ingestion queue, in arrival order
  2. Sweep expired blocks on a fixed cadence
  3. Checkpoint rules and blocks to the state store

Can run standalone (``python -m daemon.response_service``) or inside the
FastAPI lifespan (``main.py``).
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from classification.event_classifier import EventClassifier
from config.settings import get_settings
from core.exceptions import PersistenceError
from daemon.worker_manager import WorkerManager
from enforcement.action_dispatcher import ActionDispatcher, ActionSink
from enforcement.block_lifecycle import BlockedAddress, BlockLifecycleManager, Clock
from events.cowrie_streamer import CowrieStreamer
from events.event_models import ClassifiedEvent, RawSensorEvent
from events.event_queue import EventQueue
from memory.state_repository import StateRepository
from monitoring.metrics_collector import MetricsCollector
from monitoring.stats_aggregator import RecentEventWindow, Stats
from rules.default_rules import default_rules
from rules.rule_engine import IngestResult, RuleEngine
from rules.rule_models import Action, Condition, Rule

logger = logging.getLogger(__name__)


class ResponseService:
    """Automated-response core with its background workers.

    Architecture::

        CowrieStreamer / API → EventQueue → consumer worker
                                               ↓
                                        EventClassifier
                                        ↓             ↓
                              RecentEventWindow    RuleEngine
                                                      ↓ (on match)
                                               ActionDispatcher
                                          ↓                    ↓
                              BlockLifecycleManager        ActionSink

    Usage::

        service = ResponseService()
        await service.start()
        service.submit({"eventid": "cowrie.login.failed", "src_ip": "203.0.113.45"})
        await service.stop()
    """

    def __init__(
        self,
        *,
        classifier: EventClassifier | None = None,
        repository: StateRepository | None = None,
        sink: ActionSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = get_settings()

        # ── Ingestion ───────────────────────────────────────────────────
        self._queue: EventQueue[RawSensorEvent] = EventQueue()
        self._streamer = CowrieStreamer(self._queue)
        self._classifier = classifier or EventClassifier()
        self._recent = RecentEventWindow()

        # ── Enforcement ─────────────────────────────────────────────────
        self._blocks = BlockLifecycleManager(clock=clock)
        self._dispatcher = ActionDispatcher(self._blocks, sink)
        self._engine = RuleEngine(action_handler=self._dispatcher.dispatch)

        # ── Persistence & monitoring ────────────────────────────────────
        self._repository = repository or StateRepository()
        self._checkpoint_lock = threading.Lock()
        self._metrics = MetricsCollector()
        self._workers = WorkerManager()
        self._running = False

        self._restore()

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the streamer and background workers."""
        self._running = True
        logger.info("═══ Response service starting ═══")

        await self._streamer.start()
        await self._workers.start_worker("event_consumer", self._consumer_loop)
        await self._workers.start_periodic(
            "block_sweeper",
            self._settings.BLOCK_SWEEP_INTERVAL_SECONDS,
            self.sweep_expired,
        )
        await self._workers.start_periodic(
            "state_checkpoint",
            self._settings.STATE_CHECKPOINT_INTERVAL_SECONDS,
            self.checkpoint,
        )

        logger.info(
            "═══ Response service running — %d rules, %d active blocks ═══",
            len(self._engine.list_rules()),
            len(self._blocks.list_active()),
        )

    async def stop(self) -> None:
        """Stop workers, process anything still queued and checkpoint."""
        logger.info("═══ Response service stopping ═══")
        self._running = False

        await self._streamer.stop()
        await self._workers.stop_all()

        leftovers = self._queue.drain()
        for raw in leftovers:
            self._process_safely(raw)
        if leftovers:
            logger.info("Processed %d events left in the queue", len(leftovers))

        await asyncio.get_running_loop().run_in_executor(None, self.checkpoint)
        logger.info("═══ Response service stopped ═══")

    @property
    def running(self) -> bool:
        return self._running

    # ── Ingestion ───────────────────────────────────────────────────────

    def submit(self, record: dict[str, Any] | RawSensorEvent) -> bool:
        """Queue a raw event for the consumer. Returns False if dropped."""
        raw = record if isinstance(record, RawSensorEvent) else RawSensorEvent.from_dict(record)
        return self._queue.try_put(raw)

    def process(self, record: dict[str, Any] | RawSensorEvent) -> IngestResult:
        """Classify and evaluate one raw event synchronously."""
        raw = record if isinstance(record, RawSensorEvent) else RawSensorEvent.from_dict(record)
        event = self._classifier.classify(raw)
        self._recent.record(event)
        result = self._engine.ingest(event)
        self._metrics.record_event(
            matched_rules=len(result.matched_rule_ids),
            faults=len(result.faults),
        )
        return result

    # ── Rule management ─────────────────────────────────────────────────

    def create_rule(self, rule: Rule) -> Rule:
        created = self._engine.create_rule(rule)
        self.checkpoint()
        return created

    def edit_rule(
        self,
        rule_id: str,
        *,
        conditions: Iterable[Condition] | None = None,
        actions: Iterable[Action] | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> Rule:
        updated = self._engine.edit_rule(
            rule_id,
            conditions=conditions,
            actions=actions,
            name=name,
            description=description,
        )
        self.checkpoint()
        return updated

    def delete_rule(self, rule_id: str) -> Rule:
        removed = self._engine.delete_rule(rule_id)
        self.checkpoint()
        return removed

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> Rule:
        updated = self._engine.set_enabled(rule_id, enabled)
        self.checkpoint()
        return updated

    # ── Blocking ────────────────────────────────────────────────────────

    def unblock(self, ip: str, actor: str) -> BlockedAddress:
        """Manual unblock. The caller has already checked the actor's role."""
        record = self._blocks.unblock(ip, actor=actor)
        self._metrics.record_unblock()
        self.checkpoint()
        return record

    def sweep_expired(self) -> int:
        removed = self._blocks.sweep_expired()
        self._metrics.record_sweep(removed)
        if removed:
            logger.debug("Sweep removed %d expired blocks", removed)
        return removed

    # ── Snapshots ───────────────────────────────────────────────────────

    @property
    def engine(self) -> RuleEngine:
        return self._engine

    @property
    def blocks(self) -> BlockLifecycleManager:
        return self._blocks

    @property
    def dispatcher(self) -> ActionDispatcher:
        return self._dispatcher

    @property
    def streamer(self) -> CowrieStreamer:
        return self._streamer

    def stats(self) -> Stats:
        return self._recent.stats()

    def stats_breakdown(self) -> dict[str, dict[str, int]]:
        return self._recent.breakdown()

    def recent_events(self, limit: int | None = None) -> list[ClassifiedEvent]:
        return self._recent.latest(limit)

    def get_status(self) -> dict[str, Any]:
        """Build a complete status snapshot."""
        queue_metrics = self._queue.metrics()
        return self._metrics.snapshot(
            queue_depth=queue_metrics.current_depth,
            queue_dropped=queue_metrics.dropped,
            blocked_ips=len(self._blocks.list_active()),
            engine_stats=self._engine.get_stats(),
            block_stats=self._blocks.get_stats(),
            dispatcher_stats=self._dispatcher.get_stats(),
            workers=self._workers.get_status(),
        )

    # ── Persistence ─────────────────────────────────────────────────────

    def checkpoint(self) -> bool:
        """Persist rules and active blocks. Returns False if the write failed.

        Callable from any thread; snapshots are taken and written one
        checkpoint at a time so an older snapshot never lands last.
        """
        with self._checkpoint_lock:
            try:
                self._repository.save(self._engine.list_rules(), self._blocks.list_active())
            except PersistenceError as exc:
                logger.error("Checkpoint failed: %s", exc.message)
                return False
        return True

    def _restore(self) -> None:
        if self._repository.exists():
            rules, blocks = self._repository.load()
            self._engine.load_rules(rules)
            self._blocks.restore(blocks)
        elif self._settings.SEED_DEFAULT_RULES:
            self._engine.load_rules(default_rules())
            logger.info("Seeded %d default rules", len(self._engine.list_rules()))

    # ── Background workers ──────────────────────────────────────────────

    async def _consumer_loop(self) -> None:
        """Single consumer — keeps rule evaluation in arrival order."""
        logger.info("Event consumer worker started")

        while self._running:
            try:
                raw = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            self._process_safely(raw)
            self._queue.task_done()

    def _process_safely(self, raw: RawSensorEvent) -> None:
        try:
            self.process(raw)
        except Exception as exc:
            self._metrics.record_error()
            logger.error("Error processing event %s: %s", raw.id, exc)

    # ── Simulate attack (demo) ──────────────────────────────────────────

    async def simulate_brute_force(
        self,
        attacker_ip: str = "203.0.113.45",
        attempts: int = 6,
        spacing_seconds: float = 40.0,
    ) -> bool:
        """Feed a burst of failed SSH logins and report whether the source got blocked."""
        start = datetime.now(timezone.utc) - timedelta(seconds=spacing_seconds * attempts)
        for i in range(attempts):
            self.submit({
                "eventid": "cowrie.login.failed",
                "timestamp": (start + timedelta(seconds=spacing_seconds * i)).isoformat(),
                "src_ip": attacker_ip,
                "message": f"login attempt [root/password{i}] failed",
            })
        while not self._queue.empty:
            await asyncio.sleep(0.05)
        await asyncio.sleep(0.1)

        blocked = self._blocks.is_blocked(attacker_ip)
        logger.info(
            "Simulation: %d failed logins from %s → %s",
            attempts,
            attacker_ip,
            "BLOCKED" if blocked else "not blocked",
        )
        return blocked


# ── CLI entry point ─────────────────────────────────────────────────────

async def _run_daemon(simulate: bool = False) -> None:
    """Run the service standalone."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )

    from daemon.lifecycle import DaemonLifecycle

    service = ResponseService()
    lifecycle = DaemonLifecycle(service)

    if simulate:
        await lifecycle.start()
        await service.simulate_brute_force()
        await lifecycle.stop()
    else:
        await lifecycle.run()


if __name__ == "__main__":
    asyncio.run(_run_daemon(simulate="--simulate" in sys.argv))
