"""
WorkerManager — supervised background asyncio tasks for the response service.

Runs the ingestion consumer and the periodic block sweep / state
checkpoint jobs. Workers are restarted after a failure (up to a limit)
and cancelled on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

CoroFactory = Callable[[], Coroutine[Any, Any, None]]


@dataclass
class WorkerInfo:
    """Metadata for a managed background worker."""

    name: str
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    restart_count: int = 0
    runs: int = 0
    status: str = "running"
    last_error: str | None = None


class WorkerManager:
    """Manages background asyncio tasks with lifecycle control.

    Usage::

        manager = WorkerManager()
        await manager.start_worker("consumer", consumer_loop)
        await manager.start_periodic("sweeper", 30.0, blocks.sweep_expired)
        await manager.stop_all()
    """

    def __init__(self, *, max_restarts: int = 3, restart_delay: float = 1.0) -> None:
        self._max_restarts = max_restarts
        self._restart_delay = restart_delay
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._workers: dict[str, WorkerInfo] = {}
        self._running = False

    # ── Public API ──────────────────────────────────────────────────────

    async def start_worker(self, name: str, coro_factory: CoroFactory) -> None:
        """Start a named long-running worker.

        Args:
            name: Unique worker name.
            coro_factory: Callable returning a coroutine (called on each start/restart).
        """
        self._running = True
        self._workers[name] = WorkerInfo(name=name)
        self._tasks[name] = asyncio.create_task(
            self._supervised(name, coro_factory),
            name=f"worker-{name}",
        )
        logger.info("WorkerManager: started worker '%s'", name)

    async def start_periodic(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], Any],
    ) -> None:
        """Start a worker that runs a synchronous ``job`` every ``interval_seconds``.

        The job runs in the default executor since it may touch the disk.
        """

        async def _loop() -> None:
            info = self._workers[name]
            while self._running:
                await asyncio.sleep(interval_seconds)
                await asyncio.get_running_loop().run_in_executor(None, job)
                info.runs += 1

        await self.start_worker(name, _loop)

    async def stop_worker(self, name: str) -> None:
        """Cancel a specific worker by name."""
        task = self._tasks.pop(name, None)
        if task and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        if name in self._workers:
            self._workers[name].status = "stopped"

        logger.info("WorkerManager: stopped worker '%s'", name)

    async def stop_all(self) -> None:
        """Stop all running workers."""
        self._running = False
        for name in list(self._tasks.keys()):
            await self.stop_worker(name)
        logger.info("WorkerManager: all workers stopped")

    def get_status(self) -> dict[str, Any]:
        """Return status of all workers."""
        return {
            name: {
                "status": info.status,
                "started_at": info.started_at.isoformat(),
                "restart_count": info.restart_count,
                "runs": info.runs,
                "last_error": info.last_error,
            }
            for name, info in self._workers.items()
        }

    @property
    def running(self) -> bool:
        return self._running

    # ── Supervision ────────────────────────────────────────────────────

    async def _supervised(self, name: str, coro_factory: CoroFactory) -> None:
        """Run a worker with automatic restart on failure."""
        info = self._workers[name]

        while self._running and info.restart_count <= self._max_restarts:
            try:
                info.status = "running"
                await coro_factory()
                info.status = "completed"
                break
            except asyncio.CancelledError:
                info.status = "cancelled"
                break
            except Exception as exc:
                info.restart_count += 1
                info.last_error = str(exc)
                info.status = "restarting"
                logger.error(
                    "WorkerManager: worker '%s' failed (%d/%d): %s",
                    name,
                    info.restart_count,
                    self._max_restarts,
                    exc,
                )
                if info.restart_count > self._max_restarts:
                    info.status = "failed"
                    logger.error("WorkerManager: worker '%s' exceeded max restarts", name)
                    break
                await asyncio.sleep(self._restart_delay)
