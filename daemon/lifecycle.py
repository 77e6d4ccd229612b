"""
DaemonLifecycle — runs the response service standalone until signalled.

SIGINT/SIGTERM trigger a graceful stop: the service gets a bounded
amount of time to drain its queue, and the rule set and block table are
checkpointed even when that drain overruns.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from daemon.response_service import ResponseService

logger = logging.getLogger(__name__)

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class DaemonLifecycle:
    """Owns the standalone run of a ``ResponseService``.

    Usage::

        lifecycle = DaemonLifecycle(service)
        await lifecycle.run()
    """

    def __init__(
        self,
        service: ResponseService,
        *,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self._service = service
        self._shutdown_timeout = shutdown_timeout
        self._shutdown_event = asyncio.Event()
        self._installed: list[signal.Signals] = []
        self._started = False

    # ── Public API ──────────────────────────────────────────────────────

    async def run(self) -> None:
        """Start the service and block until a shutdown is requested."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def start(self) -> None:
        self._install_signal_handlers()
        await self._service.start()
        self._started = True

    async def stop(self) -> None:
        """Stop the service within ``shutdown_timeout`` seconds."""
        if not self._started:
            return
        self._started = False
        self._remove_signal_handlers()

        logger.info("DaemonLifecycle: shutting down (timeout=%.1fs)...", self._shutdown_timeout)
        try:
            await asyncio.wait_for(self._service.stop(), timeout=self._shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "DaemonLifecycle: queue drain overran %.1fs, checkpointing current state",
                self._shutdown_timeout,
            )
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._service.checkpoint)

        status = self._service.get_status()
        logger.info(
            "DaemonLifecycle: stopped after %d events, %d rule triggers, %d blocks still active",
            status["total_events_processed"],
            status["rule_triggers"],
            status["blocked_ips"],
        )

    def request_shutdown(self) -> None:
        """Ask ``run()`` to stop (signal handler target)."""
        logger.info("DaemonLifecycle: shutdown requested")
        self._shutdown_event.set()

    # ── Signal handling ────────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            for sig in _STOP_SIGNALS:
                loop.add_signal_handler(sig, self.request_shutdown)
                self._installed.append(sig)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            logger.debug("DaemonLifecycle: signal handlers not supported on this platform")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()
