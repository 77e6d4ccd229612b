"""
CowrieStreamer — async tailer for Cowrie JSON log files.

Watches the files named in ``COWRIE_LOG_PATHS``, parses each new JSON
line into a ``RawSensorEvent`` and pushes it into the ingestion
``EventQueue``. Lines can also be pushed directly with ``feed_line()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from config.settings import get_settings
from events.event_models import RawSensorEvent
from events.event_queue import EventQueue

logger = logging.getLogger(__name__)


class CowrieStreamer:
    """Streams Cowrie JSON records into an EventQueue.

    Supports:
      - Multiple log files (configured via ``COWRIE_LOG_PATHS``)
      - Log rotation detection (inode tracking) and truncation
      - Skipping malformed lines without stopping the tail
      - Programmatic ``feed_line()`` injection

    Usage::

        streamer = CowrieStreamer(queue)
        await streamer.start()
        streamer.feed_line('{"eventid": "cowrie.login.failed", "src_ip": "203.0.113.45"}')
        await streamer.stop()
    """

    def __init__(
        self,
        queue: EventQueue[RawSensorEvent],
        *,
        poll_interval: float = 0.25,
    ) -> None:
        self._queue = queue
        self._settings = get_settings()
        self._poll_interval = poll_interval
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []
        self._lines_read = 0
        self._malformed = 0

    # ── Public API ──────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start tailing all configured Cowrie log files."""
        self._running = True
        sources = self._parse_sources()

        if not sources:
            logger.info("CowrieStreamer: no log files configured, feed-only mode")
            return

        for source_path, source_name in sources:
            task = asyncio.create_task(
                self._tail_file(source_path, source_name),
                name=f"cowrie-tail-{source_name}",
            )
            self._tasks.append(task)
            logger.info("CowrieStreamer: tailing %s as '%s'", source_path, source_name)

    async def stop(self) -> None:
        """Stop all tailing tasks."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("CowrieStreamer: stopped (%d lines read total)", self._lines_read)

    def feed_line(self, line: str, source: str = "injected") -> bool:
        """Inject one raw JSON line. Malformed lines are counted and skipped."""
        try:
            record = json.loads(line)
            if not isinstance(record, dict):
                raise ValueError(f"expected a JSON object, got {type(record).__name__}")
            event = RawSensorEvent.from_dict(record)
        except (ValueError, TypeError, OverflowError) as exc:
            self._malformed += 1
            logger.debug("CowrieStreamer: skipping malformed line from %s: %s", source, exc)
            return False
        return self._queue.try_put(event)

    @property
    def lines_read(self) -> int:
        return self._lines_read

    @property
    def malformed_lines(self) -> int:
        return self._malformed

    @property
    def running(self) -> bool:
        return self._running

    # ── File tailing ────────────────────────────────────────────────────

    async def _tail_file(self, path: str, source_name: str) -> None:
        """Continuously tail a single log file."""
        last_inode: int | None = None
        last_pos: int = 0

        while self._running:
            try:
                if not os.path.exists(path):
                    await asyncio.sleep(self._poll_interval * 4)
                    continue

                stat = os.stat(path)
                if last_inode is not None and stat.st_ino != last_inode:
                    logger.info("CowrieStreamer: rotation detected for %s", source_name)
                    last_pos = 0
                last_inode = stat.st_ino

                if stat.st_size > last_pos:
                    last_pos = await self._read_new_lines(path, source_name, last_pos)
                elif stat.st_size < last_pos:
                    last_pos = 0

                await asyncio.sleep(self._poll_interval)

            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.warning(
                    "CowrieStreamer: error reading %s: %s (retrying)",
                    source_name,
                    exc,
                )
                await asyncio.sleep(self._poll_interval * 2)

    async def _read_new_lines(self, path: str, source_name: str, start_pos: int) -> int:
        """Read lines appended since ``start_pos``. Returns the new position.

        File I/O runs in an executor to keep the event loop free.
        """
        loop = asyncio.get_running_loop()

        def _read() -> tuple[list[str], int]:
            with open(path, "r", errors="replace") as fh:
                fh.seek(start_pos)
                lines = fh.readlines()
                return lines, fh.tell()

        lines, new_pos = await loop.run_in_executor(None, _read)

        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            self.feed_line(stripped, source=source_name)
            self._lines_read += 1

        return new_pos

    # ── Config parsing ──────────────────────────────────────────────────

    def _parse_sources(self) -> list[tuple[str, str]]:
        """Parse ``COWRIE_LOG_PATHS`` into (path, name) pairs.

        Format: ``path1:name1,path2:name2`` or just ``path1,path2``
        """
        raw = self._settings.COWRIE_LOG_PATHS
        if not raw or not raw.strip():
            return []

        sources: list[tuple[str, str]] = []
        for entry in raw.split(","):
            entry = entry.strip()
            if not entry:
                continue
            if ":" in entry:
                path, name = entry.rsplit(":", 1)
            else:
                path = entry
                name = Path(entry).stem
            sources.append((path.strip(), name.strip()))

        return sources
