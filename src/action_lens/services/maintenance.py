"""Periodic cleanup of in-memory pipeline state."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from action_lens.services.buffer import TimeWindowBuffer
from action_lens.services.duplicate_guard import DuplicateGuard
from action_lens.services.history_cache import ConversationHistoryCache
from action_lens.services.topic_tracker import GroupTopicTracker

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    """Counts of what one sweep removed.

    Attributes:
        buffers: Stale buffers dropped.
        history_entries: History cache entries evicted.
        signatures: Signatures trimmed.
        topic_clusters: Topic clusters evicted.
        skipped: Whether the sweep was skipped because another was running.
    """

    buffers: int = 0
    history_entries: int = 0
    signatures: int = 0
    topic_clusters: int = 0
    skipped: bool = False


class MaintenanceSweeper:
    """Runs cleanup on an interval in a background task.

    Sweeps never overlap. A sweep requested while another is running is
    skipped rather than queued.
    """

    def __init__(
        self,
        buffer: TimeWindowBuffer,
        history: ConversationHistoryCache,
        guard: DuplicateGuard,
        topics: GroupTopicTracker,
        interval_seconds: float = 3600,
        stale_buffer_seconds: float = 3600,
        history_window_seconds: float = 24 * 3600,
        topic_timeout_seconds: float = 6 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._buffer = buffer
        self._history = history
        self._guard = guard
        self._topics = topics
        self.interval_seconds = interval_seconds
        self.stale_buffer_seconds = stale_buffer_seconds
        self.history_window_seconds = history_window_seconds
        self.topic_timeout_seconds = topic_timeout_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> SweepResult:
        """Run one sweep unless another is in progress."""
        if self._lock.locked():
            await logger.ainfo("maintenance_sweep_skipped")
            return SweepResult(skipped=True)

        async with self._lock:
            now = self._clock()
            result = SweepResult(
                buffers=self._buffer.evict_stale(now, self.stale_buffer_seconds),
            )
            await asyncio.sleep(0)
            result.history_entries = self._history.evict_older_than(
                now - self.history_window_seconds
            )
            await asyncio.sleep(0)
            result.signatures = self._guard.trim()
            await asyncio.sleep(0)
            result.topic_clusters = self._topics.evict_older_than(now - self.topic_timeout_seconds)

            await logger.ainfo(
                "maintenance_sweep_completed",
                buffers=result.buffers,
                history_entries=result.history_entries,
                signatures=result.signatures,
                topic_clusters=result.topic_clusters,
            )
            return result

    def start(self) -> None:
        """Start the background sweep loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception as e:
                await logger.aexception("maintenance_sweep_failed", error=str(e))
