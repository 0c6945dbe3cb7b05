"""Per-conversation message buffering with a debounce window.

Messages for the same (user, conversation) are held until either the
batch reaches its maximum size or the delay since the first unflushed
message expires. The window is never extended by later messages, so a
busy conversation is still flushed within the configured delay.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from action_lens.schemas.message import IncomingMessage

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BufferKey:
    """Composite key of a message buffer."""

    user_id: str
    conversation_key: str


FlushHandler = Callable[[BufferKey, list[IncomingMessage]], Awaitable[object]]


def is_valid_timestamp(value: float) -> bool:
    """Check that a message timestamp is a finite, non-negative number."""
    return isinstance(value, int | float) and math.isfinite(value) and value >= 0


class TimeWindowBuffer:
    """Accumulates messages per (user, conversation) and hands batches downstream.

    Draining a buffer is synchronous (no await between taking the messages
    and cancelling the timer), so a timer flush and a size-triggered flush
    can never both process the same messages.

    Example:
        buffer = TimeWindowBuffer(on_flush=pipeline.process_batch, delay_seconds=15)
        await buffer.ingest(user_id, message)
    """

    def __init__(
        self,
        on_flush: FlushHandler,
        delay_seconds: float = 15.0,
        max_size: int = 5,
    ) -> None:
        """Initialize the buffer.

        Args:
            on_flush: Coroutine called with each non-empty drained batch.
            delay_seconds: Time from the first unflushed message to the flush.
            max_size: Batch size that triggers an immediate flush.
        """
        self._on_flush = on_flush
        self.delay_seconds = delay_seconds
        self.max_size = max_size
        self._buffers: dict[BufferKey, list[IncomingMessage]] = {}
        self._timers: dict[BufferKey, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def keys(self) -> list[BufferKey]:
        """Keys with buffered messages."""
        return [key for key, messages in self._buffers.items() if messages]

    def pending(self, user_id: str, conversation_key: str) -> list[IncomingMessage]:
        """Copy of the messages waiting in a buffer."""
        return list(self._buffers.get(BufferKey(user_id, conversation_key), []))

    def has_timer(self, user_id: str, conversation_key: str) -> bool:
        """Check whether a flush timer is pending for a buffer."""
        return BufferKey(user_id, conversation_key) in self._timers

    async def ingest(self, user_id: str, message: IncomingMessage) -> bool:
        """Add a message to its conversation buffer.

        Args:
            user_id: Account the message was received for.
            message: Incoming message.

        Returns:
            True if the message was buffered, False if it was skipped as malformed.
        """
        if not is_valid_timestamp(message.sent_at):
            await logger.awarning(
                "malformed_message_skipped",
                user_id=user_id,
                message_id=message.id,
                sent_at=message.sent_at,
            )
            return False

        key = BufferKey(user_id, message.conversation_key)
        buffer = self._buffers.setdefault(key, [])
        buffer.append(message)

        if len(buffer) >= self.max_size:
            await logger.ainfo(
                "buffer_full_flushing",
                user_id=user_id,
                conversation_key=key.conversation_key,
                size=len(buffer),
            )
            await self._flush_key(key)
            return True

        if key not in self._timers:
            loop = asyncio.get_running_loop()
            self._timers[key] = loop.call_later(self.delay_seconds, self._on_timer, key)

        await logger.adebug(
            "message_buffered",
            user_id=user_id,
            conversation_key=key.conversation_key,
            size=len(buffer),
        )
        return True

    async def flush(self, user_id: str, conversation_key: str) -> list[IncomingMessage]:
        """Drain a buffer and hand its batch downstream.

        Args:
            user_id: Buffer owner.
            conversation_key: Group ID or 1:1 sender ID.

        Returns:
            The drained batch (empty if nothing was pending).
        """
        return await self._flush_key(BufferKey(user_id, conversation_key))

    def drain(self, key: BufferKey) -> list[IncomingMessage]:
        """Atomically take a buffer's messages and cancel its timer."""
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        return self._buffers.pop(key, [])

    def evict_stale(self, now: float, max_age_seconds: float) -> int:
        """Drop buffers whose oldest message is older than ``max_age_seconds``.

        Returns:
            Number of buffers dropped.
        """
        evicted = 0
        for key, messages in list(self._buffers.items()):
            if not messages:
                self.drain(key)
                continue
            oldest = min(m.sent_at for m in messages)
            if now - oldest > max_age_seconds:
                dropped = self.drain(key)
                evicted += 1
                logger.warning(
                    "stale_buffer_evicted",
                    user_id=key.user_id,
                    conversation_key=key.conversation_key,
                    dropped=len(dropped),
                )
        return evicted

    async def wait_idle(self) -> None:
        """Wait for timer-triggered flushes that are already running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, flush_pending: bool = False) -> None:
        """Cancel timers and optionally flush everything still buffered.

        Args:
            flush_pending: Flush remaining buffers instead of discarding them.
        """
        for key in list(self._timers):
            self._timers.pop(key).cancel()

        if flush_pending:
            for key in list(self._buffers):
                await self._flush_key(key)
        else:
            self._buffers.clear()

        await self.wait_idle()

    async def _flush_key(self, key: BufferKey) -> list[IncomingMessage]:
        batch = self.drain(key)
        if not batch:
            return []

        await logger.ainfo(
            "buffer_flushed",
            user_id=key.user_id,
            conversation_key=key.conversation_key,
            size=len(batch),
        )
        await self._on_flush(key, batch)
        return batch

    def _on_timer(self, key: BufferKey) -> None:
        self._timers.pop(key, None)
        task = asyncio.create_task(self._run_timer_flush(key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_timer_flush(self, key: BufferKey) -> None:
        try:
            await self._flush_key(key)
        except Exception as e:
            await logger.aexception(
                "timer_flush_failed",
                user_id=key.user_id,
                conversation_key=key.conversation_key,
                error=str(e),
            )
