"""Tests for TimeWindowBuffer."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from action_lens.schemas.message import IncomingMessage
from action_lens.services.buffer import BufferKey, TimeWindowBuffer, is_valid_timestamp

MessageFactory = Callable[..., IncomingMessage]


class TestIsValidTimestamp:
    """Tests for is_valid_timestamp."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(0, True), (1.5, True), (-1.0, False), (float("nan"), False), (float("inf"), False)],
    )
    def test_values(self, value: float, expected: bool) -> None:
        """Test finite non-negative numbers are valid."""
        assert is_valid_timestamp(value) is expected


class TestTimeWindowBuffer:
    """Tests for TimeWindowBuffer."""

    @pytest.mark.asyncio
    async def test_flush_after_delay(self, make_message: MessageFactory) -> None:
        """Test a batch is flushed once the delay expires, in ingestion order."""
        flushed: list[tuple[BufferKey, list[IncomingMessage], float]] = []

        async def on_flush(key: BufferKey, batch: list[IncomingMessage]) -> None:
            flushed.append((key, batch, time.monotonic()))

        buffer = TimeWindowBuffer(on_flush, delay_seconds=0.05, max_size=5)
        first = make_message(body="one")
        second = make_message(body="two")

        started = time.monotonic()
        await buffer.ingest("u1", first)
        await buffer.ingest("u1", second)
        assert flushed == []

        await asyncio.sleep(0.2)
        await buffer.wait_idle()

        assert len(flushed) == 1
        key, batch, flushed_at = flushed[0]
        assert key == BufferKey("u1", "alice@c.us")
        assert batch == [first, second]
        assert flushed_at - started < 0.05 + 0.15
        assert buffer.keys == []

    @pytest.mark.asyncio
    async def test_window_not_extended(self, make_message: MessageFactory) -> None:
        """Test later messages do not push the flush back."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush, delay_seconds=0.2, max_size=5)

        await buffer.ingest("u1", make_message())
        await asyncio.sleep(0.12)
        await buffer.ingest("u1", make_message())
        assert buffer.has_timer("u1", "alice@c.us")
        await asyncio.sleep(0.15)
        await buffer.wait_idle()

        on_flush.assert_awaited_once()
        assert len(on_flush.await_args.args[1]) == 2

    @pytest.mark.asyncio
    async def test_forced_flush_at_max_size(self, make_message: MessageFactory) -> None:
        """Test reaching the max size flushes at once and leaves no timer."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush, delay_seconds=10, max_size=5)

        for _ in range(5):
            await buffer.ingest("u1", make_message())

        on_flush.assert_awaited_once()
        assert len(on_flush.await_args.args[1]) == 5
        assert not buffer.has_timer("u1", "alice@c.us")
        assert buffer.pending("u1", "alice@c.us") == []

        await asyncio.sleep(0.05)
        on_flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_buffers_are_per_conversation(self, make_message: MessageFactory) -> None:
        """Test different senders and users get their own buffers."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush, delay_seconds=10, max_size=5)

        await buffer.ingest("u1", make_message(sender_id="a"))
        await buffer.ingest("u1", make_message(sender_id="b"))
        await buffer.ingest("u2", make_message(sender_id="a"))

        assert set(buffer.keys) == {
            BufferKey("u1", "a"),
            BufferKey("u1", "b"),
            BufferKey("u2", "a"),
        }
        await buffer.close()

    @pytest.mark.asyncio
    async def test_manual_flush(self, make_message: MessageFactory) -> None:
        """Test flush drains the buffer and cancels the timer."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush, delay_seconds=0.05, max_size=5)
        message = make_message()
        await buffer.ingest("u1", message)

        batch = await buffer.flush("u1", "alice@c.us")

        assert batch == [message]
        assert not buffer.has_timer("u1", "alice@c.us")
        await asyncio.sleep(0.1)
        on_flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_flush_empty_is_noop(self) -> None:
        """Test flushing an empty buffer does not call downstream."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush)

        assert await buffer.flush("u1", "nobody") == []
        on_flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ingest_during_flush_starts_fresh_buffer(
        self, make_message: MessageFactory
    ) -> None:
        """Test messages arriving while a batch is processed are not mixed in."""
        release = asyncio.Event()
        batches: list[list[IncomingMessage]] = []

        async def on_flush(key: BufferKey, batch: list[IncomingMessage]) -> None:
            batches.append(batch)
            await release.wait()

        buffer = TimeWindowBuffer(on_flush, delay_seconds=10, max_size=5)
        await buffer.ingest("u1", make_message(body="first"))
        flush_task = asyncio.create_task(buffer.flush("u1", "alice@c.us"))
        await asyncio.sleep(0)

        late = make_message(body="late")
        await buffer.ingest("u1", late)
        release.set()
        await flush_task

        assert [m.body for m in batches[0]] == ["first"]
        assert buffer.pending("u1", "alice@c.us") == [late]
        await buffer.close()

    @pytest.mark.asyncio
    async def test_malformed_message_skipped(self, make_message: MessageFactory) -> None:
        """Test messages with invalid timestamps are dropped."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush, delay_seconds=10)
        valid = make_message()
        malformed = IncomingMessage.model_construct(
            **{**valid.model_dump(), "id": "bad", "sent_at": float("nan")}
        )

        assert await buffer.ingest("u1", malformed) is False
        assert buffer.keys == []

    @pytest.mark.asyncio
    async def test_timer_flush_error_is_contained(self, make_message: MessageFactory) -> None:
        """Test a failing downstream call does not break later flushes."""
        on_flush = AsyncMock(side_effect=[RuntimeError("boom"), None])
        buffer = TimeWindowBuffer(on_flush, delay_seconds=0.02)

        await buffer.ingest("u1", make_message())
        await asyncio.sleep(0.08)
        await buffer.wait_idle()
        await buffer.ingest("u1", make_message())
        await asyncio.sleep(0.08)
        await buffer.wait_idle()

        assert on_flush.await_count == 2

    def test_evict_stale(self, make_message: MessageFactory, base_ts: float) -> None:
        """Test buffers older than the threshold are dropped."""
        buffer = TimeWindowBuffer(AsyncMock())
        buffer._buffers[BufferKey("u1", "old")] = [make_message(sent_at=base_ts)]
        buffer._buffers[BufferKey("u1", "new")] = [make_message(sent_at=base_ts + 3000)]

        evicted = buffer.evict_stale(now=base_ts + 3700, max_age_seconds=3600)

        assert evicted == 1
        assert buffer.keys == [BufferKey("u1", "new")]

    @pytest.mark.asyncio
    async def test_close_flushes_pending(self, make_message: MessageFactory) -> None:
        """Test close can flush what is still buffered."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush, delay_seconds=10)
        await buffer.ingest("u1", make_message())

        await buffer.close(flush_pending=True)

        on_flush.assert_awaited_once()
        assert not buffer.has_timer("u1", "alice@c.us")

    @pytest.mark.asyncio
    async def test_close_discards_pending(self, make_message: MessageFactory) -> None:
        """Test close drops buffered messages by default."""
        on_flush = AsyncMock()
        buffer = TimeWindowBuffer(on_flush, delay_seconds=10)
        await buffer.ingest("u1", make_message())

        await buffer.close()

        on_flush.assert_not_awaited()
        assert buffer.keys == []
