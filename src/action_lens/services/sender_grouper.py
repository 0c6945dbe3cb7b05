"""Split flushed batches into same-sender runs and combine each run."""

from __future__ import annotations

from datetime import datetime

import structlog

from action_lens.schemas.message import IncomingMessage

logger = structlog.get_logger(__name__)

OWNER_KEY = "me"
OTHER_PREFIX = "other_"


def grouping_key(message: IncomingMessage) -> str:
    """Identity a message is grouped under.

    Group chats group by display name rather than routing ID, because the
    same participant can show up under more than one routing ID.
    """
    if message.is_group_conversation:
        if message.is_from_owner:
            return OWNER_KEY
        return f"{OTHER_PREFIX}{message.sender_display_name}"
    return message.sender_id


def split_runs(
    batch: list[IncomingMessage],
    gap_seconds: float = 300.0,
) -> list[list[IncomingMessage]]:
    """Partition a batch into ordered, sender-homogeneous runs.

    Args:
        batch: Messages of one (user, conversation) buffer.
        gap_seconds: A gap of at least this long starts a new run.

    Returns:
        Non-empty runs in timestamp order covering every message exactly once.
    """
    runs: list[list[IncomingMessage]] = []
    current: list[IncomingMessage] = []
    current_key: str | None = None

    # sorted() is stable, so equal timestamps keep ingestion order
    for message in sorted(batch, key=lambda m: m.sent_at):
        key = grouping_key(message)
        if current and (key != current_key or message.sent_at - current[-1].sent_at >= gap_seconds):
            runs.append(current)
            current = []
        current.append(message)
        current_key = key

    if current:
        runs.append(current)

    logger.debug("batch_split", messages=len(batch), runs=len(runs))
    return runs


def format_line(message: IncomingMessage) -> str:
    """Timestamp-prefixed line used in a combined body."""
    stamp = datetime.fromtimestamp(message.sent_at).strftime("%H:%M:%S")
    return f"[{stamp}] {message.body}"


def combine(run: list[IncomingMessage]) -> IncomingMessage:
    """Merge a run into the single message that gets classified.

    Args:
        run: Non-empty run from :func:`split_runs`.

    Returns:
        The message itself for a run of one, otherwise a combined message
        carrying the first message's metadata.

    Raises:
        ValueError: If the run is empty.
    """
    if not run:
        raise ValueError("Cannot combine an empty run")
    if len(run) == 1:
        return run[0]

    first = run[0]
    return first.model_copy(
        update={
            "body": "\n".join(format_line(m) for m in run),
            "is_grouped_message": True,
            "message_count": len(run),
            "original_message_ids": tuple(m.id for m in run),
        }
    )
