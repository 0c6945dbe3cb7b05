"""CLI entry point for action-lens.

Usage:
    action-lens replay messages.jsonl --user USER_ID    # Feed a message log through the pipeline
    action-lens replay messages.jsonl --user U --store sql
    action-lens replay messages.jsonl --user U --player-id PLAYER   # Also push accepted actions
    action-lens classify "remind me tomorrow at 3pm"    # Classify one text
    action-lens --help                                  # Show all options
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from action_lens.core.config import ActionLensConfig
from action_lens.core.database import Database
from action_lens.core.logging import configure_structlog
from action_lens.repositories.action import SqlActionStore
from action_lens.repositories.base import ActionStore
from action_lens.repositories.memory import InMemoryActionStore
from action_lens.schemas.action import PersistedAction
from action_lens.schemas.message import IncomingMessage
from action_lens.services.action_emitter import NEW_ACTION_EVENT
from action_lens.services.classification import (
    ClassificationGateway,
    ClassificationRequest,
    OpenAIClassifier,
)
from action_lens.services.fallback_classifier import KeywordClassifier
from action_lens.services.message_grouper import MessageGrouper
from action_lens.services.notifications import LiveEventBus


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Turn chat message bursts into deduplicated, actionable items",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in working directory)",
    )
    parser.add_argument(
        "--console-logs",
        action="store_true",
        help="Render logs for humans instead of JSON",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    replay = subparsers.add_parser("replay", help="Replay a JSONL message log")
    replay.add_argument("file", type=Path, help="JSONL file, one message per line")
    replay.add_argument(
        "--user",
        type=str,
        required=True,
        metavar="USER_ID",
        help="Account the messages were received for",
    )
    replay.add_argument(
        "--store",
        choices=["memory", "sql"],
        default="memory",
        help="Where accepted actions are stored (default: memory)",
    )
    replay.add_argument(
        "--player-id",
        type=str,
        default=None,
        help="OneSignal player ID that receives pushes for accepted actions",
    )

    classify = subparsers.add_parser("classify", help="Classify a single text")
    classify.add_argument("text", type=str, help="Message body")
    classify.add_argument(
        "--owner",
        action="store_true",
        help="Treat the text as sent by the account owner",
    )

    return parser.parse_args(argv)


def load_config(env_file: Path | None) -> ActionLensConfig:
    """Load configuration from the environment and an optional .env file."""
    if env_file is not None:
        return ActionLensConfig(_env_file=env_file)  # type: ignore[call-arg]
    return ActionLensConfig()


def read_messages(path: Path) -> tuple[list[IncomingMessage], list[str]]:
    """Read a JSONL message log.

    Args:
        path: File with one JSON message per line.

    Returns:
        Valid messages and a description of every rejected line.
    """
    messages: list[IncomingMessage] = []
    errors: list[str] = []
    with path.open(encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                messages.append(IncomingMessage.model_validate_json(line))
            except ValidationError as e:
                errors.append(f"line {line_number}: {e.error_count()} validation error(s)")
    return messages, errors


def format_action(action: PersistedAction) -> str:
    """One-line summary of an action."""
    confidence = f"{action.confidence:.2f}" if action.confidence is not None else "-"
    return f"[{action.type}] {action.description} (confidence {confidence}, {action.action_id})"


async def replay_messages(
    config: ActionLensConfig,
    store: ActionStore,
    user_id: str,
    messages: list[IncomingMessage],
    player_id: str | None = None,
) -> list[PersistedAction]:
    """Feed messages through a pipeline and collect the created actions.

    Pushes are sent to ``player_id`` when OneSignal is configured.
    """
    created_ids: list[str] = []

    def collect(event: str, payload: dict[str, Any]) -> None:
        if event == NEW_ACTION_EVENT:
            created_ids.append(payload["action"]["action_id"])

    events = LiveEventBus()
    events.subscribe(user_id, collect)

    async def lookup(_: str) -> str | None:
        return player_id

    player_lookup = lookup if player_id else None
    grouper = MessageGrouper.create(config, store, events=events, player_lookup=player_lookup)
    async with grouper:
        for message in messages:
            await grouper.ingest(user_id, message)

    created: list[PersistedAction] = []
    for action_id in created_ids:
        action = await store.get_action(user_id, action_id)
        if action is not None:
            created.append(action)
    return created


def run_replay(args: argparse.Namespace, config: ActionLensConfig) -> None:
    """Handle the replay command."""
    if not args.file.exists():
        print(f"File not found: {args.file}", file=sys.stderr)
        sys.exit(1)

    messages, errors = read_messages(args.file)
    for error in errors:
        print(f"Skipped {error}", file=sys.stderr)

    async def _replay() -> list[PersistedAction]:
        if args.store == "memory":
            return await replay_messages(
                config, InMemoryActionStore(), args.user, messages, args.player_id
            )

        database = Database(config)
        await database.connect()
        try:
            await database.create_schema()
            return await replay_messages(
                config, SqlActionStore(database), args.user, messages, args.player_id
            )
        finally:
            await database.disconnect()

    created = asyncio.run(_replay())

    print(f"Replayed {len(messages)} messages for {args.user}")
    print(f"Actions created: {len(created)}")
    for action in created:
        print(f"  {format_action(action)}")


def run_classify(args: argparse.Namespace, config: ActionLensConfig) -> None:
    """Handle the classify command."""
    message = IncomingMessage(
        id="cli",
        conversation_id="cli",
        sender_id="cli",
        sender_display_name="cli",
        body=args.text,
        sent_at=0,
        is_from_owner=args.owner,
    )

    async def _classify() -> list[dict[str, object]]:
        primary = None
        if config.has_openai and config.openai_api_key:
            primary = OpenAIClassifier(
                api_key=config.openai_api_key,
                model=config.openai_model,
                base_url=config.openai_base_url,
                timeout=config.classification_timeout_seconds,
            )
        gateway = ClassificationGateway(
            fallback=KeywordClassifier(),
            primary=primary,
            confidence_floor=config.confidence_floor,
            timeout_seconds=config.classification_timeout_seconds,
        )
        try:
            request = ClassificationRequest(message=message, from_owner=args.owner)
            candidates = await gateway.classify(request)
        finally:
            if primary is not None:
                await primary.close()
        return [c.model_dump(mode="json") for c in candidates]

    result = asyncio.run(_classify())
    print(json.dumps(result, indent=2))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)

    try:
        config = load_config(args.env_file)
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_structlog(
        json_format=config.log_json and not args.console_logs,
        log_level=config.log_level,
    )

    if args.command == "replay":
        run_replay(args, config)
    elif args.command == "classify":
        run_classify(args, config)
    else:
        print("Usage: action-lens {replay|classify} ...", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
