"""Message pipeline: buffering, run splitting, classification and emission.

Flow for every flushed batch:
1. Split the batch into same-sender runs and combine each run.
2. Skip runs whose messages already produced an action.
3. For group conversations, skip runs about a topic that is already covered.
4. Load sender-scoped history and classify the combined message.
5. Drop duplicate candidates, then persist and announce the rest.
6. Record signatures, history and topics of what was accepted.

A failure in one run is logged and never stops the other runs.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from action_lens.core.config import ActionLensConfig, get_config
from action_lens.repositories.base import ActionStore, DuplicateActionError, SenderScope
from action_lens.schemas.action import (
    CandidateAction,
    ConversationHistoryEntry,
    PersistedAction,
)
from action_lens.schemas.message import IncomingMessage
from action_lens.services.action_emitter import ActionEmitter
from action_lens.services.buffer import BufferKey, TimeWindowBuffer
from action_lens.services.classification import (
    ActionClassifier,
    ClassificationGateway,
    ClassificationRequest,
    OpenAIClassifier,
)
from action_lens.services.duplicate_guard import DuplicateGuard
from action_lens.services.fallback_classifier import KeywordClassifier
from action_lens.services.history_cache import ConversationHistoryCache
from action_lens.services.maintenance import MaintenanceSweeper
from action_lens.services.notifications import (
    LiveEventBus,
    NullNotifier,
    OneSignalNotifier,
    PlayerLookup,
    PushNotifier,
)
from action_lens.services.sender_grouper import combine, split_runs
from action_lens.services.topic_tracker import GroupTopicTracker, TopicCluster

logger = structlog.get_logger(__name__)

TOPIC_SUMMARY_LIMIT = 3


class MessageGrouper:
    """Owns the per-process pipeline state and wires its components together.

    Typical usage:
        grouper = MessageGrouper.create(config, store)
        grouper.start()
        await grouper.ingest(user_id, message)
        ...
        await grouper.stop()
    """

    def __init__(
        self,
        store: ActionStore,
        gateway: ClassificationGateway,
        emitter: ActionEmitter,
        config: ActionLensConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the pipeline.

        Args:
            store: Action storage.
            gateway: Classification gateway.
            emitter: Persists and announces accepted actions.
            config: Pipeline configuration (defaults to :func:`get_config`).
            clock: Time source in epoch seconds.
        """
        config = config or get_config()
        self._store = store
        self._gateway = gateway
        self._emitter = emitter
        self._clock = clock
        self._closers: list[Callable[[], Awaitable[Any]]] = []

        self.sender_gap_seconds = config.sender_gap_seconds
        self.history_limit = config.history_limit
        self.history_window_seconds = config.conversation_memory_seconds

        self.buffer = TimeWindowBuffer(
            on_flush=self.process_batch,
            delay_seconds=config.batch_delay_seconds,
            max_size=config.max_batch_size,
        )
        self.guard = DuplicateGuard(
            similarity_threshold=config.duplicate_similarity_threshold,
            history_limit=config.history_limit,
            cap=config.signature_cap,
            trim_to=config.signature_trim_to,
            owner_policy=config.owner_duplicate_policy,
        )
        self.topics = GroupTopicTracker(
            store=store,
            similarity_threshold=config.topic_similarity_threshold,
            timeout_seconds=config.topic_timeout_seconds,
            active_window_seconds=config.topic_active_window_seconds,
            history_limit=config.topic_history_limit,
            cross_user_policy=config.topic_cross_user_policy,
            clock=clock,
        )
        self.history = ConversationHistoryCache()
        self.sweeper = MaintenanceSweeper(
            buffer=self.buffer,
            history=self.history,
            guard=self.guard,
            topics=self.topics,
            interval_seconds=config.maintenance_interval_seconds,
            stale_buffer_seconds=config.stale_buffer_seconds,
            history_window_seconds=config.conversation_memory_seconds,
            topic_timeout_seconds=config.topic_timeout_seconds,
            clock=clock,
        )

    @classmethod
    def create(
        cls,
        config: ActionLensConfig,
        store: ActionStore,
        notifier: PushNotifier | None = None,
        events: LiveEventBus | None = None,
        classifier: ActionClassifier | None = None,
        player_lookup: PlayerLookup | None = None,
    ) -> MessageGrouper:
        """Build a pipeline with the default collaborators.

        The model-backed classifier is used when ``classifier`` is given or
        OpenAI credentials are configured. Keyword heuristics are always the
        fallback. Without an explicit ``notifier``, pushes go through OneSignal
        when its credentials are configured and ``player_lookup`` is given.

        Args:
            config: Pipeline configuration.
            store: Action storage.
            notifier: Push sink override.
            events: Live event bus (defaults to a fresh bus).
            classifier: Primary classifier override.
            player_lookup: Maps a user to a OneSignal player ID.

        Returns:
            Configured pipeline (not yet started).
        """
        closers: list[Callable[[], Awaitable[Any]]] = []
        if classifier is None and config.has_openai and config.openai_api_key:
            owned_classifier = OpenAIClassifier(
                api_key=config.openai_api_key,
                model=config.openai_model,
                base_url=config.openai_base_url,
                timeout=config.classification_timeout_seconds,
            )
            closers.append(owned_classifier.close)
            classifier = owned_classifier

        if notifier is None:
            notifier = cls._default_notifier(config, player_lookup, closers)

        gateway = ClassificationGateway(
            fallback=KeywordClassifier(),
            primary=classifier,
            confidence_floor=config.confidence_floor,
            timeout_seconds=config.classification_timeout_seconds,
        )
        emitter = ActionEmitter(
            store=store,
            notifier=notifier,
            events=events or LiveEventBus(),
        )
        grouper = cls(store, gateway, emitter, config)
        grouper._closers.extend(closers)
        return grouper

    @staticmethod
    def _default_notifier(
        config: ActionLensConfig,
        player_lookup: PlayerLookup | None,
        closers: list[Callable[[], Awaitable[Any]]],
    ) -> PushNotifier:
        if not (config.has_onesignal and config.onesignal_app_id and config.onesignal_api_key):
            return NullNotifier()
        if player_lookup is None:
            logger.warning("push_disabled_no_player_lookup")
            return NullNotifier()

        push = OneSignalNotifier(
            app_id=config.onesignal_app_id,
            api_key=config.onesignal_api_key,
            player_lookup=player_lookup,
        )
        closers.append(push.close)
        return push

    async def ingest(self, user_id: str, message: IncomingMessage) -> bool:
        """Buffer an incoming message for a user."""
        return await self.buffer.ingest(user_id, message)

    async def flush(self, user_id: str, conversation_key: str) -> list[IncomingMessage]:
        """Flush one conversation buffer right away."""
        return await self.buffer.flush(user_id, conversation_key)

    async def process_batch(
        self,
        key: BufferKey,
        batch: list[IncomingMessage],
    ) -> list[PersistedAction]:
        """Process a flushed batch run by run.

        Args:
            key: Buffer the batch was drained from.
            batch: Messages of the buffer.

        Returns:
            Actions created from the batch.
        """
        runs = split_runs(batch, self.sender_gap_seconds)
        await logger.ainfo(
            "batch_processing",
            user_id=key.user_id,
            conversation_key=key.conversation_key,
            messages=len(batch),
            runs=len(runs),
        )

        created: list[PersistedAction] = []
        for run in runs:
            try:
                created.extend(await self.process_run(key.user_id, run))
            except Exception as e:
                await logger.aexception(
                    "run_processing_failed",
                    user_id=key.user_id,
                    conversation_key=key.conversation_key,
                    message_ids=[m.id for m in run],
                    error=str(e),
                )
        return created

    async def process_run(
        self,
        user_id: str,
        run: list[IncomingMessage],
    ) -> list[PersistedAction]:
        """Classify one sender run and emit its surviving action.

        Args:
            user_id: Account the run belongs to.
            run: Non-empty same-sender run.

        Returns:
            Actions created from the run (zero or one in practice).
        """
        message = combine(run)

        if await self._already_processed(user_id, message):
            return []

        clusters: list[TopicCluster] = []
        if message.is_group_conversation:
            clusters = await self.topics.load_context(message.conversation_id)
            if self.topics.is_duplicate(message, clusters, user_id):
                return []

        history = await self._load_history(user_id, message)
        recent_topics = sorted(clusters, key=lambda c: c.last_update, reverse=True)
        request = ClassificationRequest(
            message=message,
            history=history,
            signatures=self.guard.signatures(user_id),
            topics=[c.summary() for c in recent_topics[:TOPIC_SUMMARY_LIMIT]],
            from_owner=message.is_from_owner,
        )

        candidates = await self._gateway.classify(request)
        candidates = self.guard.filter(candidates, user_id, message, history)

        accepted: list[tuple[CandidateAction, PersistedAction]] = []
        for action in candidates:
            try:
                persisted = await self._emitter.accept(action, message, user_id)
            except DuplicateActionError as e:
                await logger.ainfo(
                    "action_already_stored",
                    user_id=user_id,
                    message_id=e.original_message_id,
                    action_type=e.action_type,
                )
                continue
            except Exception as e:
                await logger.aexception(
                    "action_emit_failed",
                    user_id=user_id,
                    message_id=message.id,
                    action_type=action.type,
                    error=str(e),
                )
                continue
            accepted.append((action, persisted))

        self._record(user_id, message, accepted)
        return [persisted for _, persisted in accepted]

    def start(self) -> None:
        """Start background maintenance."""
        self.sweeper.start()

    async def stop(self, flush_pending: bool = False) -> None:
        """Stop maintenance and cancel pending flush timers.

        Args:
            flush_pending: Process buffered messages instead of dropping them.
        """
        await self.sweeper.stop()
        await self.buffer.close(flush_pending=flush_pending)
        for close in self._closers:
            await close()
        self._closers.clear()

    async def __aenter__(self) -> MessageGrouper:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop(flush_pending=exc_type is None)

    async def _already_processed(self, user_id: str, message: IncomingMessage) -> bool:
        try:
            existing = await self._store.query_existing_actions_for_message_ids(
                user_id, message.message_ids
            )
        except Exception as e:
            await logger.awarning(
                "existing_action_check_failed",
                user_id=user_id,
                message_id=message.id,
                error=str(e),
            )
            return False

        if existing:
            await logger.ainfo(
                "messages_already_processed",
                user_id=user_id,
                message_ids=message.message_ids,
                actions=len(existing),
            )
            return True
        return False

    async def _load_history(
        self,
        user_id: str,
        message: IncomingMessage,
    ) -> list[ConversationHistoryEntry]:
        since = datetime.fromtimestamp(self._clock() - self.history_window_seconds, UTC)
        scope = SenderScope.for_owner_flag(message.is_from_owner)
        try:
            return await self._store.query_recent_actions(
                user_id,
                message.conversation_key,
                since,
                sender_scope=scope,
                limit=self.history_limit,
            )
        except Exception as e:
            await logger.awarning(
                "history_unavailable_using_cache",
                user_id=user_id,
                conversation_key=message.conversation_key,
                error=str(e),
            )
            return self.history.get(
                user_id,
                message.conversation_key,
                from_owner=message.is_from_owner,
                limit=self.history_limit,
            )

    def _record(
        self,
        user_id: str,
        message: IncomingMessage,
        accepted: list[tuple[CandidateAction, PersistedAction]],
    ) -> None:
        if not accepted:
            return

        for action, persisted in accepted:
            self.guard.record(user_id, action)
            self.history.put(
                user_id,
                message.conversation_key,
                ConversationHistoryEntry(
                    type=persisted.type,
                    description=persisted.description,
                    details=persisted.details,
                    created_at=persisted.created_at,
                    from_owner=persisted.from_owner,
                    original_message=persisted.original_message,
                ),
            )

        if message.is_group_conversation:
            self.topics.update(
                message.conversation_id,
                [action for action, _ in accepted],
                user_id,
            )
