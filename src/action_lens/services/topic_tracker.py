"""Cross-user topic tracking for group conversations.

Several members of the same group often receive the same discussion. A
topic cluster remembers which users already got an action about a topic,
so the same discussion does not produce one action per member.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from action_lens.core.config import TopicPolicy
from action_lens.core.text import jaccard, strip_punctuation
from action_lens.schemas.action import CandidateAction
from action_lens.schemas.message import IncomingMessage

if TYPE_CHECKING:
    from action_lens.repositories.base import ActionStore

logger = structlog.get_logger(__name__)

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "is", "are", "was", "were", "be", "been", "have", "has", "had", "do", "does",
        "did", "will", "would", "could", "should", "may", "might", "can", "must", "shall",
    }
)  # fmt: skip

MAX_KEYWORDS = 10
TOPIC_KEY_WORDS = 3


def keywords_of(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Extract ordered topic keywords from free text.

    Args:
        text: Message body or action description.
        limit: Maximum number of keywords kept.

    Returns:
        Lowercase words longer than two characters that are not stop words,
        in their original order.
    """
    words = strip_punctuation(text.lower(), " ").split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS][:limit]


def overlap(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard index of two keyword collections, 0.0 if either is empty."""
    set_a = set(a)
    set_b = set(b)
    if not set_a or not set_b:
        return 0.0
    return jaccard(set_a, set_b)


def topic_key(action_type: str, description: str) -> str:
    """Bucket key of a topic: action type plus its first three keywords."""
    return "-".join([action_type, *keywords_of(description)[:TOPIC_KEY_WORDS]])


@dataclass
class TopicAction:
    """One action recorded against a topic."""

    user_id: str
    type: str
    description: str
    timestamp: float


@dataclass
class TopicCluster:
    """A tracked topic within one group conversation."""

    key: str
    type: str
    description: str
    users: set[str] = field(default_factory=set)
    actions: list[TopicAction] = field(default_factory=list)
    last_update: float = 0.0

    def add(self, action: TopicAction) -> None:
        """Record an action, skipping one already present."""
        for existing in self.actions:
            if (existing.user_id, existing.type, existing.description) == (
                action.user_id,
                action.type,
                action.description,
            ):
                break
        else:
            self.actions.append(action)
        self.users.add(action.user_id)
        self.last_update = max(self.last_update, action.timestamp)

    def descriptions(self) -> list[str]:
        """Representative description followed by every recorded one."""
        return [self.description, *(a.description for a in self.actions)]

    def similarity_to(self, keywords: list[str]) -> float:
        """Best keyword overlap between the given keywords and this topic."""
        return max(overlap(keywords, keywords_of(d)) for d in self.descriptions())

    def summary(self) -> dict[str, Any]:
        """Compact form passed to the classifier as context."""
        return {
            "type": self.type,
            "description": self.description,
            "users": len(self.users),
            "actions": len(self.actions),
            "last_update": datetime.fromtimestamp(self.last_update, UTC).isoformat(),
        }

    def copy(self) -> TopicCluster:
        return TopicCluster(
            key=self.key,
            type=self.type,
            description=self.description,
            users=set(self.users),
            actions=list(self.actions),
            last_update=self.last_update,
        )


@dataclass(frozen=True)
class TopicKey:
    """Composite key of the cluster map."""

    conversation_id: str
    topic: str


class GroupTopicTracker:
    """Keeps topic clusters per group conversation.

    Clusters live in memory and are rebuilt from persisted group history
    for each run, so topics raised before a restart are still seen.
    """

    def __init__(
        self,
        store: ActionStore | None = None,
        similarity_threshold: float = 0.7,
        timeout_seconds: float = 6 * 3600,
        active_window_seconds: float = 2 * 3600,
        history_limit: int = 15,
        cross_user_policy: TopicPolicy = "strict",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Storage used to rebuild clusters, or None for memory only.
            similarity_threshold: Keyword overlap above which a message matches a topic.
            timeout_seconds: Age after which a cluster is dropped.
            active_window_seconds: Window in which a multi-user topic counts as active.
            history_limit: Persisted rows loaded per conversation.
            cross_user_policy: ``strict`` also suppresses when only another user
                contributed, ``lenient`` requires an active multi-user discussion.
            clock: Time source in epoch seconds.
        """
        self._store = store
        self.similarity_threshold = similarity_threshold
        self.timeout_seconds = timeout_seconds
        self.active_window_seconds = active_window_seconds
        self.history_limit = history_limit
        self.cross_user_policy = cross_user_policy
        self._clock = clock
        self._clusters: dict[TopicKey, TopicCluster] = {}

    def __len__(self) -> int:
        return len(self._clusters)

    def clusters(self, conversation_id: str) -> list[TopicCluster]:
        """In-memory clusters of a conversation."""
        return [
            cluster
            for key, cluster in self._clusters.items()
            if key.conversation_id == conversation_id
        ]

    async def load_context(self, conversation_id: str) -> list[TopicCluster]:
        """Rebuild the topic context of a group conversation.

        Persisted group actions from the timeout window are bucketed by
        topic key and merged with the in-memory clusters. If storage is
        unavailable only the in-memory clusters are used.

        Args:
            conversation_id: Group conversation ID.

        Returns:
            Clusters for the conversation (copies, safe to inspect).
        """
        merged: dict[str, TopicCluster] = {}

        if self._store is not None:
            since = datetime.fromtimestamp(self._clock() - self.timeout_seconds, UTC)
            try:
                rows = await self._store.query_group_topic_history(
                    conversation_id, since, self.history_limit
                )
            except Exception as e:
                await logger.awarning(
                    "topic_history_unavailable",
                    conversation_id=conversation_id,
                    error=str(e),
                )
                rows = []

            for row in rows:
                key = topic_key(row.type, row.description)
                cluster = merged.get(key)
                if cluster is None:
                    cluster = TopicCluster(key=key, type=row.type, description=row.description)
                    merged[key] = cluster
                cluster.add(
                    TopicAction(
                        user_id=row.user_id,
                        type=row.type,
                        description=row.description,
                        timestamp=row.created_at.timestamp(),
                    )
                )

        for cluster in self.clusters(conversation_id):
            existing = merged.get(cluster.key)
            if existing is None:
                merged[cluster.key] = cluster.copy()
                continue
            for action in cluster.actions:
                existing.add(action)
            existing.users |= cluster.users
            existing.last_update = max(existing.last_update, cluster.last_update)

        return list(merged.values())

    def is_duplicate(
        self,
        message: IncomingMessage,
        clusters: list[TopicCluster],
        user_id: str,
    ) -> bool:
        """Check whether a group message repeats a topic that is already covered.

        Args:
            message: Combined message about to be classified.
            clusters: Context from :meth:`load_context`.
            user_id: Account the message was received for.

        Returns:
            True if classification should be skipped for this message.
        """
        keywords = keywords_of(message.body)
        if not keywords:
            return False

        now = self._clock()
        for cluster in clusters:
            similarity = cluster.similarity_to(keywords)
            if similarity <= self.similarity_threshold:
                continue

            age = now - cluster.last_update
            if user_id in cluster.users:
                reason = "user_already_contributed"
            elif (
                len(cluster.users) >= 2
                and len(cluster.actions) >= 2
                and age <= self.active_window_seconds
            ):
                reason = "active_group_discussion"
            elif self.cross_user_policy == "strict" and age <= self.timeout_seconds:
                reason = "covered_by_other_user"
            else:
                continue

            logger.info(
                "group_topic_duplicate",
                user_id=user_id,
                conversation_id=message.conversation_id,
                topic=cluster.key,
                similarity=round(similarity, 3),
                reason=reason,
            )
            return True

        return False

    def update(
        self,
        conversation_id: str,
        actions: list[CandidateAction],
        user_id: str,
    ) -> None:
        """Record accepted actions against their topic clusters.

        Args:
            conversation_id: Group conversation ID.
            actions: Actions that were persisted for this run.
            user_id: Account the actions belong to.
        """
        now = self._clock()
        for action in actions:
            key = TopicKey(conversation_id, topic_key(action.type, action.description))
            cluster = self._clusters.get(key)
            if cluster is None:
                cluster = TopicCluster(
                    key=key.topic, type=action.type, description=action.description
                )
                self._clusters[key] = cluster
            cluster.add(
                TopicAction(
                    user_id=user_id,
                    type=action.type,
                    description=action.description,
                    timestamp=now,
                )
            )
            cluster.last_update = now

    def evict_older_than(self, cutoff: float) -> int:
        """Drop clusters last updated before ``cutoff`` (epoch seconds).

        Returns:
            Number of clusters removed.
        """
        stale = [key for key, cluster in self._clusters.items() if cluster.last_update < cutoff]
        for key in stale:
            del self._clusters[key]
        if stale:
            logger.info("topic_clusters_evicted", count=len(stale))
        return len(stale)

    def evict_expired(self) -> int:
        """Drop clusters older than the topic timeout."""
        return self.evict_older_than(self._clock() - self.timeout_seconds)
