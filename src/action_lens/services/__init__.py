"""Service layer for the message pipeline."""

from action_lens.services.action_emitter import ActionEmitter
from action_lens.services.buffer import BufferKey, TimeWindowBuffer
from action_lens.services.classification import (
    ActionClassifier,
    ClassificationError,
    ClassificationGateway,
    ClassificationParseError,
    ClassificationRequest,
    OpenAIClassifier,
    select_best,
)
from action_lens.services.duplicate_guard import DuplicateGuard, signature_of
from action_lens.services.fallback_classifier import KeywordClassifier
from action_lens.services.history_cache import ConversationHistoryCache, ConversationKey
from action_lens.services.maintenance import MaintenanceSweeper, SweepResult
from action_lens.services.message_grouper import MessageGrouper
from action_lens.services.notifications import (
    LiveEventBus,
    NotificationError,
    NullNotifier,
    OneSignalNotifier,
    PushNotifier,
)
from action_lens.services.review import ActionNotFoundError, ActionReviewService
from action_lens.services.topic_tracker import GroupTopicTracker, TopicCluster

__all__ = [
    "ActionClassifier",
    "ActionEmitter",
    "ActionNotFoundError",
    "ActionReviewService",
    "BufferKey",
    "ClassificationError",
    "ClassificationGateway",
    "ClassificationParseError",
    "ClassificationRequest",
    "ConversationHistoryCache",
    "ConversationKey",
    "DuplicateGuard",
    "GroupTopicTracker",
    "KeywordClassifier",
    "LiveEventBus",
    "MaintenanceSweeper",
    "MessageGrouper",
    "NotificationError",
    "NullNotifier",
    "OneSignalNotifier",
    "PushNotifier",
    "SweepResult",
    "TimeWindowBuffer",
    "TopicCluster",
    "select_best",
    "signature_of",
]
