"""Per-user duplicate suppression for candidate actions.

Two checks are applied:
- Exact: a signature built from the action type and three content words
  is looked up in the user's rolling signature set.
- Similar: the description is compared against recent history of the
  same type and the same sender side using a Jaccard index.

Messages sent by the account owner follow ``owner_duplicate_policy``.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Protocol

import structlog

from action_lens.core.config import DuplicatePolicy
from action_lens.core.text import jaccard, strip_punctuation
from action_lens.schemas.action import CandidateAction, ConversationHistoryEntry
from action_lens.schemas.message import IncomingMessage

logger = structlog.get_logger(__name__)

SIGNATURE_WORDS = 3
MIN_SIGNATURE_WORD_LENGTH = 3


class _Describable(Protocol):
    type: str
    description: str


def signature_of(action: _Describable) -> str:
    """Build the exact-duplicate fingerprint of an action.

    Takes the first three words of the description longer than two
    characters (lowercased, punctuation removed) and sorts them.

    Example:
        A task described as "Send the Q3 report" has the signature
        ``task-report-send-the``.
    """
    words = [
        word
        for word in strip_punctuation(action.description.lower()).split()
        if len(word) >= MIN_SIGNATURE_WORD_LENGTH
    ][:SIGNATURE_WORDS]
    return "-".join([str(action.type), *sorted(words)])


def description_similarity(a: str, b: str) -> float:
    """Jaccard index over lowercase whitespace tokens."""
    return jaccard(a.lower().split(), b.lower().split())


class DuplicateGuard:
    """Tracks accepted action signatures and filters repeated candidates.

    Signatures are stored per user in insertion order. Once a user's set
    grows past ``cap`` it is cut back to the newest ``trim_to`` entries.
    """

    def __init__(
        self,
        similarity_threshold: float = 0.8,
        history_limit: int = 5,
        cap: int = 50,
        trim_to: int = 30,
        owner_policy: DuplicatePolicy = "permissive",
    ) -> None:
        """Initialize the guard.

        Args:
            similarity_threshold: Similarity above which history matches.
            history_limit: Number of recent history entries compared.
            cap: Signatures per user before trimming.
            trim_to: Signatures kept after trimming.
            owner_policy: ``permissive`` lets owner duplicates through
                after logging, ``strict`` drops them.
        """
        self.similarity_threshold = similarity_threshold
        self.history_limit = history_limit
        self.cap = cap
        self.trim_to = trim_to
        self.owner_policy = owner_policy
        self._signatures: dict[str, OrderedDict[str, None]] = {}

    def signatures(self, user_id: str) -> list[str]:
        """Signatures of a user, oldest first."""
        return list(self._signatures.get(user_id, ()))

    def is_exact_duplicate(self, user_id: str, action: _Describable) -> bool:
        """Check whether the user already has an action with this signature."""
        return signature_of(action) in self._signatures.get(user_id, {})

    def is_similar_to_history(
        self,
        action: _Describable,
        history: list[ConversationHistoryEntry],
        from_owner: bool,
    ) -> bool:
        """Compare an action against recent history from the same sender side.

        Args:
            action: Candidate action.
            history: Conversation history, newest first.
            from_owner: Whether the candidate came from an owner message.

        Returns:
            True if a recent entry of the same type is similar enough.
        """
        recent = history[: self.history_limit]
        for entry in recent:
            if entry.type != action.type:
                continue
            if bool(entry.from_owner) != from_owner:
                continue
            similarity = description_similarity(action.description, entry.description)
            if similarity > self.similarity_threshold:
                logger.debug(
                    "similar_history_found",
                    action_type=action.type,
                    similarity=round(similarity, 3),
                )
                return True
        return False

    def filter(
        self,
        candidates: list[CandidateAction],
        user_id: str,
        message: IncomingMessage,
        history: list[ConversationHistoryEntry],
    ) -> list[CandidateAction]:
        """Drop candidates that repeat what the user already has.

        Args:
            candidates: Selected candidate actions for one run.
            user_id: Account the run belongs to.
            message: Combined message the candidates came from.
            history: Sender-scoped conversation history.

        Returns:
            Candidates that survived the checks, in order.
        """
        from_owner = message.is_from_owner
        accepted: list[CandidateAction] = []

        for action in candidates:
            signature = signature_of(action)

            if from_owner:
                if self.is_exact_duplicate(user_id, action):
                    if self.owner_policy == "strict":
                        logger.info(
                            "owner_duplicate_suppressed",
                            user_id=user_id,
                            signature=signature,
                        )
                        continue
                    logger.info(
                        "owner_duplicate_would_suppress",
                        user_id=user_id,
                        signature=signature,
                    )
                accepted.append(action)
                continue

            if self.is_exact_duplicate(user_id, action):
                logger.info("exact_duplicate_suppressed", user_id=user_id, signature=signature)
                continue
            if self.is_similar_to_history(action, history, from_owner=False):
                logger.info("similar_duplicate_suppressed", user_id=user_id, signature=signature)
                continue
            accepted.append(action)

        return accepted

    def record(self, user_id: str, action: _Describable) -> str:
        """Add the signature of an accepted action to the user's set.

        Returns:
            The recorded signature.
        """
        signature = signature_of(action)
        signatures = self._signatures.setdefault(user_id, OrderedDict())
        signatures[signature] = None
        signatures.move_to_end(signature)
        if len(signatures) > self.cap:
            self._trim_user(user_id)
        return signature

    def trim(self) -> int:
        """Enforce the cap for every user.

        Returns:
            Number of signatures removed.
        """
        removed = 0
        for user_id in list(self._signatures):
            if len(self._signatures[user_id]) > self.cap:
                removed += self._trim_user(user_id)
        return removed

    def _trim_user(self, user_id: str) -> int:
        signatures = self._signatures[user_id]
        excess = len(signatures) - self.trim_to
        for _ in range(max(excess, 0)):
            signatures.popitem(last=False)
        logger.debug("signatures_trimmed", user_id=user_id, removed=excess, kept=len(signatures))
        return max(excess, 0)
