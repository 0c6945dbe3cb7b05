"""Keyword-based classifier used when the model call is unavailable.

Each rule lists trigger phrases for one category. A rule fires when any
phrase occurs in the message as a whole word, and contributes a candidate
with the rule's fixed confidence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from action_lens.schemas.action import ActionDetails, ActionType, CandidateAction, Priority

if TYPE_CHECKING:
    from action_lens.services.classification import ClassificationRequest

logger = structlog.get_logger(__name__)

LONG_MESSAGE_LENGTH = 50


@dataclass(frozen=True)
class KeywordRule:
    """Trigger phrases and the candidate produced when one matches."""

    type: ActionType
    keywords: tuple[str, ...]
    description: str
    title: str
    priority: Priority
    category: str
    suggested_actions: tuple[str, ...]
    confidence: float
    schedules: bool = False

    def pattern(self) -> re.Pattern[str]:
        alternatives = []
        for keyword in self.keywords:
            left = r"\b" if keyword[0].isalnum() else ""
            right = r"\b" if keyword[-1].isalnum() else ""
            alternatives.append(f"{left}{re.escape(keyword)}{right}")
        return re.compile("|".join(alternatives))


RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        type=ActionType.REMINDER,
        keywords=(
            "remind me", "don't forget", "remember to", "tomorrow", "today", "later",
            "next week", "esok", "monday", "tuesday", "wednesday", "thursday", "friday",
            "saturday", "sunday", "am", "pm", "o'clock", "morning", "afternoon",
            "evening", "night",
        ),
        description="Time-based reminder or scheduling needed",
        title="Reminder/Schedule",
        priority=Priority.MEDIUM,
        category="scheduling",
        suggested_actions=("Set reminder", "Add to calendar", "Create alert"),
        confidence=0.8,
        schedules=True,
    ),
    KeywordRule(
        type=ActionType.EVENT,
        keywords=(
            "meeting", "appointment", "schedule", "course", "training", "session",
            "conference", "call", "webinar", "workshop", "seminar", "presentation",
            "demo", "interview", "event",
        ),
        description="Schedule event or meeting",
        title="Event Planning",
        priority=Priority.HIGH,
        category="calendar",
        suggested_actions=("Add to calendar", "Send invites", "Set reminder"),
        confidence=0.8,
    ),
    KeywordRule(
        type=ActionType.TASK,
        keywords=(
            "need to", "have to", "should", "must", "todo", "task", "complete", "finish",
            "do this", "work on", "handle", "deal with", "take care",
        ),
        description="Task or action item identified",
        title="Task Assignment",
        priority=Priority.MEDIUM,
        category="productivity",
        suggested_actions=("Add to task list", "Set deadline", "Track progress"),
        confidence=0.75,
    ),
    KeywordRule(
        type=ActionType.NOTE,
        keywords=(
            "note this", "save this", "write down", "remember that", "important",
            "information", "details", "reference", "document", "record",
        ),
        description="Information to save and organize",
        title="Note Taking",
        priority=Priority.LOW,
        category="information",
        suggested_actions=("Save to notes", "Tag and organize", "Create reference"),
        confidence=0.8,
    ),
    KeywordRule(
        type=ActionType.ISSUE,
        keywords=(
            "problem", "issue", "not working", "broken", "error", "help", "unstable",
            "couldn't", "failed", "bug", "trouble", "wrong", "stuck", "crash", "freeze",
            "slow", "can't", "won't", "doesn't",
        ),
        description="Technical or system issue reported",
        title="Issue Resolution",
        priority=Priority.HIGH,
        category="support",
        suggested_actions=("Debug problem", "Find solution", "Contact support", "Document fix"),
        confidence=0.8,
    ),
    KeywordRule(
        type=ActionType.FOLLOW_UP,
        keywords=(
            "customer", "client", "business", "project", "work", "deadline", "proposal",
            "contract", "sale", "revenue", "profit", "marketing", "campaign", "launch",
        ),
        description="Business or client matter needs attention",
        title="Business Follow-up",
        priority=Priority.MEDIUM,
        category="business",
        suggested_actions=(
            "Schedule follow-up", "Contact client", "Update project status", "Send proposal",
        ),
        confidence=0.75,
    ),
    KeywordRule(
        type=ActionType.COMMUNICATION,
        keywords=(
            "?", "how", "what", "why", "when", "where", "who", "which", "can you",
            "could you", "would you", "should i", "is it", "are you", "do you",
        ),
        description="Question requires response",
        title="Response Needed",
        priority=Priority.MEDIUM,
        category="communication",
        suggested_actions=("Research answer", "Provide response", "Ask for clarification"),
        confidence=0.75,
    ),
    KeywordRule(
        type=ActionType.LEARNING,
        keywords=(
            "learn", "study", "course", "tutorial", "training", "skill", "knowledge",
            "research", "understand", "teach", "education", "book", "read", "practice",
        ),
        description="Learning or educational content",
        title="Learning Opportunity",
        priority=Priority.MEDIUM,
        category="education",
        suggested_actions=("Find resources", "Schedule learning time", "Create study plan"),
        confidence=0.7,
    ),
    KeywordRule(
        type=ActionType.FINANCE,
        keywords=(
            "money", "pay", "payment", "invoice", "bill", "cost", "price", "budget",
            "expense", "income", "profit", "loss", "investment", "bank", "account",
        ),
        description="Financial matter needs attention",
        title="Financial Task",
        priority=Priority.HIGH,
        category="finance",
        suggested_actions=("Review finances", "Process payment", "Update budget", "Track expenses"),
        confidence=0.8,
    ),
    KeywordRule(
        type=ActionType.HEALTH,
        keywords=(
            "doctor", "appointment", "medicine", "health", "sick", "pain", "exercise",
            "gym", "diet", "nutrition", "wellness", "therapy", "checkup",
        ),
        description="Health-related task or reminder",
        title="Health & Wellness",
        priority=Priority.HIGH,
        category="health",
        suggested_actions=("Schedule appointment", "Set health reminder", "Track wellness"),
        confidence=0.8,
    ),
    KeywordRule(
        type=ActionType.SHOPPING,
        keywords=(
            "buy", "purchase", "shop", "order", "delivery", "shipping", "product", "item",
            "store", "market", "sale", "discount", "cart",
        ),
        description="Shopping or purchase task",
        title="Shopping List",
        priority=Priority.LOW,
        category="shopping",
        suggested_actions=("Add to shopping list", "Compare prices", "Check availability"),
        confidence=0.7,
    ),
    KeywordRule(
        type=ActionType.TRAVEL,
        keywords=(
            "travel", "trip", "flight", "hotel", "booking", "reservation", "ticket",
            "vacation", "holiday", "transport", "uber", "taxi", "airport",
        ),
        description="Travel planning or logistics",
        title="Travel Planning",
        priority=Priority.MEDIUM,
        category="travel",
        suggested_actions=("Book travel", "Plan itinerary", "Set reminders", "Check requirements"),
        confidence=0.8,
    ),
    KeywordRule(
        type=ActionType.CREATIVE,
        keywords=(
            "create", "design", "write", "content", "post", "blog", "video", "photo",
            "image", "graphic", "logo", "brand", "creative", "idea", "brainstorm",
        ),
        description="Creative or content creation task",
        title="Creative Project",
        priority=Priority.MEDIUM,
        category="creative",
        suggested_actions=(
            "Start project", "Gather resources", "Create timeline", "Review requirements",
        ),
        confidence=0.7,
    ),
    KeywordRule(
        type=ActionType.ADMINISTRATIVE,
        keywords=(
            "form", "application", "register", "signup", "paperwork", "document",
            "certificate", "license", "renewal", "submission", "filing", "process",
        ),
        description="Administrative task or paperwork",
        title="Admin Task",
        priority=Priority.MEDIUM,
        category="administrative",
        suggested_actions=(
            "Complete forms", "Gather documents", "Set deadline", "Track progress",
        ),
        confidence=0.75,
    ),
)  # fmt: skip


class KeywordClassifier:
    """Deterministic classifier built from :data:`RULES`.

    Example:
        classifier = KeywordClassifier()
        candidates = classifier.classify_text("Remind me tomorrow at 3pm")
    """

    def __init__(self, rules: tuple[KeywordRule, ...] = RULES) -> None:
        self._rules = [(rule, rule.pattern()) for rule in rules]

    def classify_text(self, text: str, now: datetime | None = None) -> list[CandidateAction]:
        """Produce every candidate whose rule matches the text.

        Args:
            text: Message body.
            now: Reference time for scheduled candidates (defaults to now).

        Returns:
            Candidates in rule order. A long message that matches nothing
            yields a low-confidence note.
        """
        lowered = text.lower()
        now = now or datetime.now(UTC)
        candidates: list[CandidateAction] = []

        for rule, pattern in self._rules:
            if not pattern.search(lowered):
                continue
            details = ActionDetails(
                title=rule.title,
                content=text,
                priority=rule.priority,
                category=rule.category,
                suggested_actions=list(rule.suggested_actions),
                datetime=(now + timedelta(days=1)).isoformat() if rule.schedules else None,
            )
            candidates.append(
                CandidateAction(
                    type=rule.type,
                    description=rule.description,
                    details=details,
                    confidence=rule.confidence,
                )
            )

        if not candidates and len(text) > LONG_MESSAGE_LENGTH:
            candidates.append(
                CandidateAction(
                    type=ActionType.NOTE,
                    description="Detailed message - likely contains important information",
                    details=ActionDetails(
                        title="Information Capture",
                        content=text,
                        priority=Priority.LOW,
                        category="general",
                        context="Long message flagged for review",
                        suggested_actions=[
                            "Review content",
                            "Extract key points",
                            "Determine next steps",
                        ],
                    ),
                    confidence=0.6,
                )
            )

        logger.debug(
            "keyword_classification",
            matched=[c.type for c in candidates],
        )
        return candidates

    async def classify(self, request: ClassificationRequest) -> list[CandidateAction]:
        """Classify the request's message text."""
        return self.classify_text(request.message.body)
