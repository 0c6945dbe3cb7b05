"""Classification of combined messages into candidate actions.

The gateway calls the model-backed classifier first and falls back to
keyword heuristics when the call fails, times out, or returns output that
cannot be parsed. Either way at most one candidate is returned: the one
with the highest confidence at or above the configured floor.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError

from action_lens.schemas.action import (
    ActionType,
    CandidateAction,
    ConversationHistoryEntry,
)
from action_lens.schemas.message import IncomingMessage

logger = structlog.get_logger(__name__)

MAX_HISTORY_ENTRIES = 5
MAX_TOPIC_SUMMARIES = 3


class ClassificationError(Exception):
    """Raised when the classification call fails.

    Attributes:
        status_code: HTTP status code, if the failure came from the API.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClassificationParseError(ClassificationError):
    """Raised when the classifier output is not a valid candidate list."""

    pass


@dataclass
class ClassificationRequest:
    """Everything a classifier may use to judge one combined message.

    Attributes:
        message: Combined message of one sender run.
        history: Recent sender-scoped conversation history, newest first.
        signatures: The user's recent action signatures.
        topics: Summaries of active topic clusters of the conversation.
        from_owner: Whether the message was sent by the account owner.
    """

    message: IncomingMessage
    history: list[ConversationHistoryEntry] = field(default_factory=list)
    signatures: list[str] = field(default_factory=list)
    topics: list[dict[str, Any]] = field(default_factory=list)
    from_owner: bool = False

    def __post_init__(self) -> None:
        self.history = self.history[:MAX_HISTORY_ENTRIES]
        self.topics = self.topics[:MAX_TOPIC_SUMMARIES]


class ActionClassifier(Protocol):
    """Anything that turns a request into candidate actions."""

    async def classify(self, request: ClassificationRequest) -> list[CandidateAction]: ...


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_candidates(content: str) -> list[CandidateAction]:
    """Parse classifier output into validated candidates.

    Accepts a JSON array of actions or an object with an ``actions`` array,
    optionally wrapped in a markdown code fence. Items that fail validation
    are skipped.

    Args:
        content: Raw text returned by the model.

    Returns:
        Valid candidates in their original order (possibly empty).

    Raises:
        ClassificationParseError: If the text is not a candidate list or
            none of its items are valid.
    """
    try:
        data = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise ClassificationParseError(f"Invalid JSON from classifier: {e}") from e

    if isinstance(data, dict):
        data = data.get("actions")
    if not isinstance(data, list):
        raise ClassificationParseError("Classifier output is not a list of actions")

    candidates: list[CandidateAction] = []
    for item in data:
        try:
            candidates.append(CandidateAction.model_validate(item))
        except ValidationError as e:
            logger.warning("invalid_candidate_skipped", error=str(e))

    if data and not candidates:
        raise ClassificationParseError("No valid candidates in classifier output")
    return candidates


def select_best(
    candidates: list[CandidateAction],
    floor: float = 0.7,
) -> CandidateAction | None:
    """Pick the highest-confidence candidate at or above ``floor``.

    The earliest candidate wins a tie.
    """
    best: CandidateAction | None = None
    for candidate in candidates:
        if candidate.confidence < floor:
            continue
        if best is None or candidate.confidence > best.confidence:
            best = candidate
    return best


SYSTEM_PROMPT = (
    "You read chat messages and decide whether they contain something the "
    "account owner should act on. Reply with a JSON object of the form "
    '{"actions": [{"type": ..., "description": ..., "confidence": 0.0-1.0, '
    '"details": {"title": ..., "content": ..., "datetime": ..., "priority": '
    '"low|medium|high|urgent", "category": ..., "urgency_reason": ..., '
    '"suggested_actions": [...], "context": ...}}]}. '
    "Allowed types: {types}. Return an empty list when nothing is actionable. "
    "Do not repeat actions listed as already created."
)


class OpenAIClassifier:
    """Chat-completions classifier over the OpenAI HTTP API.

    Typical usage:
        async with OpenAIClassifier(api_key="sk-...") as classifier:
            candidates = await classifier.classify(request)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the classifier.

        Args:
            api_key: OpenAI API key.
            model: Chat completion model.
            base_url: API base URL.
            timeout: Request timeout in seconds.
            client: Preconfigured HTTP client (tests inject a mock transport).
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> OpenAIClassifier:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager."""
        await self.close()

    def build_messages(self, request: ClassificationRequest) -> list[dict[str, str]]:
        """Build the chat messages sent to the model."""
        message = request.message
        system = SYSTEM_PROMPT.replace("{types}", ", ".join(t.value for t in ActionType))

        context: dict[str, Any] = {
            "sender": message.sender_display_name or message.sender_id,
            "from_owner": request.from_owner,
            "is_group": message.is_group_conversation,
            "is_grouped_message": message.is_grouped_message,
            "message_count": message.message_count,
            "recent_actions": [
                {"type": h.type, "description": h.description} for h in request.history
            ],
            "already_created": request.signatures,
            "group_topics": request.topics,
        }
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": f"Context: {json.dumps(context)}\n\n{message.body}"},
        ]

    async def classify(self, request: ClassificationRequest) -> list[CandidateAction]:
        """Classify a combined message.

        Raises:
            ClassificationError: On transport failure or an API error status.
            ClassificationParseError: If the response cannot be parsed.
        """
        body = {
            "model": self.model,
            "messages": self.build_messages(request),
            "temperature": 0.3,
            "response_format": {"type": "json_object"},
        }
        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise ClassificationError(f"Classification request failed: {e}") from e

        if response.status_code >= 400:
            raise ClassificationError(
                f"Classification API error: {response.text}",
                status_code=response.status_code,
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassificationParseError(f"Unexpected completion payload: {e}") from e
        if not isinstance(content, str):
            raise ClassificationParseError("Completion content is not text")

        return parse_candidates(content)


class ClassificationGateway:
    """Primary classifier with a keyword fallback and best-candidate selection."""

    def __init__(
        self,
        fallback: ActionClassifier,
        primary: ActionClassifier | None = None,
        confidence_floor: float = 0.7,
        timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize the gateway.

        Args:
            fallback: Classifier used when the primary is missing or fails.
            primary: Model-backed classifier, or None to always use the fallback.
            confidence_floor: Minimum confidence of the selected candidate.
            timeout_seconds: Upper bound on the primary call.
        """
        self._fallback = fallback
        self._primary = primary
        self.confidence_floor = confidence_floor
        self.timeout_seconds = timeout_seconds

    async def classify(self, request: ClassificationRequest) -> list[CandidateAction]:
        """Classify a request into zero or one candidate action.

        Args:
            request: Classification input.

        Returns:
            A list holding the selected candidate, or an empty list.
        """
        candidates = await self._classify_primary(request)
        source = "primary"
        if candidates is None:
            candidates = await self._fallback.classify(request)
            source = "fallback"

        best = select_best(candidates, self.confidence_floor)
        await logger.ainfo(
            "message_classified",
            source=source,
            candidates=len(candidates),
            selected=best.type if best else None,
            confidence=best.confidence if best else None,
        )
        return [best] if best else []

    async def _classify_primary(
        self, request: ClassificationRequest
    ) -> list[CandidateAction] | None:
        if self._primary is None:
            return None
        try:
            return await asyncio.wait_for(
                self._primary.classify(request),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            await logger.awarning("classification_timeout", timeout=self.timeout_seconds)
        except ClassificationParseError as e:
            await logger.awarning("classification_unparseable", error=str(e))
        except ClassificationError as e:
            await logger.awarning(
                "classification_failed",
                error=str(e),
                status_code=e.status_code,
            )
        except Exception as e:
            await logger.aexception("classification_crashed", error=str(e))
        return None
