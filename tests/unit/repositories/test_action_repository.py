"""Tests for action repository."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from action_lens.models.ai_action import AIAction
from action_lens.repositories.action import ActionRepository, SqlActionStore
from action_lens.repositories.base import DuplicateActionError, SenderScope
from action_lens.schemas.action import ActionCreate, ActionStatus


@pytest.fixture
def mock_session() -> AsyncMock:
    """Create a mock async session."""
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def repository(mock_session: AsyncMock) -> ActionRepository:
    """Create repository with mock session."""
    return ActionRepository(mock_session)


def _create_data(**overrides: object) -> ActionCreate:
    data: dict[str, object] = {
        "action_id": "action_u1_1_abc",
        "user_id": "u1",
        "type": "task",
        "description": "Send the report",
        "details": {"title": "Send the report"},
        "original_message": {"id": "m1", "body": "send the report"},
        "original_message_id": "m1",
        "message_ids": ["m1"],
        "conversation_key": "alice@c.us",
        "is_group": False,
        "from_owner": False,
        "confidence": 0.9,
    }
    data.update(overrides)
    return ActionCreate(**data)  # type: ignore[arg-type]


def _row(**overrides: object) -> AIAction:
    row = AIAction(
        **_create_data().model_dump(),
        status=ActionStatus.PENDING.value,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )
    for key, value in overrides.items():
        setattr(row, key, value)
    return row


class TestActionRepository:
    """Tests for ActionRepository."""

    @pytest.mark.asyncio
    async def test_create(self, repository: ActionRepository, mock_session: AsyncMock) -> None:
        """Test creating an action."""
        result = await repository.create(_create_data())

        mock_session.add.assert_called_once()
        mock_session.commit.assert_called_once()
        mock_session.refresh.assert_called_once()
        assert isinstance(result, AIAction)
        assert result.action_id == "action_u1_1_abc"
        assert result.status == "pending"
        assert result.created_at is not None

    @pytest.mark.asyncio
    async def test_create_duplicate(
        self, repository: ActionRepository, mock_session: AsyncMock
    ) -> None:
        """Test a uniqueness violation becomes DuplicateActionError."""
        mock_session.commit.side_effect = IntegrityError("INSERT", {}, Exception("unique"))

        with pytest.raises(DuplicateActionError) as exc_info:
            await repository.create(_create_data())

        mock_session.rollback.assert_called_once()
        assert exc_info.value.original_message_id == "m1"
        assert exc_info.value.action_type == "task"

    @pytest.mark.asyncio
    async def test_get_by_action_id(
        self, repository: ActionRepository, mock_session: AsyncMock
    ) -> None:
        """Test getting an action by public ID."""
        row = _row()
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = row
        mock_session.execute.return_value = mock_result

        result = await repository.get_by_action_id("action_u1_1_abc", "u1")

        assert result is row
        mock_session.execute.assert_called_once()

    @pytest.mark.asyncio
    async def test_list_recent(self, repository: ActionRepository, mock_session: AsyncMock) -> None:
        """Test listing recent actions."""
        rows = [_row(), _row(action_id="a2")]
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = rows
        mock_session.execute.return_value = mock_result

        result = await repository.list_recent(
            "u1",
            "alice@c.us",
            datetime(2024, 1, 1, tzinfo=UTC),
            sender_scope=SenderScope.OTHERS,
        )

        assert result == rows

    @pytest.mark.asyncio
    async def test_list_by_message_ids_empty(
        self, repository: ActionRepository, mock_session: AsyncMock
    ) -> None:
        """Test no query is made without message IDs."""
        result = await repository.list_by_message_ids("u1", [])

        assert result == []
        mock_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_set_status(self, repository: ActionRepository, mock_session: AsyncMock) -> None:
        """Test updating review status."""
        row = _row()
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = row
        mock_session.execute.return_value = mock_result

        result = await repository.set_status("action_u1_1_abc", "u1", ActionStatus.APPROVED)

        assert result is row
        assert row.status == "approved"
        assert row.updated_at is not None
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_set_status_not_found(
        self, repository: ActionRepository, mock_session: AsyncMock
    ) -> None:
        """Test updating a missing action returns None."""
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = None
        mock_session.execute.return_value = mock_result

        result = await repository.set_status("missing", "u1", ActionStatus.REJECTED)

        assert result is None
        mock_session.commit.assert_not_called()


class TestSqlActionStore:
    """Tests for SqlActionStore."""

    @pytest.fixture
    def database(self, mock_session: AsyncMock) -> MagicMock:
        """Database whose sessions are the mock session."""

        @asynccontextmanager
        async def session() -> AsyncIterator[AsyncMock]:
            yield mock_session

        database = MagicMock()
        database.session = session
        return database

    @pytest.mark.asyncio
    async def test_insert_action(self, database: MagicMock, mock_session: AsyncMock) -> None:
        """Test inserting returns a persisted action."""
        store = SqlActionStore(database)

        persisted = await store.insert_action(_create_data())

        assert persisted.action_id == "action_u1_1_abc"
        assert persisted.status == "pending"
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_query_recent_actions(
        self, database: MagicMock, mock_session: AsyncMock
    ) -> None:
        """Test rows are returned as history entries."""
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = [_row()]
        mock_session.execute.return_value = mock_result
        store = SqlActionStore(database)

        entries = await store.query_recent_actions(
            "u1", "alice@c.us", datetime(2024, 1, 1, tzinfo=UTC)
        )

        assert len(entries) == 1
        assert entries[0].type == "task"
        assert entries[0].from_owner is False

    @pytest.mark.asyncio
    async def test_get_action_missing(self, database: MagicMock, mock_session: AsyncMock) -> None:
        """Test a missing action returns None."""
        mock_result = MagicMock()
        mock_result.scalar_one_or_none.return_value = None
        mock_session.execute.return_value = mock_result
        store = SqlActionStore(database)

        assert await store.get_action("u1", "missing") is None
