"""Tests for CassandraProgressStore with a mocked session."""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, Mock
from uuid import UUID, uuid4

import pytest
from cassandra import OperationTimedOut
from cassandra.cluster import NoHostAvailable, Session

from coursetrack.progress.exceptions import ProgressStorageError
from coursetrack.progress.store import CassandraProgressStore


def make_row(user_id: UUID, lesson_id: UUID, **overrides) -> SimpleNamespace:
    """Row shaped like a lesson_progress SELECT * result."""
    values = {
        "user_id": user_id,
        "lesson_id": lesson_id,
        "watch_time_seconds": None,
        "position_seconds": None,
        "duration_seconds": None,
        "completed": None,
        "completed_at": None,
        "last_watched_at": datetime(2026, 1, 5, 12, 0, 0),
        "notes": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def result_of(*rows) -> Mock:
    """ResultSet stand-in: iterable with .one()."""
    result = MagicMock()
    result.one.return_value = rows[0] if rows else None
    result.__iter__.side_effect = lambda: iter(rows)
    return result


@pytest.fixture
def mock_session():
    """Mock Cassandra session."""
    session = Mock(spec=Session)
    # Keep the CQL on the prepared statement so tests can inspect it
    session.prepare = Mock(side_effect=lambda query: SimpleNamespace(query=query))
    session.aexecute = AsyncMock(return_value=result_of())
    return session


@pytest.fixture
def cassandra_store(mock_session) -> CassandraProgressStore:
    return CassandraProgressStore(session=mock_session, keyspace="test_keyspace")


def update_queries(mock_session) -> list[str]:
    return [
        call.args[0]
        for call in mock_session.prepare.call_args_list
        if "UPDATE" in call.args[0]
    ]


class TestReads:
    """Tests for get / list_by_user / list_recent."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        assert await cassandra_store.get(user_id, lesson_id) is None

        statement, params = mock_session.aexecute.call_args.args
        assert "WHERE user_id = ? AND lesson_id = ?" in statement.query
        assert params == [user_id, lesson_id]

    @pytest.mark.asyncio
    async def test_get_maps_row(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        mock_session.aexecute.return_value = result_of(
            make_row(
                user_id,
                lesson_id,
                position_seconds=300.0,
                duration_seconds=600.0,
                completed=False,
            )
        )

        record = await cassandra_store.get(user_id, lesson_id)

        assert record.position_seconds == 300.0
        assert record.completed is False
        # Cassandra returns naive timestamps
        assert record.last_watched_at.tzinfo == UTC

    @pytest.mark.asyncio
    async def test_list_by_user_empty_skips_query(
        self, cassandra_store, mock_session, user_id
    ) -> None:
        assert await cassandra_store.list_by_user(user_id, []) == {}
        mock_session.aexecute.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_by_user_uses_in_query(
        self, cassandra_store, mock_session, user_id
    ) -> None:
        first, second = uuid4(), uuid4()
        mock_session.aexecute.return_value = result_of(make_row(user_id, first))

        records = await cassandra_store.list_by_user(user_id, [first, second, first])

        statement, params = mock_session.aexecute.call_args.args
        assert "lesson_id IN ?" in statement.query
        assert params == [user_id, [first, second]]
        assert list(records) == [first]

    @pytest.mark.asyncio
    async def test_list_recent_sorted_newest_first(
        self, cassandra_store, mock_session, user_id
    ) -> None:
        older, newer = uuid4(), uuid4()
        mock_session.aexecute.return_value = result_of(
            make_row(user_id, older, last_watched_at=datetime(2026, 1, 1)),
            make_row(user_id, newer, last_watched_at=datetime(2026, 2, 1)),
        )

        records = await cassandra_store.list_recent(user_id)

        assert [r.lesson_id for r in records] == [newer, older]


class TestWrites:
    """Tests for column-level UPDATE upserts."""

    @pytest.mark.asyncio
    async def test_position_write_touches_only_supplied_columns(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        mock_session.aexecute.side_effect = [
            result_of(),
            result_of(make_row(user_id, lesson_id, position_seconds=42.0)),
        ]

        record = await cassandra_store.upsert(
            user_id, lesson_id, {"position_seconds": 42, "duration_seconds": 600}
        )

        (query,) = update_queries(mock_session)
        assert "position_seconds = ?" in query
        assert "duration_seconds = ?" in query
        assert "last_watched_at = ?" in query
        assert "completed" not in query
        assert "notes" not in query

        _statement, params = mock_session.aexecute.call_args_list[0].args
        assert params[:2] == [42, 600]
        assert isinstance(params[2], datetime)
        assert params[3:] == [user_id, lesson_id]
        assert record.position_seconds == 42.0

    @pytest.mark.asyncio
    async def test_update_statement_prepared_once_per_column_set(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        mock_session.aexecute.return_value = result_of(make_row(user_id, lesson_id))

        await cassandra_store.upsert(user_id, lesson_id, {"notes": "a"})
        await cassandra_store.upsert(user_id, lesson_id, {"notes": "b"})

        assert len(update_queries(mock_session)) == 1

    @pytest.mark.asyncio
    async def test_first_completion_stamps_completed_at(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        mock_session.aexecute.side_effect = [
            result_of(),  # existing record lookup
            result_of(),  # UPDATE
            result_of(make_row(user_id, lesson_id, completed=True)),
        ]

        await cassandra_store.upsert(user_id, lesson_id, {"completed": True})

        (query,) = update_queries(mock_session)
        assert "completed = ?" in query
        assert "completed_at = ?" in query

    @pytest.mark.asyncio
    async def test_repeated_completion_keeps_completed_at(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        completed_row = make_row(
            user_id, lesson_id, completed=True, completed_at=datetime(2026, 1, 1)
        )
        mock_session.aexecute.side_effect = [
            result_of(completed_row),
            result_of(),
            result_of(completed_row),
        ]

        await cassandra_store.upsert(user_id, lesson_id, {"completed": True})

        (query,) = update_queries(mock_session)
        assert "completed_at" not in query

    @pytest.mark.asyncio
    async def test_read_back_miss_returns_written_values(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        mock_session.aexecute.side_effect = [result_of(), result_of()]

        record = await cassandra_store.upsert(user_id, lesson_id, {"notes": "hi"})

        assert record.notes == "hi"
        assert record.user_id == user_id


class TestStorageErrors:
    """Driver errors surface as ProgressStorageError."""

    @pytest.mark.asyncio
    async def test_no_host_available_wrapped(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        mock_session.aexecute.side_effect = NoHostAvailable("all down", {})

        with pytest.raises(ProgressStorageError):
            await cassandra_store.get(user_id, lesson_id)

    @pytest.mark.asyncio
    async def test_timeout_wrapped_on_write(
        self, cassandra_store, mock_session, user_id, lesson_id
    ) -> None:
        mock_session.aexecute.side_effect = OperationTimedOut()

        with pytest.raises(ProgressStorageError):
            await cassandra_store.upsert(user_id, lesson_id, {"position_seconds": 1})
