"""Tests for the Progress Store merge rules (in-memory backend).

Covers:
- lazy creation and point lookups
- per-field merge and last_watched_at refresh
- completed monotonicity and explicit reset
- list_by_user / list_recent
- validation and reference errors
"""

import asyncio
from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest

from coursetrack.progress.exceptions import (
    ProgressReferenceError,
    ProgressValidationError,
)
from coursetrack.progress.schemas import ProgressPatch
from coursetrack.progress.store import CollaboratorReferences, MemoryProgressStore


class TestGetAndUpsert:
    """Tests for get and upsert."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store, user_id, lesson_id) -> None:
        assert await store.get(user_id, lesson_id) is None
        # Reads never create records
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_upsert_creates_record(self, store, user_id, lesson_id) -> None:
        record = await store.upsert(
            user_id, lesson_id, {"position_seconds": 300, "duration_seconds": 600}
        )

        assert record.user_id == user_id
        assert record.lesson_id == lesson_id
        assert record.position_seconds == 300
        assert record.duration_seconds == 600
        assert record.completed is False
        assert await store.get(user_id, lesson_id) == record

    @pytest.mark.asyncio
    async def test_upsert_merges_fields(self, store, user_id, lesson_id) -> None:
        await store.upsert(user_id, lesson_id, {"notes": "intro"})
        record = await store.upsert(user_id, lesson_id, {"position_seconds": 42})

        assert record.notes == "intro"
        assert record.position_seconds == 42
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_upsert_refreshes_last_watched_at(
        self, store, user_id, lesson_id
    ) -> None:
        first = await store.upsert(user_id, lesson_id, {"position_seconds": 1})
        await asyncio.sleep(0.001)
        second = await store.upsert(user_id, lesson_id, {"position_seconds": 2})

        assert second.last_watched_at > first.last_watched_at

    @pytest.mark.asyncio
    async def test_returned_record_is_a_copy(self, store, user_id, lesson_id) -> None:
        record = await store.upsert(user_id, lesson_id, {"position_seconds": 10})
        record.position_seconds = 999

        stored = await store.get(user_id, lesson_id)
        assert stored.position_seconds == 10

    @pytest.mark.asyncio
    async def test_accepts_patch_model(self, store, user_id, lesson_id) -> None:
        record = await store.upsert(
            user_id, lesson_id, ProgressPatch(watch_time_seconds=12.5)
        )

        assert record.watch_time_seconds == 12.5


class TestCompletedMonotonic:
    """Tests for the never-downgrade rule on completed."""

    @pytest.mark.asyncio
    async def test_completed_false_ignored_without_reset(
        self, store, user_id, lesson_id
    ) -> None:
        await store.upsert(user_id, lesson_id, {"completed": True})
        record = await store.upsert(
            user_id, lesson_id, {"completed": False, "position_seconds": 5}
        )

        assert record.completed is True
        assert record.position_seconds == 5

    @pytest.mark.asyncio
    async def test_completed_false_alone_returns_existing(
        self, store, user_id, lesson_id
    ) -> None:
        await store.upsert(user_id, lesson_id, {"completed": True})

        record = await store.upsert(user_id, lesson_id, {"completed": False})

        assert record.completed is True

    @pytest.mark.asyncio
    async def test_completed_at_stamped_once(self, store, user_id, lesson_id) -> None:
        first = await store.upsert(user_id, lesson_id, {"completed": True})
        await asyncio.sleep(0.001)
        second = await store.upsert(user_id, lesson_id, {"completed": True})

        assert first.completed_at is not None
        assert second.completed_at == first.completed_at

    @pytest.mark.asyncio
    async def test_reset_clears_completion_and_keeps_notes(
        self, store, user_id, lesson_id
    ) -> None:
        await store.upsert(
            user_id,
            lesson_id,
            {"completed": True, "position_seconds": 600, "notes": "keep me"},
        )

        record = await store.reset(user_id, lesson_id)

        assert record.completed is False
        assert record.completed_at is None
        assert record.position_seconds == 0
        assert record.watch_time_seconds == 0
        assert record.notes == "keep me"

    @pytest.mark.asyncio
    async def test_upsert_with_reset_flag(self, store, user_id, lesson_id) -> None:
        await store.upsert(user_id, lesson_id, {"completed": True})

        record = await store.upsert(user_id, lesson_id, {"completed": False}, reset=True)

        assert record.completed is False


class TestListing:
    """Tests for list_by_user and list_recent."""

    @pytest.mark.asyncio
    async def test_list_by_user_omits_missing(self, store, user_id) -> None:
        watched, unwatched = uuid4(), uuid4()
        await store.upsert(user_id, watched, {"position_seconds": 10})
        await store.upsert(uuid4(), unwatched, {"position_seconds": 10})

        records = await store.list_by_user(user_id, [watched, unwatched])

        assert set(records) == {watched}

    @pytest.mark.asyncio
    async def test_list_recent_orders_by_last_watched(self, store, user_id) -> None:
        lesson_ids = [uuid4(), uuid4(), uuid4()]
        for lesson_id in lesson_ids:
            await store.upsert(user_id, lesson_id, {"position_seconds": 1})
            await asyncio.sleep(0.001)

        recent = await store.list_recent(user_id, limit=2)

        assert [r.lesson_id for r in recent] == [lesson_ids[2], lesson_ids[1]]


class TestValidation:
    """Tests for rejected writes."""

    @pytest.mark.asyncio
    async def test_empty_fields_rejected(self, store, user_id, lesson_id) -> None:
        with pytest.raises(ProgressValidationError):
            await store.upsert(user_id, lesson_id, {})

    @pytest.mark.asyncio
    async def test_negative_position_rejected(self, store, user_id, lesson_id) -> None:
        with pytest.raises(ProgressValidationError) as exc_info:
            await store.upsert(user_id, lesson_id, {"position_seconds": -1})

        assert "position_seconds" in exc_info.value.message
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, store, user_id, lesson_id) -> None:
        with pytest.raises(ProgressValidationError):
            await store.upsert(user_id, lesson_id, {"user_id": uuid4()})

    @pytest.mark.asyncio
    async def test_downgrade_on_missing_record_rejected(
        self, store, user_id, lesson_id
    ) -> None:
        with pytest.raises(ProgressValidationError):
            await store.upsert(user_id, lesson_id, {"completed": False})


class TestReferences:
    """Tests for collaborator reference checks."""

    @pytest.fixture
    def catalog(self):
        catalog = Mock()
        catalog.lesson_exists = AsyncMock(return_value=True)
        return catalog

    @pytest.fixture
    def directory(self):
        directory = Mock()
        directory.user_exists = AsyncMock(return_value=True)
        return directory

    @pytest.mark.asyncio
    async def test_unknown_lesson_rejected(
        self, catalog, directory, user_id, lesson_id
    ) -> None:
        catalog.lesson_exists.return_value = False
        store = MemoryProgressStore(CollaboratorReferences(catalog, directory))

        with pytest.raises(ProgressReferenceError):
            await store.upsert(user_id, lesson_id, {"position_seconds": 1})

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(
        self, catalog, directory, user_id, lesson_id
    ) -> None:
        directory.user_exists.return_value = False
        store = MemoryProgressStore(CollaboratorReferences(catalog, directory))

        with pytest.raises(ProgressReferenceError):
            await store.upsert(user_id, lesson_id, {"position_seconds": 1})

        catalog.lesson_exists.assert_not_called()

    @pytest.mark.asyncio
    async def test_known_references_accepted(
        self, catalog, directory, user_id, lesson_id
    ) -> None:
        store = MemoryProgressStore(CollaboratorReferences(catalog, directory))

        await store.upsert(user_id, lesson_id, {"position_seconds": 1})

        directory.user_exists.assert_awaited_once_with(user_id)
        catalog.lesson_exists.assert_awaited_once_with(lesson_id)
