"""Tests for the progress HTTP endpoints."""

import asyncio
from unittest.mock import AsyncMock, Mock
from uuid import UUID, uuid4

import httpx
import pytest
from fastapi import FastAPI

from coursetrack.auth.security import create_access_token
from coursetrack.catalog.schemas import CourseOutline
from coursetrack.progress.aggregator import ProgressAggregator
from coursetrack.progress.exceptions import ProgressStorageError
from coursetrack.progress.protocol import ProgressUpdateProtocol
from coursetrack.progress.service import ProgressService
from coursetrack.progress.store import MemoryProgressStore


@pytest.fixture
def catalog():
    """Catalog collaborator returning outlines set per test."""
    catalog = Mock()
    catalog.get_course_outline = AsyncMock(return_value=None)
    return catalog


@pytest.fixture
def progress_service(store: MemoryProgressStore, catalog) -> ProgressService:
    protocol = ProgressUpdateProtocol(
        store, window_seconds=0.05, backoff_seconds=0, notes_max_length=20
    )
    return ProgressService(
        store=store,
        protocol=protocol,
        aggregator=ProgressAggregator(store),
        catalog=catalog,
        dashboard_limit=5,
    )


@pytest.fixture
def wired_app(app: FastAPI, progress_service: ProgressService) -> FastAPI:
    app.state.progress_service = progress_service
    return app


@pytest.fixture
def auth_headers(user_id: UUID) -> dict[str, str]:
    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}


def async_client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


class TestPlaybackEndpoints:
    """Position, flush, complete and reset."""

    @pytest.mark.asyncio
    async def test_position_is_accepted_and_buffered(
        self, wired_app, auth_headers, lesson_id
    ) -> None:
        async with async_client(wired_app) as client:
            response = await client.put(
                f"/v1/progress/lessons/{lesson_id}/position",
                json={"position_seconds": 30, "duration_seconds": 600},
                headers=auth_headers,
            )

        assert response.status_code == 202
        data = response.json()
        assert data["accepted"] is True
        assert data["pending_flush"] is True

    @pytest.mark.asyncio
    async def test_position_then_flush(
        self, wired_app, store, auth_headers, user_id, lesson_id
    ) -> None:
        async with async_client(wired_app) as client:
            await client.put(
                f"/v1/progress/lessons/{lesson_id}/position",
                json={"position_seconds": 300, "duration_seconds": 600},
                headers=auth_headers,
            )
            response = await client.post(
                f"/v1/progress/lessons/{lesson_id}/flush", headers=auth_headers
            )

        assert response.status_code == 200
        data = response.json()
        assert data["flushed"] is True
        assert data["progress"]["percentage"] == 50
        assert data["progress"]["resume_position_seconds"] == 300
        assert (await store.get(user_id, lesson_id)).position_seconds == 300

    @pytest.mark.asyncio
    async def test_position_written_after_window(
        self, wired_app, store, auth_headers, user_id, lesson_id
    ) -> None:
        async with async_client(wired_app) as client:
            for seconds in (100, 105):
                await client.put(
                    f"/v1/progress/lessons/{lesson_id}/position",
                    json={"position_seconds": seconds, "duration_seconds": 600},
                    headers=auth_headers,
                )

        await asyncio.sleep(0.15)
        assert (await store.get(user_id, lesson_id)).position_seconds == 105

    @pytest.mark.asyncio
    async def test_flush_with_nothing_pending(
        self, wired_app, auth_headers, lesson_id
    ) -> None:
        async with async_client(wired_app) as client:
            response = await client.post(
                f"/v1/progress/lessons/{lesson_id}/flush", headers=auth_headers
            )

        assert response.status_code == 200
        assert response.json()["flushed"] is False

    @pytest.mark.asyncio
    async def test_negative_position_rejected(
        self, wired_app, auth_headers, lesson_id
    ) -> None:
        async with async_client(wired_app) as client:
            response = await client.put(
                f"/v1/progress/lessons/{lesson_id}/position",
                json={"position_seconds": -1, "duration_seconds": 600},
                headers=auth_headers,
            )

        assert response.status_code == 422
        assert response.json()["error"] is True

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(
        self, wired_app, auth_headers, lesson_id
    ) -> None:
        async with async_client(wired_app) as client:
            response = await client.put(
                f"/v1/progress/lessons/{lesson_id}/position",
                json={"position_seconds": 1, "duration_seconds": 600, "completed": True},
                headers=auth_headers,
            )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_complete_lesson(self, wired_app, auth_headers, lesson_id) -> None:
        async with async_client(wired_app) as client:
            response = await client.post(
                f"/v1/progress/lessons/{lesson_id}/complete",
                json={"duration_seconds": 600},
                headers=auth_headers,
            )

        assert response.status_code == 200
        data = response.json()
        assert data["completed"] is True
        assert data["percentage"] == 100
        assert data["status"] == "completed"

    @pytest.mark.asyncio
    async def test_complete_storage_failure_is_503(
        self, wired_app, store, auth_headers, lesson_id
    ) -> None:
        store.upsert = AsyncMock(side_effect=ProgressStorageError("down"))

        async with async_client(wired_app) as client:
            response = await client.post(
                f"/v1/progress/lessons/{lesson_id}/complete",
                json={"duration_seconds": 600},
                headers=auth_headers,
            )

        assert response.status_code == 503
        assert response.json()["message"] == "down"

    @pytest.mark.asyncio
    async def test_reset_lesson(self, wired_app, auth_headers, lesson_id) -> None:
        async with async_client(wired_app) as client:
            await client.post(
                f"/v1/progress/lessons/{lesson_id}/complete",
                json={"duration_seconds": 600},
                headers=auth_headers,
            )
            response = await client.post(
                f"/v1/progress/lessons/{lesson_id}/reset", headers=auth_headers
            )

        assert response.status_code == 200
        assert response.json()["completed"] is False
        assert response.json()["percentage"] == 0


class TestNotesEndpoint:
    """Notes path."""

    @pytest.mark.asyncio
    async def test_save_notes(self, wired_app, auth_headers, lesson_id) -> None:
        async with async_client(wired_app) as client:
            response = await client.put(
                f"/v1/progress/lessons/{lesson_id}/notes",
                json={"notes": "revisit 2:30"},
                headers=auth_headers,
            )

        assert response.status_code == 200
        assert response.json()["notes"] == "revisit 2:30"
        assert response.json()["has_progress"] is True

    @pytest.mark.asyncio
    async def test_notes_too_long(self, wired_app, auth_headers, lesson_id) -> None:
        async with async_client(wired_app) as client:
            response = await client.put(
                f"/v1/progress/lessons/{lesson_id}/notes",
                json={"notes": "x" * 21},
                headers=auth_headers,
            )

        assert response.status_code == 422


class TestQueryEndpoints:
    """Lesson, course, resume and dashboard reads."""

    @pytest.mark.asyncio
    async def test_lesson_without_progress(
        self, wired_app, store, auth_headers, lesson_id
    ) -> None:
        async with async_client(wired_app) as client:
            response = await client.get(
                f"/v1/progress/lessons/{lesson_id}", headers=auth_headers
            )

        assert response.status_code == 200
        data = response.json()
        assert data["has_progress"] is False
        assert data["percentage"] == 0
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_course_progress(
        self, wired_app, catalog, store, auth_headers, user_id, make_outline
    ) -> None:
        outline: CourseOutline = make_outline([2])
        catalog.get_course_outline.return_value = outline
        first = outline.lesson_ids[0]
        await store.upsert(user_id, first, {"completed": True})

        async with async_client(wired_app) as client:
            response = await client.get(
                f"/v1/progress/courses/{outline.course_id}", headers=auth_headers
            )

        assert response.status_code == 200
        data = response.json()
        assert data["percentage"] == 50
        assert data["lessons_total"] == 2
        assert data["lessons_completed"] == 1
        assert data["degraded"] is False

    @pytest.mark.asyncio
    async def test_unknown_course_is_404(self, wired_app, auth_headers) -> None:
        async with async_client(wired_app) as client:
            response = await client.get(
                f"/v1/progress/courses/{uuid4()}", headers=auth_headers
            )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_resume_pointer(
        self, wired_app, catalog, store, auth_headers, user_id, make_outline
    ) -> None:
        outline: CourseOutline = make_outline([3])
        catalog.get_course_outline.return_value = outline
        first, second, _third = outline.lesson_ids
        await store.upsert(user_id, first, {"completed": True})
        await store.upsert(
            user_id, second, {"position_seconds": 90, "duration_seconds": 600}
        )

        async with async_client(wired_app) as client:
            response = await client.get(
                f"/v1/progress/courses/{outline.course_id}/resume",
                headers=auth_headers,
            )

        assert response.status_code == 200
        data = response.json()
        assert data["lesson_id"] == str(second)
        assert data["position_seconds"] == 90
        assert data["action"] == "continue"

    @pytest.mark.asyncio
    async def test_resume_pointer_empty_course_is_404(
        self, wired_app, catalog, auth_headers
    ) -> None:
        outline = CourseOutline(course_id=uuid4())
        catalog.get_course_outline.return_value = outline

        async with async_client(wired_app) as client:
            response = await client.get(
                f"/v1/progress/courses/{outline.course_id}/resume",
                headers=auth_headers,
            )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_dashboard(self, wired_app, store, auth_headers, user_id) -> None:
        await store.upsert(user_id, uuid4(), {"completed": True, "watch_time_seconds": 60})

        async with async_client(wired_app) as client:
            response = await client.get("/v1/progress/dashboard", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["lessons_completed"] == 1
        assert data["total_watch_time_seconds"] == 60
        assert data["continue_watching"][0]["action"] == "review"


class TestAccess:
    """Auth and service availability."""

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, wired_app, lesson_id) -> None:
        async with async_client(wired_app) as client:
            response = await client.get(f"/v1/progress/lessons/{lesson_id}")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_garbage_token_is_401(self, wired_app, lesson_id) -> None:
        async with async_client(wired_app) as client:
            response = await client.get(
                f"/v1/progress/lessons/{lesson_id}",
                headers={"Authorization": "Bearer not-a-jwt"},
            )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_service_unavailable_is_503(
        self, app, auth_headers, lesson_id
    ) -> None:
        app.state.progress_service = None

        async with async_client(app) as client:
            response = await client.get(
                f"/v1/progress/lessons/{lesson_id}", headers=auth_headers
            )

        assert response.status_code == 503
