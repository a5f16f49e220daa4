"""Shared test fixtures."""

import os
import tempfile
from pathlib import Path


# Must run before coursetrack.config caches the settings
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("PROGRESS_STORE_BACKEND", "memory")
os.environ.setdefault(
    "LOG_DIR", str(Path(tempfile.gettempdir()) / "coursetrack-test-logs")
)

from collections.abc import Callable  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from coursetrack.catalog.schemas import (  # noqa: E402
    CourseOutline,
    LessonOutline,
    ModuleOutline,
)
from coursetrack.progress.store import MemoryProgressStore  # noqa: E402


@pytest.fixture
def app() -> FastAPI:
    """Fresh application (lifespan is not run)."""
    from coursetrack.main import create_app

    return create_app()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Synchronous test client."""
    return TestClient(app)


@pytest.fixture
def user_id() -> UUID:
    """Test learner ID."""
    return uuid4()


@pytest.fixture
def lesson_id() -> UUID:
    """Test lesson ID."""
    return uuid4()


@pytest.fixture
def store() -> MemoryProgressStore:
    """In-memory progress store without reference checks."""
    return MemoryProgressStore()


@pytest.fixture
def make_outline() -> Callable[..., CourseOutline]:
    """Build a course outline from lesson counts per module.

    ``make_outline([2, 3])`` gives two modules holding two and three lessons,
    every lesson ``duration`` seconds long.
    """

    def _make(lessons_per_module: list[int], duration: float | None = 600) -> CourseOutline:
        modules = []
        for module_position, count in enumerate(lessons_per_module, start=1):
            lessons = tuple(
                LessonOutline(
                    lesson_id=uuid4(),
                    position=lesson_position,
                    duration_seconds=duration,
                    title=f"Lesson {module_position}.{lesson_position}",
                )
                for lesson_position in range(1, count + 1)
            )
            modules.append(
                ModuleOutline(
                    module_id=uuid4(),
                    position=module_position,
                    title=f"Module {module_position}",
                    lessons=lessons,
                )
            )
        return CourseOutline(course_id=uuid4(), title="Course", modules=tuple(modules))

    return _make
