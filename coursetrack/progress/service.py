"""Progress service layer.

Single entry point used by the HTTP routes. Combines the update protocol
(writes), the aggregator (derived views) and the course catalog (outlines).
Every call takes the learner ID explicitly.
"""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from .aggregator import ProgressAggregator, effective_percentage
from .exceptions import ProgressReferenceError, ProgressStorageError
from .protocol import ProgressUpdateProtocol
from .schemas import (
    CourseProgressView,
    DashboardView,
    LessonProgressResponse,
    ResumePointer,
)
from .store import STORAGE_ERRORS, ProgressStore


if TYPE_CHECKING:
    from coursetrack.catalog.schemas import CourseOutline
    from coursetrack.catalog.service import CatalogService

    from .models import ProgressRecord

logger = structlog.get_logger(__name__)


class ProgressService:
    """Service for learner progress tracking."""

    def __init__(
        self,
        store: ProgressStore,
        protocol: ProgressUpdateProtocol,
        aggregator: ProgressAggregator,
        catalog: "CatalogService | None" = None,
        dashboard_limit: int = 5,
    ):
        self.store = store
        self.protocol = protocol
        self.aggregator = aggregator
        self.catalog = catalog
        self.dashboard_limit = dashboard_limit

    # ==========================================================================
    # Playback Writes
    # ==========================================================================

    def report_position(
        self,
        user_id: UUID,
        lesson_id: UUID,
        position_seconds: float,
        duration_seconds: float,
    ) -> bool:
        """Buffer a position tick; returns False once shutting down."""
        return self.protocol.report_position(
            {
                "user_id": user_id,
                "lesson_id": lesson_id,
                "position_seconds": position_seconds,
                "duration_seconds": duration_seconds,
            }
        )

    async def flush(self, user_id: UUID, lesson_id: UUID) -> "ProgressRecord | None":
        return await self.protocol.flush(user_id, lesson_id)

    async def complete(
        self, user_id: UUID, lesson_id: UUID, duration_seconds: float
    ) -> "ProgressRecord":
        return await self.protocol.complete(
            {
                "user_id": user_id,
                "lesson_id": lesson_id,
                "duration_seconds": duration_seconds,
            }
        )

    async def reset(self, user_id: UUID, lesson_id: UUID) -> "ProgressRecord":
        return await self.protocol.reset(user_id, lesson_id)

    async def save_notes(
        self, user_id: UUID, lesson_id: UUID, notes: str
    ) -> "ProgressRecord":
        return await self.protocol.save_notes(user_id, lesson_id, notes)

    def has_pending(self, user_id: UUID, lesson_id: UUID) -> bool:
        return self.protocol.has_pending(user_id, lesson_id)

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get_lesson_progress(
        self, user_id: UUID, lesson_id: UUID
    ) -> LessonProgressResponse:
        """Single-lesson progress check. Never creates a record."""
        record = await self.store.get(user_id, lesson_id)
        if record is None:
            return LessonProgressResponse.empty(lesson_id)
        return LessonProgressResponse.from_record(record, effective_percentage(record))

    async def get_course_progress(
        self, user_id: UUID, course_id: UUID
    ) -> CourseProgressView:
        outline = await self._get_outline(course_id)
        return await self.aggregator.compute_course_progress(user_id, outline)

    async def get_resume_pointer(
        self, user_id: UUID, course_id: UUID
    ) -> ResumePointer:
        outline = await self._get_outline(course_id)
        pointer = await self.aggregator.compute_resume_pointer(user_id, outline)
        if pointer is None:
            raise ProgressReferenceError(f"Course {course_id} has no lessons")
        return pointer

    async def get_dashboard(self, user_id: UUID) -> DashboardView:
        return await self.aggregator.compute_dashboard(user_id, self.dashboard_limit)

    async def _get_outline(self, course_id: UUID) -> "CourseOutline":
        if self.catalog is None:
            raise ProgressStorageError("Course catalog not available")
        try:
            outline = await self.catalog.get_course_outline(course_id)
        except STORAGE_ERRORS as e:
            logger.warning(
                "catalog_read_failed", course_id=str(course_id), error=str(e)
            )
            raise ProgressStorageError(f"Course catalog unavailable: {e}") from e

        if outline is None:
            raise ProgressReferenceError(f"Course {course_id} not found")
        return outline

