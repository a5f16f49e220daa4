"""Read-only access to the course catalog.

Builds the ordered module → lesson outline of a course and answers lesson
existence checks. The catalog is never mutated from here.
"""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from .models import ContentStatus, Course, Lesson, Module
from .schemas import CourseOutline, LessonOutline, ModuleOutline


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


class CatalogService:
    """Service for course structure lookups."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_course = self.session.prepare(f"""
            SELECT id, title, slug, status, created_at
            FROM {self.keyspace}.courses WHERE id = ?
        """)

        self._get_module = self.session.prepare(f"""
            SELECT id, title, status FROM {self.keyspace}.modules WHERE id = ?
        """)

        self._get_lesson = self.session.prepare(f"""
            SELECT id, title, duration_seconds, video_playback_id, status
            FROM {self.keyspace}.lessons WHERE id = ?
        """)

        self._get_course_modules = self.session.prepare(f"""
            SELECT module_id, position FROM {self.keyspace}.course_modules
            WHERE course_id = ?
        """)

        self._get_module_lessons = self.session.prepare(f"""
            SELECT lesson_id, position FROM {self.keyspace}.module_lessons
            WHERE module_id = ?
        """)

    async def get_course(self, course_id: UUID) -> Course | None:
        """Get course by ID."""
        result = await self.session.aexecute(self._get_course, [course_id])
        row = result.one()
        return Course.from_row(row) if row else None

    async def get_module(self, module_id: UUID) -> Module | None:
        """Get module by ID."""
        result = await self.session.aexecute(self._get_module, [module_id])
        row = result.one()
        return Module.from_row(row) if row else None

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        """Get lesson by ID."""
        result = await self.session.aexecute(self._get_lesson, [lesson_id])
        row = result.one()
        return Lesson.from_row(row) if row else None

    async def lesson_exists(self, lesson_id: UUID) -> bool:
        """Check that the lesson exists and has not been archived."""
        lesson = await self.get_lesson(lesson_id)
        return lesson is not None and not lesson.is_archived

    async def get_course_outline(self, course_id: UUID) -> CourseOutline | None:
        """Build the ordered outline of a course.

        Links pointing at missing or archived modules and lessons are
        skipped. Returns None when the course itself does not exist.
        """
        course = await self.get_course(course_id)
        if course is None:
            return None

        module_links = await self.session.aexecute(
            self._get_course_modules, [course_id]
        )

        modules: list[ModuleOutline] = []
        for link in module_links:
            module = await self.get_module(link.module_id)
            if module is None or module.status == ContentStatus.ARCHIVED.value:
                logger.debug(
                    "catalog_module_link_skipped",
                    course_id=str(course_id),
                    module_id=str(link.module_id),
                )
                continue

            lessons = await self._get_lesson_outlines(module.id)
            modules.append(
                ModuleOutline(
                    module_id=module.id,
                    position=link.position or 0,
                    title=module.title,
                    lessons=tuple(lessons),
                )
            )

        return CourseOutline(
            course_id=course.id,
            title=course.title,
            modules=tuple(modules),
        )

    async def _get_lesson_outlines(self, module_id: UUID) -> list[LessonOutline]:
        lesson_links = await self.session.aexecute(
            self._get_module_lessons, [module_id]
        )

        outlines = []
        for link in lesson_links:
            lesson = await self.get_lesson(link.lesson_id)
            if lesson is None or lesson.is_archived:
                continue
            outlines.append(
                LessonOutline(
                    lesson_id=lesson.id,
                    position=link.position or 0,
                    duration_seconds=lesson.duration_seconds,
                    title=lesson.title,
                )
            )
        return outlines
