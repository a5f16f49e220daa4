"""Progress Aggregator: derived views over Progress Store reads.

This module is the only place percentages are computed. Course pages, the
resume pointer and the dashboard all go through it.

Read-only: nothing here mutates the store.
"""

import math
from uuid import UUID

import structlog

from coursetrack.catalog.schemas import CourseOutline, LessonOutline

from .exceptions import ProgressStorageError
from .models import LessonProgressStatus, ProgressRecord
from .schemas import (
    ContinueWatchingItem,
    CourseProgressView,
    DashboardView,
    LessonProgressSummary,
    ModuleProgressSummary,
    ResumeAction,
    ResumePointer,
)
from .store import ProgressStore


logger = structlog.get_logger(__name__)

FULL = 100


def round_half_up(value: float) -> int:
    """Round to nearest integer, halves away from zero for non-negatives."""
    return math.floor(value + 0.5)


def lesson_percentage(position: float | None, duration: float | None) -> int:
    """Percentage watched, bounded to [0, 100].

    0 when duration is absent or not positive, or nothing was watched.
    """
    if not duration or duration <= 0 or not position or position <= 0:
        return 0
    return min(round_half_up(position / duration * 100), FULL)


def effective_percentage(
    record: ProgressRecord | None, fallback_duration: float | None = None
) -> int:
    """Percentage used in aggregation: completed lessons always count 100."""
    if record is None:
        return 0
    if record.completed:
        return FULL
    return lesson_percentage(
        record.effective_position, record.duration_seconds or fallback_duration
    )


def average_percentage(percentages: list[int]) -> int:
    if not percentages:
        return 0
    return round_half_up(sum(percentages) / len(percentages))


def lesson_status(record: ProgressRecord | None) -> LessonProgressStatus:
    if record is None:
        return LessonProgressStatus.NOT_STARTED
    return record.status


def resume_action(record: ProgressRecord | None) -> ResumeAction:
    """Start / continue / review label for a single lesson."""
    status = lesson_status(record)
    if status == LessonProgressStatus.COMPLETED:
        return ResumeAction.REVIEW
    if status == LessonProgressStatus.IN_PROGRESS:
        return ResumeAction.CONTINUE
    return ResumeAction.START


class ProgressAggregator:
    """Computes course progress, resume pointers and dashboard totals."""

    def __init__(self, store: ProgressStore):
        self.store = store

    async def _load(
        self, user_id: UUID, lesson_ids: list[UUID]
    ) -> tuple[dict[UUID, ProgressRecord], bool]:
        """Records for the lessons, or an empty map when storage is down."""
        try:
            return await self.store.list_by_user(user_id, lesson_ids), False
        except ProgressStorageError as e:
            logger.warning(
                "progress_read_degraded",
                user_id=str(user_id),
                lesson_count=len(lesson_ids),
                error=e.message,
            )
            return {}, True

    async def compute_course_progress(
        self, user_id: UUID, outline: CourseOutline
    ) -> CourseProgressView:
        """Average effective percentage over every lesson of the course.

        A course with no lessons is 0%.
        """
        walk = outline.walk()
        records, degraded = await self._load(
            user_id, [lesson.lesson_id for _, lesson in walk]
        )

        lessons: list[LessonProgressSummary] = []
        modules: list[ModuleProgressSummary] = []

        for module in outline.ordered_modules():
            module_percentages = []
            module_completed = 0
            for lesson in module.ordered_lessons():
                record = records.get(lesson.lesson_id)
                percentage = effective_percentage(record, lesson.duration_seconds)
                module_percentages.append(percentage)
                if record is not None and record.completed:
                    module_completed += 1
                lessons.append(
                    self._summarize(module.module_id, lesson, record, percentage)
                )

            modules.append(
                ModuleProgressSummary(
                    module_id=module.module_id,
                    title=module.title,
                    position=module.position,
                    lessons_total=len(module_percentages),
                    lessons_completed=module_completed,
                    percentage=average_percentage(module_percentages),
                )
            )

        return CourseProgressView(
            course_id=outline.course_id,
            user_id=user_id,
            lessons_total=len(lessons),
            lessons_completed=sum(module.lessons_completed for module in modules),
            percentage=average_percentage([lesson.percentage for lesson in lessons]),
            total_duration_seconds=outline.total_duration_seconds,
            modules=modules,
            lessons=lessons,
            degraded=degraded,
        )

    async def compute_resume_pointer(
        self, user_id: UUID, outline: CourseOutline
    ) -> ResumePointer | None:
        """First lesson not completed, else the first lesson of the course.

        Returns None only for a course without lessons.
        """
        walk = outline.walk()
        if not walk:
            return None

        records, degraded = await self._load(
            user_id, [lesson.lesson_id for _, lesson in walk]
        )

        target = next(
            (
                (module, lesson)
                for module, lesson in walk
                if not self._is_completed(records.get(lesson.lesson_id))
            ),
            None,
        )
        all_completed = target is None
        module, lesson = target or walk[0]
        record = records.get(lesson.lesson_id)

        started = any(
            lesson_status(records.get(item.lesson_id))
            != LessonProgressStatus.NOT_STARTED
            for _, item in walk
        )
        if not started:
            action = ResumeAction.START
        elif all_completed:
            action = ResumeAction.REVIEW
        else:
            action = ResumeAction.CONTINUE

        position = 0.0
        if not all_completed and record is not None:
            position = record.effective_position or 0.0

        return ResumePointer(
            course_id=outline.course_id,
            module_id=module.module_id,
            lesson_id=lesson.lesson_id,
            position_seconds=position,
            action=action,
            degraded=degraded,
        )

    async def compute_dashboard(self, user_id: UUID, limit: int = 5) -> DashboardView:
        """Continue-watching list and learner-wide totals."""
        try:
            records = await self.store.list_recent(user_id)
        except ProgressStorageError as e:
            logger.warning(
                "progress_read_degraded", user_id=str(user_id), error=e.message
            )
            return DashboardView(user_id=user_id, degraded=True)

        items = [
            ContinueWatchingItem(
                lesson_id=record.lesson_id,
                percentage=effective_percentage(record),
                completed=record.completed,
                resume_position_seconds=(
                    0 if record.completed else record.effective_position or 0
                ),
                duration_seconds=record.duration_seconds,
                last_watched_at=record.last_watched_at,
                action=resume_action(record),
            )
            for record in records[:limit]
        ]

        return DashboardView(
            user_id=user_id,
            continue_watching=items,
            lessons_started=sum(
                1
                for record in records
                if record.status != LessonProgressStatus.NOT_STARTED
            ),
            lessons_completed=sum(1 for record in records if record.completed),
            total_watch_time_seconds=sum(
                record.watch_time_seconds or 0 for record in records
            ),
        )

    @staticmethod
    def _is_completed(record: ProgressRecord | None) -> bool:
        return record is not None and record.completed

    @staticmethod
    def _summarize(
        module_id: UUID,
        lesson: LessonOutline,
        record: ProgressRecord | None,
        percentage: int,
    ) -> LessonProgressSummary:
        return LessonProgressSummary(
            lesson_id=lesson.lesson_id,
            module_id=module_id,
            title=lesson.title,
            position=lesson.position,
            status=lesson_status(record),
            percentage=percentage,
            resume_position_seconds=(
                0
                if record is None or record.completed
                else record.effective_position or 0
            ),
            duration_seconds=(
                (record.duration_seconds if record else None)
                or lesson.duration_seconds
            ),
        )
