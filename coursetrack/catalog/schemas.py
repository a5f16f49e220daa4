"""Ordered course outline consumed by the progress aggregator."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LessonOutline(BaseModel):
    """One lesson slot inside a module."""

    model_config = ConfigDict(frozen=True)

    lesson_id: UUID
    position: int = 0
    duration_seconds: float | None = Field(default=None, ge=0)
    title: str = ""


class ModuleOutline(BaseModel):
    """One module slot inside a course, with its lessons."""

    model_config = ConfigDict(frozen=True)

    module_id: UUID
    position: int = 0
    title: str = ""
    lessons: tuple[LessonOutline, ...] = ()

    def ordered_lessons(self) -> list[LessonOutline]:
        """Lessons in ascending position (stable for equal positions)."""
        return sorted(self.lessons, key=lambda lesson: lesson.position)


class CourseOutline(BaseModel):
    """Course structure: modules → lessons, each with an order index."""

    model_config = ConfigDict(frozen=True)

    course_id: UUID
    title: str = ""
    modules: tuple[ModuleOutline, ...] = ()

    def ordered_modules(self) -> list[ModuleOutline]:
        """Modules in ascending position (stable for equal positions)."""
        return sorted(self.modules, key=lambda module: module.position)

    def walk(self) -> list[tuple[ModuleOutline, LessonOutline]]:
        """Every (module, lesson) pair in module order, then lesson order."""
        return [
            (module, lesson)
            for module in self.ordered_modules()
            for lesson in module.ordered_lessons()
        ]

    @property
    def lesson_ids(self) -> list[UUID]:
        return [lesson.lesson_id for _, lesson in self.walk()]

    @property
    def lesson_count(self) -> int:
        return sum(len(module.lessons) for module in self.modules)

    @property
    def total_duration_seconds(self) -> float:
        return sum(lesson.duration_seconds or 0 for _, lesson in self.walk())
