"""Pydantic schemas for lesson progress tracking.

Event models accepted by the update protocol, the partial write accepted by
the store, request bodies for the HTTP surface and the derived views
produced by the aggregator.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import LessonProgressStatus, ProgressRecord


# ==============================================================================
# Playback Events
# ==============================================================================


class PositionUpdate(BaseModel):
    """Periodic playback position report for one (user, lesson) pair."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: UUID
    lesson_id: UUID
    position_seconds: float = Field(..., ge=0, allow_inf_nan=False)
    duration_seconds: float = Field(..., ge=0, allow_inf_nan=False)


class CompletionEvent(BaseModel):
    """Emitted once when the learner finishes a lesson."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: UUID
    lesson_id: UUID
    duration_seconds: float = Field(..., ge=0, allow_inf_nan=False)


class ProgressPatch(BaseModel):
    """Partial field set accepted by ``ProgressStore.upsert``."""

    model_config = ConfigDict(extra="forbid")

    watch_time_seconds: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    position_seconds: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    duration_seconds: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    completed: bool | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def require_one_field(self) -> "ProgressPatch":
        if not self.model_fields_set or all(
            getattr(self, name) is None for name in self.model_fields_set
        ):
            raise ValueError("at least one progress field is required")
        return self

    def values(self) -> dict[str, Any]:
        """Supplied columns only."""
        return self.model_dump(exclude_none=True)


# ==============================================================================
# Request Schemas
# ==============================================================================


class PositionReportRequest(BaseModel):
    """Player position tick (sent every few seconds during playback)."""

    model_config = ConfigDict(extra="forbid")

    position_seconds: float = Field(
        ..., ge=0, allow_inf_nan=False, description="Current video position"
    )
    duration_seconds: float = Field(
        ..., ge=0, allow_inf_nan=False, description="Total video duration"
    )


class CompletionRequest(BaseModel):
    """Lesson finished (end reached or explicit mark complete)."""

    model_config = ConfigDict(extra="forbid")

    duration_seconds: float = Field(
        ..., ge=0, allow_inf_nan=False, description="Total video duration"
    )


class SaveNotesRequest(BaseModel):
    """Learner notes for a lesson."""

    model_config = ConfigDict(extra="forbid")

    notes: str = Field(..., description="Free-text annotation")


# ==============================================================================
# Lesson Responses
# ==============================================================================


class LessonProgressResponse(BaseModel):
    """Single lesson progress."""

    model_config = ConfigDict(from_attributes=True)

    lesson_id: UUID
    has_progress: bool = True
    status: LessonProgressStatus = LessonProgressStatus.NOT_STARTED
    percentage: int = Field(default=0, ge=0, le=100)
    completed: bool = False
    resume_position_seconds: float = 0
    watch_time_seconds: float | None = None
    position_seconds: float | None = None
    duration_seconds: float | None = None
    completed_at: datetime | None = None
    last_watched_at: datetime | None = None
    notes: str | None = None

    @classmethod
    def from_record(
        cls, record: ProgressRecord, percentage: int
    ) -> "LessonProgressResponse":
        """Create response from a stored record."""
        return cls(
            lesson_id=record.lesson_id,
            status=record.status,
            percentage=percentage,
            completed=record.completed,
            resume_position_seconds=record.effective_position or 0,
            watch_time_seconds=record.watch_time_seconds,
            position_seconds=record.position_seconds,
            duration_seconds=record.duration_seconds,
            completed_at=record.completed_at,
            last_watched_at=record.last_watched_at,
            notes=record.notes,
        )

    @classmethod
    def empty(cls, lesson_id: UUID) -> "LessonProgressResponse":
        """Response for a lesson that was never watched."""
        return cls(lesson_id=lesson_id, has_progress=False)


class PositionAcceptedResponse(BaseModel):
    """Position tick accepted into the coalescing buffer."""

    lesson_id: UUID
    accepted: bool
    pending_flush: bool


class FlushResponse(BaseModel):
    """Result of a flush-on-exit request."""

    lesson_id: UUID
    flushed: bool
    progress: LessonProgressResponse | None = None


# ==============================================================================
# Derived Views
# ==============================================================================


class ResumeAction(str, Enum):
    """Call-to-action shown next to the resume pointer."""

    START = "start"
    CONTINUE = "continue"
    REVIEW = "review"


class LessonProgressSummary(BaseModel):
    """Per-lesson line of a course progress view."""

    lesson_id: UUID
    module_id: UUID
    title: str = ""
    position: int = 0
    status: LessonProgressStatus
    percentage: int = Field(ge=0, le=100)
    resume_position_seconds: float = 0
    duration_seconds: float | None = None


class ModuleProgressSummary(BaseModel):
    """Per-module breakdown of a course progress view."""

    module_id: UUID
    title: str = ""
    position: int = 0
    lessons_total: int
    lessons_completed: int
    percentage: int = Field(ge=0, le=100)


class CourseProgressView(BaseModel):
    """Course progress for one learner (derived, never persisted)."""

    course_id: UUID
    user_id: UUID
    lessons_total: int
    lessons_completed: int
    percentage: int = Field(ge=0, le=100)
    total_duration_seconds: float = 0
    modules: list[ModuleProgressSummary] = []
    lessons: list[LessonProgressSummary] = []
    degraded: bool = False


class ResumePointer(BaseModel):
    """Where a returning learner should be sent next."""

    course_id: UUID
    module_id: UUID
    lesson_id: UUID
    position_seconds: float = 0
    action: ResumeAction
    degraded: bool = False


class ContinueWatchingItem(BaseModel):
    """Recently watched lesson on the dashboard."""

    lesson_id: UUID
    percentage: int = Field(ge=0, le=100)
    completed: bool
    resume_position_seconds: float = 0
    duration_seconds: float | None = None
    last_watched_at: datetime | None = None
    action: ResumeAction


class DashboardView(BaseModel):
    """Continue-watching list and learner totals."""

    user_id: UUID
    continue_watching: list[ContinueWatchingItem] = []
    lessons_started: int = 0
    lessons_completed: int = 0
    total_watch_time_seconds: float = 0
    degraded: bool = False
