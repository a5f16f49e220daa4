"""Database models for lesson progress tracking.

One row per (user, lesson). The partition is the user so that a learner's
whole progress can be read with a single-partition query; the lesson is the
clustering key.

Writes are column-level UPDATEs, so concurrent writers for the same pair
resolve last-write-wins per column.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from coursetrack.utils.timeutils import ensure_utc_aware


class LessonProgressStatus(str, Enum):
    """Lesson progress state as shown to the learner."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

LESSON_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_progress (
    user_id UUID,
    lesson_id UUID,
    watch_time_seconds DOUBLE,
    position_seconds DOUBLE,
    duration_seconds DOUBLE,
    completed BOOLEAN,
    completed_at TIMESTAMP,
    last_watched_at TIMESTAMP,
    notes TEXT,
    PRIMARY KEY ((user_id), lesson_id)
)
"""

PROGRESS_TABLES_CQL = [
    LESSON_PROGRESS_TABLE_CQL,
]

# Columns a caller may write; everything else is managed by the store
WRITABLE_COLUMNS = (
    "watch_time_seconds",
    "position_seconds",
    "duration_seconds",
    "completed",
    "notes",
)


# ==============================================================================
# Entity Classes
# ==============================================================================


class ProgressRecord:
    """Playback and completion state of one lesson for one learner.

    Attributes:
        user_id: Learner UUID (immutable)
        lesson_id: Lesson UUID (immutable)
        watch_time_seconds: Most recent playback position, fallback for
            percentage math when position_seconds is absent
        position_seconds: Last reported cursor position, used for resume
        duration_seconds: Lesson duration denormalized at last update
        completed: Monotonic completion flag
        completed_at: When the lesson was first completed
        last_watched_at: Time of the most recent write
        notes: Learner annotation
    """

    def __init__(
        self,
        user_id: UUID,
        lesson_id: UUID,
        watch_time_seconds: float | None = None,
        position_seconds: float | None = None,
        duration_seconds: float | None = None,
        completed: bool = False,
        completed_at: datetime | None = None,
        last_watched_at: datetime | None = None,
        notes: str | None = None,
    ):
        self.user_id = user_id
        self.lesson_id = lesson_id
        self.watch_time_seconds = watch_time_seconds
        self.position_seconds = position_seconds
        self.duration_seconds = duration_seconds
        self.completed = completed
        self.completed_at = ensure_utc_aware(completed_at)
        self.last_watched_at = ensure_utc_aware(last_watched_at) or datetime.now(UTC)
        self.notes = notes

    @property
    def effective_position(self) -> float | None:
        """Playback position used everywhere: position first, then watch time."""
        if self.position_seconds is not None:
            return self.position_seconds
        return self.watch_time_seconds

    @property
    def status(self) -> LessonProgressStatus:
        if self.completed:
            return LessonProgressStatus.COMPLETED
        if self.effective_position:
            return LessonProgressStatus.IN_PROGRESS
        return LessonProgressStatus.NOT_STARTED

    @classmethod
    def from_row(cls, row: Any) -> "ProgressRecord":
        """Create ProgressRecord instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            lesson_id=row.lesson_id,
            watch_time_seconds=row.watch_time_seconds,
            position_seconds=row.position_seconds,
            duration_seconds=row.duration_seconds,
            completed=bool(row.completed),
            completed_at=row.completed_at,
            last_watched_at=row.last_watched_at,
            notes=row.notes,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "user_id": self.user_id,
            "lesson_id": self.lesson_id,
            "watch_time_seconds": self.watch_time_seconds,
            "position_seconds": self.position_seconds,
            "duration_seconds": self.duration_seconds,
            "completed": self.completed,
            "completed_at": self.completed_at,
            "last_watched_at": self.last_watched_at,
            "notes": self.notes,
        }

    def copy(self) -> "ProgressRecord":
        return ProgressRecord(**self.to_dict())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProgressRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"<ProgressRecord user={self.user_id} lesson={self.lesson_id} "
            f"pos={self.effective_position} completed={self.completed}>"
        )
