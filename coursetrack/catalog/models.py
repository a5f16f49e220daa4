"""Course catalog tables (read side).

Courses, modules and lessons are created and ordered by the admin
application. Modules are linked to courses and lessons to modules through
junction tables carrying a ``position``; the clustering order returns links
in ascending position.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from coursetrack.utils.timeutils import ensure_utc_aware


class ContentStatus(str, Enum):
    """Content publication status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

COURSE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.courses (
    id UUID PRIMARY KEY,
    title TEXT,
    slug TEXT,
    status TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

MODULE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.modules (
    id UUID PRIMARY KEY,
    title TEXT,
    status TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# video_playback_id references the asset on the external video platform
LESSON_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lessons (
    id UUID PRIMARY KEY,
    title TEXT,
    duration_seconds INT,
    video_playback_id TEXT,
    status TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

COURSE_MODULES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_modules (
    course_id UUID,
    module_id UUID,
    position INT,
    PRIMARY KEY (course_id, position, module_id)
) WITH CLUSTERING ORDER BY (position ASC, module_id ASC)
"""

MODULE_LESSONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.module_lessons (
    module_id UUID,
    lesson_id UUID,
    position INT,
    PRIMARY KEY (module_id, position, lesson_id)
) WITH CLUSTERING ORDER BY (position ASC, lesson_id ASC)
"""

CATALOG_TABLES_CQL = [
    COURSE_TABLE_CQL,
    MODULE_TABLE_CQL,
    LESSON_TABLE_CQL,
    COURSE_MODULES_TABLE_CQL,
    MODULE_LESSONS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Course:
    """Course: an ordered group of modules."""

    def __init__(
        self,
        id: UUID,
        title: str = "",
        slug: str | None = None,
        status: str = ContentStatus.DRAFT.value,
        created_at: datetime | None = None,
    ):
        self.id = id
        self.title = title
        self.slug = slug
        self.status = status
        self.created_at = ensure_utc_aware(created_at)

    @classmethod
    def from_row(cls, row: Any) -> "Course":
        """Create Course instance from Cassandra row."""
        return cls(
            id=row.id,
            title=row.title or "",
            slug=row.slug,
            status=row.status or ContentStatus.DRAFT.value,
            created_at=row.created_at,
        )

    def __repr__(self) -> str:
        return f"<Course {self.title} ({self.status})>"


class Module:
    """Module: an ordered group of lessons within a course."""

    def __init__(self, id: UUID, title: str = "", status: str | None = None):
        self.id = id
        self.title = title
        self.status = status

    @classmethod
    def from_row(cls, row: Any) -> "Module":
        """Create Module instance from Cassandra row."""
        return cls(id=row.id, title=row.title or "", status=row.status)

    def __repr__(self) -> str:
        return f"<Module {self.title}>"


class Lesson:
    """Lesson (sub-lesson): the leaf playable unit."""

    def __init__(
        self,
        id: UUID,
        title: str = "",
        duration_seconds: int | None = None,
        video_playback_id: str | None = None,
        status: str | None = None,
    ):
        self.id = id
        self.title = title
        self.duration_seconds = duration_seconds
        self.video_playback_id = video_playback_id
        self.status = status

    @property
    def is_archived(self) -> bool:
        """Archived lessons are treated as deleted."""
        return self.status == ContentStatus.ARCHIVED.value

    @classmethod
    def from_row(cls, row: Any) -> "Lesson":
        """Create Lesson instance from Cassandra row."""
        return cls(
            id=row.id,
            title=row.title or "",
            duration_seconds=row.duration_seconds,
            video_playback_id=row.video_playback_id,
            status=row.status,
        )

    def __repr__(self) -> str:
        return f"<Lesson {self.title} {self.duration_seconds}s>"
