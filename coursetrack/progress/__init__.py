"""Lesson progress tracking engine.

Provides:
- Progress Store (Cassandra and in-memory backends)
- Progress Update Protocol (coalesced position writes, immediate completion)
- Progress Aggregator (lesson, course and dashboard views, resume pointer)
"""

from .exceptions import (
    ProgressError,
    ProgressReferenceError,
    ProgressStorageError,
    ProgressValidationError,
)
from .models import PROGRESS_TABLES_CQL, LessonProgressStatus, ProgressRecord


__all__ = [
    "PROGRESS_TABLES_CQL",
    "LessonProgressStatus",
    "ProgressError",
    "ProgressRecord",
    "ProgressReferenceError",
    "ProgressStorageError",
    "ProgressValidationError",
]
