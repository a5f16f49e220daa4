"""Progress Store: keyed (user, lesson) → ProgressRecord storage.

Two backends share the merge rules implemented by ``ProgressStore.upsert``:

- ``CassandraProgressStore``: production backend on the ``lesson_progress``
  table, column-level UPDATEs so concurrent writers are last-write-wins per
  field.
- ``MemoryProgressStore``: single-process backend for development and tests.

``completed`` is monotonic: a normal upsert can set it to true but never back
to false. Only ``reset`` (``upsert(..., reset=True)``) clears it.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from cassandra import DriverException, OperationTimedOut, RequestExecutionException
from cassandra.cluster import NoHostAvailable
from pydantic import ValidationError

from .exceptions import (
    ProgressReferenceError,
    ProgressStorageError,
    ProgressValidationError,
)
from .models import WRITABLE_COLUMNS, ProgressRecord
from .schemas import ProgressPatch


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from coursetrack.auth.directory import UserDirectory
    from coursetrack.catalog.service import CatalogService

logger = structlog.get_logger(__name__)

STORAGE_ERRORS = (
    DriverException,
    RequestExecutionException,
    NoHostAvailable,
    OperationTimedOut,
)


def validation_message(error: ValidationError) -> str:
    """Flatten a pydantic error into one readable line."""
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"]) or "event"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


# ==============================================================================
# Reference Checks
# ==============================================================================


class CollaboratorReferences:
    """Confirms user and lesson exist in their owning collaborators."""

    def __init__(self, catalog: "CatalogService", directory: "UserDirectory"):
        self.catalog = catalog
        self.directory = directory

    async def ensure(self, user_id: UUID, lesson_id: UUID) -> None:
        """Raise ProgressReferenceError when either side does not resolve."""
        try:
            user_ok = await self.directory.user_exists(user_id)
            lesson_ok = user_ok and await self.catalog.lesson_exists(lesson_id)
        except STORAGE_ERRORS as e:
            raise ProgressStorageError(f"Reference lookup failed: {e}") from e

        if not user_ok:
            raise ProgressReferenceError(f"User {user_id} not found")
        if not lesson_ok:
            raise ProgressReferenceError(f"Lesson {lesson_id} not found")


# ==============================================================================
# Store Interface
# ==============================================================================


class ProgressStore(ABC):
    """Base store: validates patches and applies the merge rules."""

    def __init__(self, references: CollaboratorReferences | None = None):
        self.references = references

    @abstractmethod
    async def get(self, user_id: UUID, lesson_id: UUID) -> ProgressRecord | None:
        """Point lookup. Missing key returns None."""

    @abstractmethod
    async def list_by_user(
        self, user_id: UUID, lesson_ids: list[UUID]
    ) -> dict[UUID, ProgressRecord]:
        """Existing records for the given lessons, keyed by lesson ID."""

    @abstractmethod
    async def list_recent(
        self, user_id: UUID, limit: int | None = None
    ) -> list[ProgressRecord]:
        """User's records, most recently watched first."""

    @abstractmethod
    async def _write(
        self,
        user_id: UUID,
        lesson_id: UUID,
        values: dict[str, Any],
        now: datetime,
    ) -> ProgressRecord:
        """Merge ``values`` into the record and refresh last_watched_at."""

    async def upsert(
        self,
        user_id: UUID,
        lesson_id: UUID,
        fields: Mapping[str, Any] | ProgressPatch,
        reset: bool = False,
    ) -> ProgressRecord:
        """Create or merge a record.

        Args:
            user_id: Learner UUID
            lesson_id: Lesson UUID
            fields: Partial field set (at least one writable field)
            reset: Allow ``completed`` to go back to false

        Returns:
            The record as stored after the write

        Raises:
            ProgressValidationError: Empty or malformed field set
            ProgressReferenceError: Unknown user or lesson
            ProgressStorageError: Backend failure
        """
        patch = self._coerce_patch(fields)
        values = patch.values()

        if values.get("completed") is False and not reset:
            logger.debug(
                "completed_downgrade_ignored",
                user_id=str(user_id),
                lesson_id=str(lesson_id),
            )
            del values["completed"]
            if not values:
                existing = await self.get(user_id, lesson_id)
                if existing is not None:
                    return existing
                raise ProgressValidationError("completed=false requires a reset")

        if self.references is not None:
            await self.references.ensure(user_id, lesson_id)

        now = datetime.now(UTC)
        if values.get("completed") is True:
            existing = await self.get(user_id, lesson_id)
            if existing is None or not existing.completed:
                values["completed_at"] = now
        elif reset and values.get("completed") is False:
            values["completed_at"] = None

        return await self._write(user_id, lesson_id, values, now)

    async def reset(self, user_id: UUID, lesson_id: UUID) -> ProgressRecord:
        """Clear completion and playback position, keeping notes."""
        record = await self.upsert(
            user_id,
            lesson_id,
            {"completed": False, "position_seconds": 0, "watch_time_seconds": 0},
            reset=True,
        )
        logger.info("progress_reset", user_id=str(user_id), lesson_id=str(lesson_id))
        return record

    @staticmethod
    def _coerce_patch(fields: Mapping[str, Any] | ProgressPatch) -> ProgressPatch:
        if isinstance(fields, ProgressPatch):
            return fields
        try:
            return ProgressPatch.model_validate(dict(fields))
        except ValidationError as e:
            raise ProgressValidationError(validation_message(e)) from e


# ==============================================================================
# Cassandra Backend
# ==============================================================================


class CassandraProgressStore(ProgressStore):
    """Production store on the ``lesson_progress`` table."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        references: CollaboratorReferences | None = None,
    ):
        """Initialize with Cassandra session."""
        super().__init__(references)
        self.session = session
        self.keyspace = keyspace
        self._update_statements: dict[tuple[str, ...], Any] = {}
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND lesson_id = ?
        """)

        self._get_progress_for_lessons = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND lesson_id IN ?
        """)

        self._get_user_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ?
        """)

    def _update_statement(self, columns: tuple[str, ...]):
        """Prepared UPDATE touching only ``columns`` (cached per column set)."""
        statement = self._update_statements.get(columns)
        if statement is None:
            assignments = ", ".join(f"{column} = ?" for column in columns)
            statement = self.session.prepare(f"""
                UPDATE {self.keyspace}.lesson_progress
                SET {assignments}, last_watched_at = ?
                WHERE user_id = ? AND lesson_id = ?
            """)
            self._update_statements[columns] = statement
        return statement

    async def _execute(self, statement, params: list[Any]):
        try:
            return await self.session.aexecute(statement, params)
        except STORAGE_ERRORS as e:
            logger.warning("progress_storage_error", error=str(e))
            raise ProgressStorageError(str(e) or type(e).__name__) from e

    async def get(self, user_id: UUID, lesson_id: UUID) -> ProgressRecord | None:
        result = await self._execute(self._get_progress, [user_id, lesson_id])
        row = result.one()
        return ProgressRecord.from_row(row) if row else None

    async def list_by_user(
        self, user_id: UUID, lesson_ids: list[UUID]
    ) -> dict[UUID, ProgressRecord]:
        if not lesson_ids:
            return {}
        result = await self._execute(
            self._get_progress_for_lessons, [user_id, list(dict.fromkeys(lesson_ids))]
        )
        return {row.lesson_id: ProgressRecord.from_row(row) for row in result}

    async def list_recent(
        self, user_id: UUID, limit: int | None = None
    ) -> list[ProgressRecord]:
        # Partition is clustered by lesson, so ordering happens here
        result = await self._execute(self._get_user_progress, [user_id])
        records = sorted(
            (ProgressRecord.from_row(row) for row in result),
            key=lambda record: record.last_watched_at,
            reverse=True,
        )
        return records if limit is None else records[:limit]

    async def _write(
        self,
        user_id: UUID,
        lesson_id: UUID,
        values: dict[str, Any],
        now: datetime,
    ) -> ProgressRecord:
        columns = tuple(
            column
            for column in (*WRITABLE_COLUMNS, "completed_at")
            if column in values
        )
        params = [values[column] for column in columns]
        await self._execute(
            self._update_statement(columns), [*params, now, user_id, lesson_id]
        )

        logger.debug(
            "progress_written",
            user_id=str(user_id),
            lesson_id=str(lesson_id),
            columns=list(columns),
        )

        record = await self.get(user_id, lesson_id)
        if record is None:
            # Read-your-write miss on a lagging replica
            record = ProgressRecord(user_id=user_id, lesson_id=lesson_id)
            for column in columns:
                setattr(record, column, values[column])
            record.last_watched_at = now
        return record


# ==============================================================================
# In-Memory Backend
# ==============================================================================


class MemoryProgressStore(ProgressStore):
    """Single-process store keyed by (user_id, lesson_id)."""

    def __init__(self, references: CollaboratorReferences | None = None):
        super().__init__(references)
        self._records: dict[tuple[UUID, UUID], ProgressRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, user_id: UUID, lesson_id: UUID) -> ProgressRecord | None:
        record = self._records.get((user_id, lesson_id))
        return record.copy() if record else None

    async def list_by_user(
        self, user_id: UUID, lesson_ids: list[UUID]
    ) -> dict[UUID, ProgressRecord]:
        found = {}
        for lesson_id in lesson_ids:
            record = self._records.get((user_id, lesson_id))
            if record is not None:
                found[lesson_id] = record.copy()
        return found

    async def list_recent(
        self, user_id: UUID, limit: int | None = None
    ) -> list[ProgressRecord]:
        records = sorted(
            (r.copy() for (uid, _), r in self._records.items() if uid == user_id),
            key=lambda record: record.last_watched_at,
            reverse=True,
        )
        return records if limit is None else records[:limit]

    async def _write(
        self,
        user_id: UUID,
        lesson_id: UUID,
        values: dict[str, Any],
        now: datetime,
    ) -> ProgressRecord:
        key = (user_id, lesson_id)
        record = self._records.get(key)
        if record is None:
            record = ProgressRecord(user_id=user_id, lesson_id=lesson_id)
            self._records[key] = record

        for column, value in values.items():
            setattr(record, column, value)
        record.last_watched_at = now
        return record.copy()
