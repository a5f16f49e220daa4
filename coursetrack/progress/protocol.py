"""Progress Update Protocol.

Receives playback events and writes them through to the Progress Store:

- PositionUpdate: buffered per (user, lesson). The first buffered event opens
  a coalescing window; when it expires the latest buffered position is
  written in a single store call. ``flush`` writes it immediately
  (pause/unload/navigation-away).
- CompletionEvent: written immediately. Any older buffered position for the
  pair is discarded.

Writes for the same pair are serialized, so an in-flight position write can
never land after a completion that was received later.

Storage errors are retried with exponential backoff; reference errors are
dropped at once.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from coursetrack.core.context import RequestContext

from .exceptions import (
    ProgressError,
    ProgressReferenceError,
    ProgressStorageError,
    ProgressValidationError,
)
from .models import ProgressRecord
from .schemas import CompletionEvent, PositionUpdate
from .store import ProgressStore, validation_message


logger = structlog.get_logger(__name__)

EventT = TypeVar("EventT", bound=BaseModel)
PairKey = tuple[UUID, UUID]


def coerce_event(model: type[EventT], event: EventT | Mapping[str, Any]) -> EventT:
    """Validate a loose payload into an event model.

    Raises:
        ProgressValidationError: Missing identifiers, negative times or
            unknown fields
    """
    if isinstance(event, model):
        return event
    try:
        if isinstance(event, BaseModel):
            return model.model_validate(event.model_dump())
        return model.model_validate(event)
    except ValidationError as e:
        raise ProgressValidationError(validation_message(e)) from e


class _PairLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class ProgressUpdateProtocol:
    """Coalescing write-through front of the Progress Store."""

    def __init__(
        self,
        store: ProgressStore,
        window_seconds: float = 5.0,
        position_max_attempts: int = 3,
        completion_max_attempts: int = 6,
        backoff_seconds: float = 0.5,
        notes_max_length: int = 10_000,
    ) -> None:
        """Initialize the protocol.

        Args:
            store: Progress Store to write through to
            window_seconds: Coalescing window for position reports
            position_max_attempts: Attempts for position and notes writes
            completion_max_attempts: Attempts for completion writes
            backoff_seconds: Base delay, doubled after each failed attempt
            notes_max_length: Maximum notes length in characters
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.store = store
        self.window_seconds = window_seconds
        self.position_max_attempts = max(1, position_max_attempts)
        self.completion_max_attempts = max(1, completion_max_attempts)
        self.backoff_seconds = backoff_seconds
        self.notes_max_length = notes_max_length

        self._pending: dict[PairKey, PositionUpdate] = {}
        self._timers: dict[PairKey, asyncio.Task] = {}
        self._writing: dict[PairKey, asyncio.Task] = {}
        self._flush_tasks: set[asyncio.Task] = set()
        self._locks: dict[PairKey, _PairLock] = {}
        self._closed = False
        self._started_at = time.monotonic()

        self._positions_received = 0
        self._positions_coalesced = 0
        self._writes_succeeded = 0
        self._writes_dropped = 0

    # ==========================================================================
    # Position Reports
    # ==========================================================================

    def report_position(self, event: PositionUpdate | Mapping[str, Any]) -> bool:
        """Buffer a position report.

        Must be called from a running event loop. Never touches storage.

        Returns:
            True if buffered, False if the protocol is closed

        Raises:
            ProgressValidationError: Malformed event
        """
        update = coerce_event(PositionUpdate, event)
        key = (update.user_id, update.lesson_id)

        if self._closed:
            self._writes_dropped += 1
            logger.warning(
                "position_report_after_close",
                user_id=str(update.user_id),
                lesson_id=str(update.lesson_id),
            )
            return False

        self._positions_received += 1
        if key in self._pending:
            self._positions_coalesced += 1
        self._pending[key] = update

        if key not in self._timers:
            task = asyncio.create_task(
                self._flush_after_window(key),
                name=f"progress_flush:{update.user_id}:{update.lesson_id}",
            )
            self._timers[key] = task
            self._flush_tasks.add(task)
            task.add_done_callback(self._flush_tasks.discard)
        return True

    async def flush(self, user_id: UUID, lesson_id: UUID) -> ProgressRecord | None:
        """Write any pending position for the pair now (best effort).

        Returns:
            The stored record, or None when nothing was pending or the
            write was dropped. A window write already under way counts as
            the flush.
        """
        key = (user_id, lesson_id)
        self._cancel_timer(key)
        writing = self._writing.get(key)
        try:
            record = await self._write_pending(key)
        except ProgressError:
            return None
        if record is None and writing is not None:
            return await asyncio.shield(writing)
        return record

    def has_pending(self, user_id: UUID, lesson_id: UUID) -> bool:
        return (user_id, lesson_id) in self._pending

    @property
    def pending_count(self) -> int:
        """Number of pairs with a buffered position."""
        return len(self._pending)

    # ==========================================================================
    # Immediate Writes
    # ==========================================================================

    async def complete(
        self, event: CompletionEvent | Mapping[str, Any]
    ) -> ProgressRecord:
        """Persist a completion immediately.

        Sets ``completed`` and moves position and watch time to the end of
        the lesson.

        Raises:
            ProgressValidationError: Malformed event
            ProgressReferenceError: Unknown user or lesson
            ProgressStorageError: Write failed after all attempts
        """
        completion = coerce_event(CompletionEvent, event)
        key = (completion.user_id, completion.lesson_id)

        self._cancel_timer(key)
        if self._pending.pop(key, None) is not None:
            logger.debug(
                "pending_position_discarded",
                user_id=str(completion.user_id),
                lesson_id=str(completion.lesson_id),
            )

        fields: dict[str, Any] = {
            "completed": True,
            "position_seconds": completion.duration_seconds,
            "watch_time_seconds": completion.duration_seconds,
        }
        if completion.duration_seconds > 0:
            fields["duration_seconds"] = completion.duration_seconds

        async with self._serialized(key):
            record = await self._persist(
                key, "completion", fields, self.completion_max_attempts
            )

        logger.info(
            "lesson_completed",
            user_id=str(completion.user_id),
            lesson_id=str(completion.lesson_id),
        )
        return record

    async def save_notes(
        self, user_id: UUID, lesson_id: UUID, notes: str
    ) -> ProgressRecord:
        """Write the notes field only, independent of playback buffering."""
        if len(notes) > self.notes_max_length:
            raise ProgressValidationError(
                f"notes exceed {self.notes_max_length} characters"
            )

        key = (user_id, lesson_id)
        async with self._serialized(key):
            return await self._persist(
                key, "notes", {"notes": notes}, self.position_max_attempts
            )

    async def reset(self, user_id: UUID, lesson_id: UUID) -> ProgressRecord:
        """Explicit reset: the only path that clears ``completed``."""
        key = (user_id, lesson_id)
        self._cancel_timer(key)
        self._pending.pop(key, None)

        async with self._serialized(key):
            try:
                return await self.store.reset(user_id, lesson_id)
            except ProgressError as e:
                logger.warning(
                    "progress_reset_failed",
                    user_id=str(user_id),
                    lesson_id=str(lesson_id),
                    error_code=e.code,
                )
                raise

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def close(self) -> int:
        """Flush every pending pair and stop accepting position reports.

        Returns:
            Number of pairs written
        """
        if self._closed:
            return 0
        self._closed = True

        for key in list(self._timers):
            self._cancel_timer(key)

        keys = list(self._pending)
        # Window writes already past their timer are awaited too
        results = await asyncio.gather(
            *(self._write_pending(key) for key in keys),
            *list(self._flush_tasks),
            return_exceptions=True,
        )
        written = sum(isinstance(result, ProgressRecord) for result in results)

        logger.info(
            "progress_protocol_closed",
            pending=len(keys),
            written=written,
            **self.get_stats(),
        )
        return written

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get_stats(self) -> dict:
        """Counters for health reporting."""
        return {
            "pending_pairs": self.pending_count,
            "positions_received": self._positions_received,
            "positions_coalesced": self._positions_coalesced,
            "writes_succeeded": self._writes_succeeded,
            "writes_dropped": self._writes_dropped,
            "uptime_seconds": round(time.monotonic() - self._started_at, 2),
        }

    # ==========================================================================
    # Internals
    # ==========================================================================

    async def _flush_after_window(self, key: PairKey) -> ProgressRecord | None:
        user_id, _lesson_id = key
        await asyncio.sleep(self.window_seconds)
        # Past this point the write must not be cancelled by flush()
        self._timers.pop(key, None)
        task = asyncio.current_task()
        self._writing[key] = task

        try:
            with RequestContext(user_id=user_id):
                try:
                    return await self._write_pending(key)
                except ProgressError:
                    # Already logged by _persist; the next report starts fresh
                    return None
        finally:
            if self._writing.get(key) is task:
                del self._writing[key]

    def _cancel_timer(self, key: PairKey) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None and not timer.done():
            timer.cancel()

    async def _write_pending(self, key: PairKey) -> ProgressRecord | None:
        async with self._serialized(key):
            update = self._pending.pop(key, None)
            if update is None:
                return None

            fields: dict[str, Any] = {
                "position_seconds": update.position_seconds,
                "watch_time_seconds": update.position_seconds,
            }
            if update.duration_seconds > 0:
                fields["duration_seconds"] = update.duration_seconds

            return await self._persist(
                key, "position", fields, self.position_max_attempts
            )

    @asynccontextmanager
    async def _serialized(self, key: PairKey) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _PairLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    async def _persist(
        self,
        key: PairKey,
        kind: str,
        fields: dict[str, Any],
        max_attempts: int,
    ) -> ProgressRecord:
        user_id, lesson_id = key
        log = logger.bind(user_id=str(user_id), lesson_id=str(lesson_id), kind=kind)

        for attempt in range(max_attempts):
            try:
                record = await self.store.upsert(user_id, lesson_id, fields)
            except ProgressReferenceError as e:
                self._writes_dropped += 1
                log.warning("progress_reference_dropped", error=e.message)
                raise
            except ProgressStorageError as e:
                if attempt + 1 >= max_attempts:
                    self._writes_dropped += 1
                    log.error(
                        "progress_write_failed",
                        attempts=max_attempts,
                        error=e.message,
                    )
                    raise
                delay = self.backoff_seconds * 2**attempt
                log.warning(
                    "progress_write_retry",
                    attempt=attempt + 1,
                    delay_seconds=delay,
                    error=e.message,
                )
                await asyncio.sleep(delay)
            else:
                self._writes_succeeded += 1
                log.debug("progress_persisted", attempts=attempt + 1)
                return record

        # Unreachable: the loop either returns or raises
        raise ProgressStorageError("no write attempts made")
