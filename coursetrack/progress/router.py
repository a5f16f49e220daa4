"""Lesson progress API endpoints.

Provides routes for:
- Position reports (coalesced) and flush-on-exit
- Lesson completion and explicit reset
- Learner notes
- Lesson, course, resume and dashboard queries
"""

from uuid import UUID

from fastapi import APIRouter, status

from coursetrack.auth.dependencies import CurrentUserId

from .aggregator import effective_percentage
from .dependencies import ProgressServiceDep, handle_progress_error
from .exceptions import ProgressError
from .schemas import (
    CompletionRequest,
    CourseProgressView,
    DashboardView,
    FlushResponse,
    LessonProgressResponse,
    PositionAcceptedResponse,
    PositionReportRequest,
    ResumePointer,
    SaveNotesRequest,
)


router = APIRouter(prefix="/v1/progress", tags=["progress"])


# ==============================================================================
# Playback Endpoints
# ==============================================================================


@router.put(
    "/lessons/{lesson_id}/position",
    response_model=PositionAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Report playback position",
)
async def report_position(
    lesson_id: UUID,
    data: PositionReportRequest,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> PositionAcceptedResponse:
    """Buffer the current playback position.

    Called by the player every few seconds. Reports for the same lesson are
    coalesced and written at most once per window; storage is never touched
    on this path, so playback is never blocked by it.
    """
    try:
        accepted = progress_service.report_position(
            user_id=user_id,
            lesson_id=lesson_id,
            position_seconds=data.position_seconds,
            duration_seconds=data.duration_seconds,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return PositionAcceptedResponse(
        lesson_id=lesson_id,
        accepted=accepted,
        pending_flush=progress_service.has_pending(user_id, lesson_id),
    )


@router.post(
    "/lessons/{lesson_id}/flush",
    response_model=FlushResponse,
    summary="Flush pending position",
)
async def flush_position(
    lesson_id: UUID,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> FlushResponse:
    """Write the buffered position now (pause, unload, navigation away).

    Best effort: a failed write is reported as ``flushed=false``.
    """
    record = await progress_service.flush(user_id, lesson_id)
    if record is None:
        return FlushResponse(lesson_id=lesson_id, flushed=False)

    return FlushResponse(
        lesson_id=lesson_id,
        flushed=True,
        progress=LessonProgressResponse.from_record(
            record, effective_percentage(record)
        ),
    )


@router.post(
    "/lessons/{lesson_id}/complete",
    response_model=LessonProgressResponse,
    summary="Mark lesson as complete",
)
async def complete_lesson(
    lesson_id: UUID,
    data: CompletionRequest,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> LessonProgressResponse:
    """Persist completion immediately (end reached or explicit mark complete)."""
    try:
        record = await progress_service.complete(
            user_id=user_id,
            lesson_id=lesson_id,
            duration_seconds=data.duration_seconds,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return LessonProgressResponse.from_record(record, effective_percentage(record))


@router.post(
    "/lessons/{lesson_id}/reset",
    response_model=LessonProgressResponse,
    summary="Reset lesson progress",
)
async def reset_lesson(
    lesson_id: UUID,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> LessonProgressResponse:
    """Clear completion and playback position. Notes are kept."""
    try:
        record = await progress_service.reset(user_id, lesson_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return LessonProgressResponse.from_record(record, effective_percentage(record))


# ==============================================================================
# Notes Endpoints
# ==============================================================================


@router.put(
    "/lessons/{lesson_id}/notes",
    response_model=LessonProgressResponse,
    summary="Save lesson notes",
)
async def save_notes(
    lesson_id: UUID,
    data: SaveNotesRequest,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> LessonProgressResponse:
    """Save the learner's notes for a lesson."""
    try:
        record = await progress_service.save_notes(user_id, lesson_id, data.notes)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return LessonProgressResponse.from_record(record, effective_percentage(record))


# ==============================================================================
# Query Endpoints
# ==============================================================================


@router.get(
    "/lessons/{lesson_id}",
    response_model=LessonProgressResponse,
    summary="Get lesson progress",
)
async def get_lesson_progress(
    lesson_id: UUID,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> LessonProgressResponse:
    """Progress of one lesson; ``has_progress=false`` if never watched."""
    try:
        return await progress_service.get_lesson_progress(user_id, lesson_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/courses/{course_id}",
    response_model=CourseProgressView,
    summary="Get course progress",
)
async def get_course_progress(
    course_id: UUID,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> CourseProgressView:
    """Course percentage with module and lesson breakdown.

    When progress storage is unreachable the view is returned at 0% with
    ``degraded=true`` instead of failing the page.
    """
    try:
        return await progress_service.get_course_progress(user_id, course_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/courses/{course_id}/resume",
    response_model=ResumePointer,
    summary="Get resume pointer",
)
async def get_resume_pointer(
    course_id: UUID,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> ResumePointer:
    """Lesson to continue from, with a start/continue/review label."""
    try:
        return await progress_service.get_resume_pointer(user_id, course_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/dashboard",
    response_model=DashboardView,
    summary="Get learner dashboard",
)
async def get_dashboard(
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> DashboardView:
    """Continue-watching list and totals."""
    return await progress_service.get_dashboard(user_id)
