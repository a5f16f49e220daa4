"""coursetrack API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coursetrack.auth.directory import UserDirectory
from coursetrack.catalog.service import CatalogService
from coursetrack.config import Settings, get_settings
from coursetrack.core.context import get_request_id
from coursetrack.core.database import init_async_cassandra, shutdown_async_cassandra
from coursetrack.core.logging import configure_structlog, get_logger
from coursetrack.core.middleware import RequestContextMiddleware
from coursetrack.health import router as health_router
from coursetrack.progress.aggregator import ProgressAggregator
from coursetrack.progress.protocol import ProgressUpdateProtocol
from coursetrack.progress.router import router as progress_router
from coursetrack.progress.service import ProgressService
from coursetrack.progress.store import (
    CassandraProgressStore,
    CollaboratorReferences,
    MemoryProgressStore,
    ProgressStore,
)


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


def build_progress_service(settings: Settings, session: Any = None) -> ProgressService:
    """Wire store, protocol and aggregator for the configured backend.

    Args:
        settings: Application settings
        session: Cassandra session, or None when the cluster is unavailable

    Raises:
        RuntimeError: Cassandra backend selected without a session
    """
    catalog = None
    references = None
    if session is not None:
        catalog = CatalogService(session=session, keyspace=settings.cassandra_keyspace)
        directory = UserDirectory(session=session, keyspace=settings.cassandra_keyspace)
        references = CollaboratorReferences(catalog=catalog, directory=directory)

    store: ProgressStore
    if settings.progress_store_backend == "memory":
        store = MemoryProgressStore(references=references)
    else:
        if session is None:
            msg = "Cassandra progress store requires a database session"
            raise RuntimeError(msg)
        store = CassandraProgressStore(
            session=session,
            keyspace=settings.cassandra_keyspace,
            references=references,
        )

    protocol = ProgressUpdateProtocol(
        store,
        window_seconds=settings.progress_coalesce_window_seconds,
        position_max_attempts=settings.progress_position_max_attempts,
        completion_max_attempts=settings.progress_completion_max_attempts,
        backoff_seconds=settings.progress_retry_backoff_seconds,
        notes_max_length=settings.progress_notes_max_length,
    )

    return ProgressService(
        store=store,
        protocol=protocol,
        aggregator=ProgressAggregator(store),
        catalog=catalog,
        dashboard_limit=settings.progress_dashboard_limit,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        progress_store_backend=settings.progress_store_backend,
    )

    # Initialize Cassandra (async)
    app.state.cassandra_session = None
    try:
        app.state.cassandra_session = await init_async_cassandra()
        logger.info("cassandra_initialized")
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    # Initialize Progress Service
    app.state.progress_service = None
    try:
        app.state.progress_service = build_progress_service(
            settings, app.state.cassandra_session
        )
        logger.info(
            "progress_service_initialized",
            backend=settings.progress_store_backend,
            coalesce_window_seconds=settings.progress_coalesce_window_seconds,
        )
    except RuntimeError as e:
        logger.warning(
            "progress_service_unavailable",
            error=str(e),
            message="Progress endpoints will answer 503",
        )

    yield

    # Shutdown: flush buffered positions before the session goes away
    logger.info("shutting_down_application")
    if app.state.progress_service is not None:
        await app.state.progress_service.protocol.close()
    if app.state.cassandra_session is not None:
        await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Starlette's debug pages would expose stack traces; the handlers below
    # log full details and return safe messages instead.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Lesson progress tracking API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        # 503 details are our own "progress may not be saved" messages
        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": str(exc.detail)
                if exc.status_code != status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error",
                "status_code": exc.status_code,
                "request_id": request_id,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Never exposes stack traces or internal error details to users.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(progress_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "coursetrack API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
