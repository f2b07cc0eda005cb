"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskquest import config
from taskquest.api.routes import router
from taskquest.api.middleware import setup_cors, setup_rate_limiting
from taskquest.db.connection import db
from taskquest.exceptions import (
    AuthenticationError,
    ConcurrencyConflict,
    ExternalAPIError,
    PersistenceFailure,
    RecordNotFoundError,
    TaskQuestError,
    ValidationError,
)
from taskquest.observability.metrics import http_errors_total
from taskquest.services.calendar_sync import build_calendar_sync
from taskquest.services.container import (
    build_completion_writer,
    build_stores,
    get_container,
    init_container,
    reset_container,
)

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (RecordNotFoundError, 404),
    (ConcurrencyConflict, 409),
    (PersistenceFailure, 503),
    (ExternalAPIError, 502),
)


def status_code_for(exc: TaskQuestError) -> int:
    """HTTP status for a TaskQuestError"""
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting API server...")
    config.validate_config()

    if config.STORAGE_BACKEND == "postgres":
        await db.init_pool()
        logger.info("Database pool initialized")

    task_store, progress_store, user_store = build_stores()
    init_container(
        task_store,
        progress_store,
        user_store,
        calendar=build_calendar_sync(),
        writer=build_completion_writer(),
    )
    logger.info(f"Using {config.STORAGE_BACKEND} storage")

    yield

    # Shutdown
    logger.info("Shutting down API server...")
    await get_container().calendar.close()
    reset_container()
    if config.STORAGE_BACKEND == "postgres":
        await db.close_pool()
        logger.info("Database pool closed")


def create_api_application() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="TaskQuest API",
        description="REST API for gamified tasks: XP, levels, streaks and achievements",
        version="1.0.0",
        lifespan=lifespan
    )

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)

    # Include routes
    app.include_router(router)

    @app.exception_handler(TaskQuestError)
    async def taskquest_exception_handler(request: Request, exc: TaskQuestError):
        status_code = status_code_for(exc)
        http_errors_total.labels(error_type=type(exc).__name__, status=str(status_code)).inc()
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        http_errors_total.labels(error_type=type(exc).__name__, status="500").inc()
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    logger.info("FastAPI application created")

    return app


app = create_api_application()
