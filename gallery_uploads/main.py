"""
Main FastAPI application for gallery uploads
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from gallery_uploads.api import signed_urls, upload, upload_status
from gallery_uploads.config import Settings, get_settings, validate_required_for_production
from gallery_uploads.core.exceptions import UploadError
from gallery_uploads.core.middleware import add_cors_middleware, add_request_logging_middleware
from gallery_uploads.database import close_database, create_engine, create_session_factory, init_database
from gallery_uploads.repositories.upload_repository import UploadRepository
from gallery_uploads.schemas.upload import HealthCheck
from gallery_uploads.services.content_scanner import PassThroughScanner
from gallery_uploads.services.file_processor import FileProcessor
from gallery_uploads.services.processing_queue import ProcessingQueue
from gallery_uploads.services.s3_service import S3Service
from gallery_uploads.services.status_service import UploadStatusService
from gallery_uploads.services.thumbnail_service import build_thumbnail_generator
from gallery_uploads.services.upload_service import UploadService

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def reap_stale_uploads_periodically(upload_service: UploadService, interval_minutes: int) -> None:
    """Fail abandoned uploads on a fixed interval until cancelled."""
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await upload_service.reap_stale_uploads()
        except Exception as e:
            logger.error(f"Stale upload sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management.

    Builds the engine, store client and services on startup; on shutdown waits
    for pending processing before closing the database.

    Args:
        app: FastAPI application instance
    """
    app_settings: Settings = app.state.settings
    logger.info(f"Starting {app_settings.app_name}...")

    missing = validate_required_for_production(app_settings)
    for problem in missing:
        logger.warning(f"Configuration: {problem}")

    engine = create_engine(app_settings.database_url)
    try:
        await init_database(engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    session_factory = create_session_factory(engine)
    repository = UploadRepository(session_factory)
    s3_service = S3Service(app_settings)
    processing_queue = ProcessingQueue()
    file_processor = FileProcessor(
        s3_service,
        repository,
        thumbnail_generator=build_thumbnail_generator(s3_service, app_settings),
        content_scanner=PassThroughScanner()
    )

    app.state.engine = engine
    app.state.processing_queue = processing_queue
    app.state.upload_service = UploadService(
        s3_service, repository, file_processor, processing_queue, app_settings
    )
    app.state.status_service = UploadStatusService(repository, s3_service, app_settings)

    reaper: Optional[asyncio.Task] = None
    if app_settings.stale_upload_sweep_minutes > 0:
        reaper = asyncio.create_task(
            reap_stale_uploads_periodically(app.state.upload_service, app_settings.stale_upload_sweep_minutes)
        )

    logger.info("Application startup complete")

    yield

    logger.info(f"Shutting down {app_settings.app_name}...")

    if reaper is not None:
        reaper.cancel()
        try:
            await reaper
        except asyncio.CancelledError:
            pass

    await processing_queue.drain()
    logger.info("Pending processing finished")

    try:
        await close_database(engine)
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during database shutdown: {e}")

    logger.info("Application shutdown complete")


async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    """
    Map lifecycle errors to their HTTP status.

    Only the generic detail is returned; causes are logged where they occur.
    """
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} for {request.method} {request.url.path}: {exc.detail}")
    else:
        logger.warning(f"{type(exc).__name__} for {request.method} {request.url.path}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Custom handler for request validation errors (422).
    Logs the validation errors for debugging.
    """
    logger.warning(f"Request validation failed for {request.method} {request.url.path}")
    logger.warning(f"Validation errors: {exc.errors()}")

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": jsonable_errors(exc)
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Custom handler for HTTP exceptions.
    Logs authentication and other HTTP errors.
    """
    if exc.status_code == 401:
        logger.warning(f"Authentication failed for {request.method} {request.url.path}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code} error for {request.method} {request.url.path}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


def jsonable_errors(exc: RequestValidationError):
    """Validation errors without the raw exception objects pydantic attaches."""
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        app_settings: Settings to use, defaults to the process settings

    Returns:
        Configured application
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title=app_settings.app_name,
        description="Resumable direct-to-S3 uploads for the gallery",
        version=app_settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )
    app.state.settings = app_settings

    app.add_exception_handler(UploadError, upload_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    add_cors_middleware(app, app_settings)
    add_request_logging_middleware(app)

    app.include_router(
        upload.router,
        prefix="/api/v1/upload",
        tags=["upload"]
    )
    app.include_router(
        upload_status.router,
        prefix="/api/v1/upload-status",
        tags=["upload-status"]
    )
    app.include_router(
        signed_urls.router,
        prefix="/api/v1/signed-urls",
        tags=["signed-urls"]
    )

    @app.get("/")
    async def root() -> dict:
        """
        Root endpoint with API information.

        Returns:
            dict: Basic API information
        """
        return {
            "message": f"Welcome to {app_settings.app_name}",
            "version": app_settings.version,
            "docs": "/docs",
            "status": "operational"
        }

    @app.get("/api/v1/health", response_model=HealthCheck)
    async def health_check(request: Request) -> HealthCheck:
        """
        Health check endpoint.

        Returns:
            HealthCheck: Application health status
        """
        database_connected = False
        engine = getattr(request.app.state, "engine", None)
        if engine is not None:
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                database_connected = True
            except Exception as e:
                logger.error(f"Database health check failed: {e}")

        queue = getattr(request.app.state, "processing_queue", None)

        return HealthCheck(
            status="healthy" if database_connected else "unhealthy",
            timestamp=datetime.now(),
            version=app_settings.version,
            database_connected=database_connected,
            storage_configured=app_settings.s3_configured,
            pending_processing=queue.pending if queue is not None else 0
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gallery_uploads.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
