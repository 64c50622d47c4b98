"""FastAPI application entry point with global error handling."""
from __future__ import annotations

import asyncio
import os
import sys

# Add src/ to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Set

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.db import init_db
from core.exceptions import CookPropertyError
from core.logging_config import get_logger, setup_logging
from api.routes import bids, cache, health, imports, property

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Resumed import jobs; held so they are not garbage collected mid-run
_background_tasks: Set[asyncio.Task] = set()


def _resume_interrupted_imports() -> None:
    from services.import_jobs import ImportJobService

    service = ImportJobService()
    for job_id in service.recover_stuck_jobs():
        task = asyncio.create_task(service.run_job(job_id))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Sets up logging, creates missing tables and resumes import jobs a
    previous process left running. Startup continues when the database is
    not ready so health checks still answer.
    """
    json_logging = SETTINGS.log_format == "json"
    setup_logging(level=SETTINGS.log_level, json_format=json_logging)

    LOGGER.info(
        "API application starting",
        extra={"extra_data": {
            "environment": SETTINGS.environment,
            "enabled_services": SETTINGS.get_enabled_services(),
        }}
    )

    db_status = init_db()
    if db_status["status"] == "error":
        LOGGER.error(
            "Database initialization failed - app will start without database",
            extra={"extra_data": {"error": db_status.get("error")}}
        )
    else:
        try:
            _resume_interrupted_imports()
        except CookPropertyError as e:
            LOGGER.error(f"Could not resume import jobs: {e.message}")

    yield
    LOGGER.info("API application shutting down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance with:
        - CORS middleware
        - Envelope-rendering exception handler
        - All API routes
    """
    application = FastAPI(
        title="Cook County Property Aggregator",
        description="Tax portal, clerk, recorder and GIS data for Cook County PINs",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Global Exception Handlers
    # -------------------------------------------------------------------------

    @application.exception_handler(CookPropertyError)
    async def app_error_handler(request: Request, exc: CookPropertyError) -> JSONResponse:
        """Render any application error as ``{success: false, error, code}``."""
        log = LOGGER.warning if exc.status_code < 500 else LOGGER.error
        log(
            f"{exc.code}: {exc.message}",
            extra={"extra_data": {"path": request.url.path, "code": exc.code}},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

    @application.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed query, path or body parameters."""
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("query", "path", "body"))
            message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
        else:
            message = "Invalid request"
        LOGGER.warning(
            f"VALIDATION_ERROR: {message}",
            extra={"extra_data": {"path": request.url.path, "code": "VALIDATION_ERROR"}},
        )
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": message, "code": "VALIDATION_ERROR"},
        )

    # -------------------------------------------------------------------------
    # Include Routers
    # -------------------------------------------------------------------------
    application.include_router(health.router, prefix="/api", tags=["Health"])
    application.include_router(property.router, prefix="/api/cook", tags=["Property"])
    application.include_router(cache.router, prefix="/api/cache", tags=["Cache"])
    application.include_router(imports.router, prefix="/api/import", tags=["Import"])
    application.include_router(bids.router, prefix="/api/pins", tags=["Bids"])

    return application


# Create the application instance
app = create_app()
