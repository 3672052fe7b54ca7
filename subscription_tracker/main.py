"""
Subscription Tracker - FastAPI Application

Main entry point for the backend API.
Hosts the renewal reminder trigger endpoint and the background workflow scheduler.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subscription_tracker.config.settings import settings
from subscription_tracker.infrastructure.exceptions import (
    SubscriptionTrackerError,
    ValidationError,
    NotFoundError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    from subscription_tracker.infrastructure.db.database import init_db, close_db
    from subscription_tracker.services.workflow_setup import (
        create_workflow_runtime,
        create_workflow_scheduler,
    )

    # Startup
    logger.info(f"{settings.app_name} starting in {settings.environment} mode...")

    # SQLite is used for local development: create tables instead of migrating
    await init_db(create_tables=settings.is_sqlite)
    logger.info("Database connection pool initialized")

    runtime = create_workflow_runtime(settings)
    scheduler = create_workflow_scheduler(settings, runtime)
    app.state.workflow_runtime = runtime
    app.state.workflow_scheduler = scheduler

    if settings.scheduler_enabled:
        scheduler.start()
    else:
        logger.warning("Workflow scheduler disabled; triggered runs will not execute here")

    yield

    # Shutdown
    await scheduler.stop()
    await close_db()
    logger.info("Database connection pool closed")

    logger.info(f"{settings.app_name} shutting down...")


app = FastAPI(
    title="Subscription Tracker",
    description="Subscription tracking with durable renewal reminders",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(SubscriptionTrackerError)
async def general_error_handler(request: Request, exc: SubscriptionTrackerError):
    """Handle all other application errors."""
    logger.error(f"Unhandled application error: {exc.message}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "subscription-tracker"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Subscription Tracker API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from subscription_tracker.api.routes import workflows  # noqa: E402

app.include_router(workflows.router, prefix="/api/v1", tags=["Workflows"])
