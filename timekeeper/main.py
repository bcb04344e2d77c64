"""Timekeeper — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from timekeeper.attendance.router import router as attendance_router
from timekeeper.attendance.scheduler import AbsenceBackfillScheduler
from timekeeper.common.exceptions import register_exception_handlers
from timekeeper.common.rate_limit import limiter
from timekeeper.config import settings
from timekeeper.database import async_session_factory
from timekeeper.leave.router import router as leave_router
from timekeeper.regularization.router import router as regularization_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    scheduler = None
    if settings.ABSENCE_BACKFILL_ENABLED:
        scheduler = AbsenceBackfillScheduler(
            async_session_factory, settings.absence_backfill_time,
        )
        scheduler.start()
    app.state.absence_scheduler = scheduler
    yield
    # Shutdown
    if scheduler is not None:
        await scheduler.stop()
        logger.info("Absence backfill scheduler stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()
    app = FastAPI(
        title="Timekeeper",
        description="Attendance & leave reconciliation: clock events, regularizations, leave, absence backfill",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    app.include_router(attendance_router, prefix="/api/v1/attendance", tags=["attendance"])
    app.include_router(
        regularization_router, prefix="/api/v1/regularizations", tags=["regularizations"],
    )
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])

    return app


app = create_app()
