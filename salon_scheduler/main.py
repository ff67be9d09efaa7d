"""
FastAPI Application Entry Point

This module initializes the FastAPI application and integrates:
- Scheduling API routes
- Database connections and schema
- Telegram notification delivery
- Lifecycle events
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from salon_scheduler.api import register_exception_handlers, router
from salon_scheduler.config import Settings, settings
from salon_scheduler.db.session import (
    check_database_connection,
    close_database_connection,
    init_database,
)
from salon_scheduler.services.access import AttemptLimiter, TTLCache
from salon_scheduler.services.appointment import AppointmentService
from salon_scheduler.services.notifications import Notifier, build_notifier
from salon_scheduler.services.reminders import ReminderService
from salon_scheduler.services.schedule import ScheduleService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)

APP_NAME = "Salon Scheduler"
APP_VERSION = "0.1.0"

# Log startup information
logger.info("=" * 60)
logger.info(APP_NAME)
logger.info("=" * 60)
logger.info(f"Python version: {sys.version}")
logger.info(f"Debug mode: {settings.debug}")
logger.info(f"Log level: {settings.log_level}")
logger.info(f"Database URL: {settings.database_url_str.split('@')[0]}@***")
logger.info(f"Business timezone: {settings.business_timezone}")
logger.info(
    f"Booking horizon: {settings.booking_horizon_months} months, "
    f"relocation search: {settings.relocation_max_days} days, "
    f"slots: {settings.slot_granularity_minutes} minutes"
)
logger.info(f"Telegram notifications configured: {'Yes' if settings.telegram_bot_token else 'No'}")
logger.info("=" * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Verifies the database connection and ensures the schema
    - Closes the notifier and database connections on shutdown
    """
    # Startup
    logger.info("🚀 Starting application...")

    try:
        logger.info("Checking database connection...")
        db_healthy = await check_database_connection()
        if db_healthy:
            logger.info("✅ Database connection verified")
            await init_database()
            logger.info("✅ Database schema ready")
        else:
            logger.error("❌ Database connection failed!")
            logger.warning("Application will start but database operations will fail")

        logger.info("✅ Application startup complete")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"❌ Error during startup: {e}", exc_info=True)
        logger.warning("Application will continue but may not function properly")

    yield

    # Shutdown
    logger.info("=" * 60)
    logger.info("🛑 Shutting down application...")

    try:
        logger.info("Closing notifier...")
        await app.state.notifier.close()

        logger.info("Closing database connections...")
        await close_database_connection()
        logger.info("✅ Database connections closed")

        logger.info("✅ Application shutdown complete")

    except Exception as e:
        logger.error(f"❌ Error during shutdown: {e}", exc_info=True)

    logger.info("=" * 60)


def create_app(
    config: Optional[Settings] = None,
    appointment_service: Optional[AppointmentService] = None,
    schedule_service: Optional[ScheduleService] = None,
    reminder_service: Optional[ReminderService] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Services default to ones backed by the PostgreSQL unit of work; tests
    pass their own.
    """
    config = config or settings
    notifier = notifier or build_notifier(config.telegram_token)
    appointment_service = appointment_service or AppointmentService(
        notifier=notifier, config=config
    )

    application = FastAPI(
        title=APP_NAME,
        description=(
            "Appointment scheduling for salon-type businesses: business "
            "calendar, availability, booking with automatic conflict "
            "relocation, and schedule change propagation."
        ),
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )

    # Configure CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.state.config = config
    application.state.notifier = notifier
    application.state.appointment_service = appointment_service
    application.state.schedule_service = schedule_service or ScheduleService(
        transaction=appointment_service.transaction,
        appointments=appointment_service,
        config=config,
        clock=appointment_service.clock,
    )
    application.state.reminder_service = reminder_service or ReminderService(
        transaction=appointment_service.transaction,
        notifier=notifier,
        config=config,
        clock=appointment_service.clock,
    )
    application.state.access_limiter = AttemptLimiter(
        config.access_attempt_limit,
        config.access_attempt_window_seconds,
        max_keys=config.access_max_tracked_keys,
    )
    application.state.principal_cache = TTLCache(
        config.principal_cache_ttl_seconds, config.principal_cache_max_entries
    )

    register_exception_handlers(application)
    application.include_router(router)

    @application.get("/")
    async def root():
        """
        Root endpoint.

        Returns basic API information.
        """
        return {
            "message": f"{APP_NAME} API",
            "version": APP_VERSION,
            "status": "running",
            "endpoints": {
                "health": "/health",
                "docs": "/docs" if config.debug else "disabled in production",
                "availability": "/availability",
                "appointments": "/appointments",
                "schedule": "/schedule",
            }
        }

    @application.get("/health")
    async def health_check():
        """
        Application health check endpoint.

        Checks:
        - API responsiveness
        - Database connectivity

        Returns:
            JSONResponse with health status
        """
        try:
            db_healthy = await check_database_connection()

            health_status = {
                "status": "healthy" if db_healthy else "degraded",
                "api": "operational",
                "database": "connected" if db_healthy else "disconnected",
                "version": APP_VERSION,
            }

            return JSONResponse(
                status_code=200 if db_healthy else 503,
                content=health_status
            )

        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "api": "operational",
                    "database": "error",
                    "error": str(e),
                    "version": APP_VERSION,
                }
            )

    logger.info("✅ FastAPI application initialized")
    return application


app = create_app()

# If running with uvicorn directly (not through import)
if __name__ == "__main__":
    import uvicorn

    logger.info("=" * 60)
    logger.info("Starting uvicorn server...")
    logger.info(f"Host: {settings.app_host}")
    logger.info(f"Port: {settings.app_port}")
    logger.info("=" * 60)

    uvicorn.run(
        "salon_scheduler.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
