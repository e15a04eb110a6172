"""
Helpdesk SLA Engine - Main Application
=======================================

Service level agreement engine for a helpdesk platform.

Modules:
- SLA Engine: rule selection, business-hours due dates, breach tracking,
  extensions and the periodic sweep

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and calculators
- Infrastructure: Database, rules catalogue, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from helpdesk.config import settings
from helpdesk.core import ApplicationException

# Infrastructure
from helpdesk.infrastructure.database import init_database, close_database, create_tables

# SLA Module
from helpdesk.sla.application import SlaService, SlaSweepService
from helpdesk.sla.infrastructure import (
    LoggingEventPublisher,
    SettingsStatusClassifier,
    SlaRulesManager,
    SlaSweepScheduler,
    ticket_unit_of_work,
)
from helpdesk.sla.interfaces import sla_router

# Logging
from helpdesk.shared.infrastructure.logging import setup_logging, get_logger, log_latency
from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load the SLA rules catalogue and start watching it
    4. Start the SLA sweep scheduler

    SHUTDOWN:
    1. Stop the SLA scheduler
    2. Stop the rules watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning(
            "Database not available - running in degraded mode",
            extra={"error": str(e)}
        )

    logger.info("Loading SLA rules", extra={"path": str(settings.sla_rules_path)})
    rules_manager = SlaRulesManager()
    rules_manager.load(settings.sla_rules_path)
    rules_manager.start_watching()

    classifier = SettingsStatusClassifier()
    event_publisher = LoggingEventPublisher()
    sweep_service = SlaSweepService(
        sla_service=SlaService(rules_manager, classifier),
        status_classifier=classifier,
        unit_of_work=ticket_unit_of_work,
        event_publisher=event_publisher,
    )

    async def sla_sweep_job():
        """Background SLA sweep."""
        with log_latency(logger, "sla_sweep", batch_size=settings.sla_sweep_batch_size):
            await sweep_service.run()

    sla_scheduler = SlaSweepScheduler(interval_seconds=settings.sla_evaluation_interval)
    await sla_scheduler.start(sla_sweep_job)

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.rules_manager = rules_manager
    app.state.event_publisher = event_publisher
    app.state.sweep_service = sweep_service
    app.state.sla_scheduler = sla_scheduler

    logger.info("SLA engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")

    sweep_service.cancel()
    await sla_scheduler.stop()
    rules_manager.stop_watching()
    await close_database()

    logger.info("SLA engine shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk SLA Engine API",
    description="""
    ## Helpdesk SLA Engine

    Assigns service level rules to tickets, computes due dates in calendar
    time or business hours, and tracks breaches.

    **Endpoints:**
    - `POST /sla/tickets` - Ingest ticket projections
    - `GET /sla/tickets/{id}` - Evaluate and show a ticket's SLA
    - `POST /sla/tickets/{id}/refresh` - Re-run rule assignment
    - `GET /sla/tickets/{id}/extension` - Suggested extension and limits
    - `GET /sla/tickets/{id}/extension/preview` - Preview an extension
    - `POST /sla/tickets/{id}/extend` - Extend the due date
    - `GET /sla/rules` - Active SLA rules
    - `POST /sla/sweep` - Run a sweep now

    **SLA States:** `on_track`, `approaching_breach` (75% of the target
    elapsed), `breached`, `completed`.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for load balancers and orchestrators.

    Reports rules catalogue and scheduler state.
    """
    rules_manager = getattr(app.state, "rules_manager", None)
    sla_scheduler = getattr(app.state, "sla_scheduler", None)

    checks = {
        "sla_rules": f"loaded ({len(rules_manager.get_active_rules())} active)" if rules_manager else "not_loaded",
        "sla_scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped",
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Helpdesk SLA Engine",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
