"""
Helpdesk Core - Main Application
================================

Multi-tenant support ticketing core.

Modules:
- Tickets: lifecycle state machine, activity timeline, bulk and merge
- SLA: first-response deadlines and breach checks
- Billing: plans, subscriptions, usage ledger and quota enforcement
- Notifications: per-recipient delivery through the task queue

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: State machine, value objects and pure calculators
- Infrastructure: Database, deferred task queue, webhook transport
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from helpdesk.config import settings
from helpdesk.core.exceptions import ApplicationException

# Infrastructure
from helpdesk.infrastructure.database import close_database, create_tables, init_database
from helpdesk.infrastructure.tasks import APSchedulerTaskQueue, get_task_registry

# Module providers and background jobs
from helpdesk.billing.infrastructure import YAMLPlanCatalogProvider
from helpdesk.jobs import BackgroundJobs
from helpdesk.notifications.infrastructure import build_notification_sink
from helpdesk.sla.infrastructure import YAMLSLADefaultsProvider

# Module Routers
from helpdesk.billing.interfaces import billing_router
from helpdesk.sla.interfaces import sla_router
from helpdesk.tickets.interfaces import tickets_router

# Shared API
from helpdesk.shared.api.middleware import (
    AccessLogMiddleware,
    RequestContextMiddleware,
    application_exception_handler,
    global_exception_handler,
)

# Logging
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (and tables outside production)
    3. Load the plan catalog and SLA defaults
    4. Register deferred task handlers
    5. Start the task queue and the recurring sweeps

    SHUTDOWN:
    1. Stop the task queue
    2. Close the notification transport
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Core", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()
    if settings.create_tables_on_startup:
        logger.info("Creating database tables")
        await create_tables()

    # Immutable for the life of the process
    catalog_provider = YAMLPlanCatalogProvider(settings.catalog_config_path)
    catalog_provider.load()
    sla_defaults_provider = YAMLSLADefaultsProvider(settings.catalog_config_path)
    sla_defaults_provider.load()

    sink = build_notification_sink()
    task_queue = APSchedulerTaskQueue()

    jobs = BackgroundJobs(task_queue, catalog_provider, sla_defaults_provider, sink)
    jobs.register(get_task_registry())

    await task_queue.start()
    jobs.schedule_sweeps(task_queue)

    # Store services in app state for dependency injection
    app.state.task_queue = task_queue
    app.state.catalog_provider = catalog_provider
    app.state.sla_defaults_provider = sla_defaults_provider

    logger.info("Helpdesk Core started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk Core")

    await task_queue.stop()
    await sink.close()
    await close_database()

    logger.info("Helpdesk Core shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk Core API",
    description="""
    ## Multi-tenant Support Ticketing Core

    Every request carries the caller's identity in headers:
    `X-User-Id`, `X-Organization-Id` and `X-User-Role`
    (customer, agent, admin, owner).

    ---

    ### Tickets
    - Lifecycle: open, pending, resolved, closed (reopen from closed)
    - Assignment, priorities, tags and an append-only activity timeline
    - Bulk update/assign/delete (up to 100 tickets) and merge (up to 10)

    ### SLA
    - Per-organization first-response policies per priority
    - A breach check fires at each ticket's deadline

    ### Billing
    - Plans, subscriptions and per-period usage counters
    - Ticket and message creation are metered against the plan

    ---

    ### Errors
    ```json
    {"error": {"code": "limit_exceeded", "message": "...", "details": {}}, "correlation_id": "..."}
    ```
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
app.add_middleware(AccessLogMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(tickets_router)
app.include_router(billing_router)
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "task_queue": "running",
                        "plans": "3 loaded"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.
    """
    task_queue = getattr(request.app.state, "task_queue", None)
    catalog_provider = getattr(request.app.state, "catalog_provider", None)

    checks = {
        "task_queue": "running" if task_queue and task_queue.is_running else "stopped",
        "plans": f"{len(catalog_provider.get_catalog().plans)} loaded" if catalog_provider else "not_loaded",
    }

    return {
        "status": "healthy" if checks["task_queue"] == "running" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
