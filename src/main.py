"""
Follow-up Service - Main Application
====================================

Follow-up queue and SLA engine for an email assistant.

Modules:
- Follow-up Queue: items needing action, with snooze, waiting and escalation
- SLA Tracking: business-hours deadlines, at-risk escalation, overdue alerts
- Snooze Engine: AI-assisted and preset resurface times

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, cache, LLM, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import settings
from src.core import ApplicationException
from src.core.retry import RetryPolicy

# Infrastructure
from src.infrastructure.cache import InMemoryCache
from src.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)
from src.infrastructure.llm import ILLMClient, MockLLMClient, OpenAILLMClient

# Follow-up module
from src.followup.application import FollowUpQueueService, SLATrackerService, SnoozeEngine
from src.followup.infrastructure import (
    ConfigVIPDirectory,
    LLMSnoozeSuggestionClient,
    SLAConfigManager,
    SQLAlchemyQueueHistoryRepository,
    SQLAlchemyQueueItemRepository,
    SweepScheduler,
)
from src.followup.interfaces import queue_router

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from src.shared.infrastructure.logging import get_logger, setup_logging
from src.shared.infrastructure.metrics import GrafanaMetricsRecorder, IMetricsRecorder

logger = get_logger(__name__)


def build_llm_client(metrics: IMetricsRecorder) -> Optional[ILLMClient]:
    """Mock client when asked for, OpenAI when a key is set, otherwise none."""
    if settings.mock_llm:
        return MockLLMClient()
    if not settings.openai_api_key:
        logger.warning("OpenAI API key not configured - snooze suggestions use defaults")
        return None
    return OpenAILLMClient(metrics=metrics)


def wire_services(
    app: FastAPI,
    config_manager: SLAConfigManager,
    metrics: IMetricsRecorder,
    llm_client: Optional[ILLMClient],
    session_maker=None
) -> None:
    """Build the services once and store them on ``app.state``."""
    cache = InMemoryCache()

    queue_service = FollowUpQueueService(
        item_repository=SQLAlchemyQueueItemRepository(session_maker),
        history_repository=SQLAlchemyQueueHistoryRepository(session_maker),
        cache=cache,
        metrics=metrics,
        config_provider=config_manager,
        vip_directory=ConfigVIPDirectory(config_manager),
        retry_policy=RetryPolicy(settings.retry_max_attempts, settings.retry_base_delay_seconds)
    )
    app.state.queue_service = queue_service
    app.state.sla_tracker = SLATrackerService(queue_service, config_manager, metrics)
    app.state.snooze_engine = SnoozeEngine(
        cache=cache,
        metrics=metrics,
        config_provider=config_manager,
        suggestion_client=LLMSnoozeSuggestionClient(llm_client) if llm_client else None
    )
    app.state.config_manager = config_manager
    app.state.metrics = metrics
    app.state.llm_client = llm_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch it for changes
    4. Build metrics, LLM client and services
    5. Start the sweep scheduler

    SHUTDOWN:
    1. Stop the sweep scheduler
    2. Stop the config watcher
    3. Flush metrics and close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Follow-up Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading SLA configuration")
    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    metrics = GrafanaMetricsRecorder(
        host=settings.grafana_host,
        api_key=settings.grafana_api_key,
        instance_id=settings.grafana_instance_id,
        service_name=settings.app_name,
        service_version=settings.app_version,
        environment=settings.environment
    )

    try:
        llm_client = build_llm_client(metrics)
    except Exception as e:
        logger.warning("LLM client initialization failed", extra={"error": str(e)})
        llm_client = None

    wire_services(app, config_manager, metrics, llm_client, get_session_maker())

    scheduler = SweepScheduler(app.state.queue_service, app.state.sla_tracker)
    await scheduler.start()
    app.state.sweep_scheduler = scheduler

    logger.info("Follow-up Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Follow-up Service")

    await scheduler.stop()
    config_manager.stop_watching()
    await metrics.flush()
    await close_database()

    logger.info("Follow-up Service shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Tests pass ``use_lifespan=False`` and wire ``app.state`` themselves.
    """
    app = FastAPI(
        title="Follow-up Queue API",
        description="""
    ## Follow-up Queue & SLA Engine

    Tracks messages that need action, computes business-hours SLA deadlines,
    escalates at-risk items and suggests when snoozed items should resurface.

    **Endpoints** live under `/queue`: items, lifecycle actions, bulk actions,
    classification intake, statistics, history, sweeps, snooze suggestions and
    SLA configuration.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None
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
    app.state.settings = settings

    # === Include Module Routers ===
    app.include_router(queue_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports configuration, scheduler and LLM availability.
        """
        state = request.app.state
        scheduler = getattr(state, "sweep_scheduler", None)
        config_manager = getattr(state, "config_manager", None)

        checks = {
            "sla_config": "loaded" if config_manager is not None else "not_loaded",
            "sweep_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "llm_client": "available" if getattr(state, "llm_client", None) else "not_configured",
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
            "service": "Follow-up Service",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {"followup": {"prefix": "/queue"}}
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
