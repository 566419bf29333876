"""FastAPI application entry point for txguard."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from txguard.api.middleware.error_handler import (
    global_exception_handler,
    security_exception_handler,
)
from txguard.api.middleware.logging import StructuredLoggingMiddleware
from txguard.api.routes.health import router as health_router
from txguard.api.routes.security import router as security_router
from txguard.config import settings
from txguard.domains.security.config import SecurityConfig
from txguard.domains.security.email import build_email_sender
from txguard.domains.security.errors import SecurityError
from txguard.domains.security.events import SecurityEventPublisher
from txguard.domains.security.repository import (
    InMemoryProfileRepository,
    ProfileRepository,
    SqlProfileRepository,
)
from txguard.domains.security.service import SecurityEngine
from txguard.shared.kafka_utils import create_producer, stop_producer
from txguard.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


async def build_repository(config: SecurityConfig) -> ProfileRepository:
    if settings.profile_backend == "sql":
        from txguard.db.database import init_db

        await init_db()
        return SqlProfileRepository(history_limit=config.profile.history_limit)
    return InMemoryProfileRepository(history_limit=config.profile.history_limit)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level, settings.log_format)

    config = SecurityConfig.from_env()
    logger.info(
        "txguard_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        risk_engine_version=config.version,
        profile_backend=settings.profile_backend,
        debug=settings.debug,
    )

    producer = None
    if settings.kafka_enabled:
        try:
            producer = await create_producer(settings.kafka_bootstrap_servers)
        except Exception:
            logger.warning("kafka_producer_failed_to_start", exc_info=True)

    engine = SecurityEngine(
        config=config,
        repository=await build_repository(config),
        email_sender=build_email_sender(settings),
        events=SecurityEventPublisher(producer, topic=settings.security_events_topic),
        sweep_interval_seconds=settings.token_sweep_interval_seconds,
    )
    await engine.start()
    app.state.security_engine = engine

    yield

    await engine.stop()
    await stop_producer(producer)
    logger.info("txguard_shutting_down")


app = FastAPI(
    title="txguard",
    description="Behavioral transaction-risk engine and pre-sign verification gate",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Exception handlers
app.add_exception_handler(SecurityError, security_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(security_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
