"""FastAPI application entry point for the risk engine."""

import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.health import router as health_router
from src.api.routes.risk import router as risk_router
from src.config import settings
from src.domains.risk.config import RiskConfig
from src.domains.risk.errors import RiskEngineError
from src.domains.risk.notifications import NotificationPublisher
from src.domains.risk.orchestrator import RiskEngine, set_engine
from src.shared.kafka_utils import create_producer, stop_producer
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0

_kafka_producer = None


def kafka_producer_ready() -> bool:
    return _kafka_producer is not None


async def _housekeeping_loop(engine: RiskEngine, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await engine.run_housekeeping()
        except Exception:
            logger.exception("risk_housekeeping_failed")


def build_engine(producer=None) -> RiskEngine:
    """Wire the engine for the configured ledger backend."""
    config = RiskConfig.from_env()
    # Ledger cap and topic come only from process settings
    config.ledger.max_entries = settings.ledger_max_entries
    config.notification_topic = settings.kafka_notification_topic

    ledger_store = None
    if settings.ledger_backend == "sql":
        from src.db.database import get_session_factory
        from src.db.ledger_store import SqlLedgerStore

        ledger_store = SqlLedgerStore(get_session_factory(), settings.ledger_max_entries)

    return RiskEngine(
        config=config,
        ledger_store=ledger_store,
        publisher=NotificationPublisher(producer, topic=config.notification_topic),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME, _kafka_producer
    APP_START_TIME = time.time()
    setup_logging(settings.log_level, json_logs=settings.log_json)

    logger.info(
        "risk_engine_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        ledger_backend=settings.ledger_backend,
        debug=settings.debug,
    )

    if settings.ledger_backend == "sql":
        from src.db.database import init_db

        await init_db()

    # Notifications are best effort; the engine runs without a producer
    if settings.kafka_enabled:
        try:
            _kafka_producer = await create_producer(settings.kafka_bootstrap_servers)
        except Exception:
            logger.warning("kafka_producer_failed_to_start", exc_info=True)
            _kafka_producer = None

    engine = build_engine(_kafka_producer)
    set_engine(engine)

    housekeeping = asyncio.create_task(
        _housekeeping_loop(engine, settings.housekeeping_interval_seconds)
    )

    yield

    housekeeping.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await housekeeping
    await stop_producer(_kafka_producer)
    _kafka_producer = None
    if settings.ledger_backend == "sql":
        from src.db.database import dispose_db

        await dispose_db()
    set_engine(None)
    logger.info("risk_engine_shutting_down")


app = FastAPI(
    title="Risk Engine",
    description="Payment and refund risk scoring, approval workflow and audit ledger",
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

# Domain errors map to 4xx; anything else falls through to the 500 handler
app.add_exception_handler(RiskEngineError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(risk_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
