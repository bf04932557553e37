"""Health and readiness endpoints."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    from src.main import get_uptime

    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready() -> JSONResponse:
    from src.main import kafka_producer_ready

    db_ok = True
    if settings.ledger_backend == "sql":
        from src.db.database import check_db

        db_ok = await check_db()

    # Notifications are best effort; Kafka is reported but never gates readiness
    kafka_ok = kafka_producer_ready()

    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ready" if db_ok else "degraded",
            "ledger_backend": settings.ledger_backend,
            "database": db_ok,
            "kafka": kafka_ok,
        },
    )
