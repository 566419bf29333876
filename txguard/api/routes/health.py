"""Health and readiness endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from txguard.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    from txguard.main import get_uptime

    engine = request.app.state.security_engine
    return {
        "status": "healthy",
        "version": settings.app_version,
        "risk_engine_version": engine.config.version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    engine = request.app.state.security_engine
    db_ok = True
    if settings.profile_backend == "sql":
        from txguard.db.database import check_db

        db_ok = await check_db()

    kafka_ok = engine.events.enabled or not settings.kafka_enabled
    all_ready = db_ok and kafka_ok
    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "status": "ready" if all_ready else "degraded",
            "profile_backend": settings.profile_backend,
            "database": db_ok,
            "kafka": kafka_ok,
            "open_interactions": len(engine.timing),
            "pending_challenges": len(engine.challenges),
        },
    )
