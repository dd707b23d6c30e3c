"""
Health check endpoint.
Verifies database and Redis connectivity and reports provider configuration.
"""
from fastapi import APIRouter, HTTPException, Request
from sqlalchemy import text
import redis

from clipgen.config import settings

router = APIRouter()


@router.get("")
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns status of database and Redis connections.
    Providers without an API key are reported but do not make the service unhealthy.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "providers": {},
    }

    # Check database (only when accounts live there)
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        health_status["database"] = "not used"
    else:
        try:
            async with session_factory() as db:
                await db.execute(text("SELECT 1"))
            health_status["database"] = "connected"
        except Exception as e:
            health_status["database"] = f"error: {str(e)}"
            health_status["status"] = "unhealthy"

    # Check Redis (maintenance broker)
    try:
        r = redis.from_url(settings.redis_url)
        r.ping()
        health_status["redis"] = "connected"
    except Exception as e:
        health_status["redis"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        health_status["providers"] = {
            name: "configured" if provider.is_configured() else "missing api key"
            for name, provider in orchestrator.providers.items()
        }

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
