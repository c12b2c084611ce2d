"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running
and dependencies (identity store, Redis) are reachable.
Redis only backs rate limiting, so without it the service is
"degraded", not down.
"""

from fastapi import APIRouter
from sqlalchemy import text

from peerhire import __version__
from peerhire.db.engine import engine

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check the identity store
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {type(e).__name__}"

    # Check Redis
    try:
        from peerhire.db.redis import get_redis

        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {type(e).__name__}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
