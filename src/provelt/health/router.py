"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from provelt.config import get_settings
from provelt.database import get_session
from provelt.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness check: database and Redis connectivity, plus chain configuration."""
    checks: dict[str, object] = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        redis = get_redis()
        await redis.ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    config = get_settings().chain_config()
    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
        "minting": "configured" if config.minting_configured else "simulated",
        "staking": "configured" if config.staking_configured else "unavailable",
    }


@router.get("/version")
async def version() -> dict[str, object]:
    """API version, environment and target chain."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "chain_id": settings.chain_id,
    }
