"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sips.cache import Cache
from sips.config import get_settings
from sips.db.models import GamificationLevel
from sips.dependencies import get_cache, get_db

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe — returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    cache: Cache = Depends(get_cache),  # noqa: B008
) -> JSONResponse:
    """Readiness probe — store reachable with a seeded level table, cache reachable.

    Returns 503 while any check fails so the instance is kept out of rotation.
    """
    checks: dict[str, str] = {}

    try:
        levels = (await db.execute(select(func.count()).select_from(GamificationLevel))).scalar_one()
        checks["database"] = "ok"
        checks["reference_data"] = "ok" if levels else "error: level table is empty"
    except SQLAlchemyError as exc:
        checks["database"] = f"error: {exc}"
        checks["reference_data"] = "unknown"

    checks["cache"] = "ok" if await cache.ping() else "error: unreachable"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ready" if all_ok else "degraded", "checks": checks},
    )


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
