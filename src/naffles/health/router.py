"""Liveness, readiness and version endpoints for the points service."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.config import get_settings
from naffles.database import get_session
from naffles.db.models import PointsEvent
from naffles.points.events import STATUS_FAILED, STATUS_PENDING
from naffles.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Database and Redis must answer.

    The side-effect outbox backlog is reported too, so a stuck worker shows
    up as a growing ``pending``/``failed`` count.
    """
    checks: dict[str, str] = {}
    outbox: dict[str, int] | None = None

    try:
        result = await db.execute(
            select(PointsEvent.status, func.count())
            .where(PointsEvent.status.in_([STATUS_PENDING, STATUS_FAILED]))
            .group_by(PointsEvent.status)
        )
        outbox = {STATUS_PENDING: 0, STATUS_FAILED: 0, **dict(result.tuples().all())}
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks, "outbox": outbox}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "side_effects": "inline" if settings.process_side_effects_inline else "worker",
    }
