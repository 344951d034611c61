"""Points arq worker: outbox retries and periodic ledger maintenance.

Schedule:
- Outbox: every 30 seconds
- Leaderboard ranks: every hour at :05
- Jackpot hourly growth: every hour at :00

Import path for arq CLI: arq naffles.workers.points_worker.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from naffles.config import get_settings
from naffles.database import close_db, get_session_factory, init_db
from naffles.middleware.logging import setup_logging
from naffles.points.events import process_pending_events
from naffles.points.jackpot_service import apply_time_based_increment
from naffles.points.leaderboard_service import recalculate_all_ranks
from naffles.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


async def process_points_events(ctx: dict) -> int:  # type: ignore[type-arg]
    """Run side effects for events that are pending or failed and still retryable."""
    settings = get_settings()
    async with get_session_factory()() as db:
        handled = await process_pending_events(
            db,
            ctx.get("redis"),
            limit=settings.outbox_batch_size,
            max_attempts=settings.outbox_max_attempts,
        )
        if handled:
            logger.info("Processed %d points events", handled)
        return handled


async def recalculate_leaderboards(ctx: dict) -> int:  # type: ignore[type-arg]
    """Re-rank every board for its current window."""
    async with get_session_factory()() as db:
        ranked = await recalculate_all_ranks(db)
        await db.commit()
        logger.info("Leaderboard ranks recalculated: %d entries", ranked)
        return ranked


async def jackpot_time_increment(ctx: dict) -> int:  # type: ignore[type-arg]
    async with get_session_factory()() as db:
        added = await apply_time_based_increment(db)
        await db.commit()
        return added


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open DB and Redis connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["redis"] = await init_redis(settings.redis_url, max_connections=20)
    logger.info("Points worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_redis()
    await close_db()
    logger.info("Points worker shut down")


class WorkerSettings:
    """arq worker settings for the points ledger."""

    functions = [process_points_events, recalculate_leaderboards, jackpot_time_increment]
    cron_jobs = [
        cron(process_points_events, second={0, 30}, unique=True),
        cron(recalculate_leaderboards, minute=5, unique=True),
        cron(jackpot_time_increment, minute=0, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 300
