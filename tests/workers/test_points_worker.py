"""Tests for the points worker jobs."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from naffles.db.models import PointsEvent, PointsJackpot
from naffles.points.events import STATUS_PROCESSED
from naffles.points.service import award_points
from naffles.workers import points_worker
from naffles.workers.points_worker import (
    WorkerSettings,
    jackpot_time_increment,
    process_points_events,
    recalculate_leaderboards,
)


@pytest.fixture(autouse=True)
def _worker_sessions(session_factory, monkeypatch):
    monkeypatch.setattr(points_worker, "get_session_factory", lambda: session_factory)


class TestWorkerSettings:
    def test_registered_jobs(self) -> None:
        """The worker registers its three jobs and crons."""
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"process_points_events", "recalculate_leaderboards", "jackpot_time_increment"}
        assert len(WorkerSettings.cron_jobs) == 3


class TestJobs:
    @pytest.mark.asyncio
    async def test_outbox_then_maintenance(self, db_session, session_factory, redis_client, user) -> None:
        """Worker jobs drain the outbox then run maintenance."""
        await award_points(db_session, redis_client, user.id, "daily_login", process_inline=False)
        # jobs open their own sessions on the shared connection
        await db_session.close()
        ctx = {"redis": redis_client}

        assert await process_points_events(ctx) == 1
        assert await process_points_events(ctx) == 0

        # one points entry per period for the single award
        assert await recalculate_leaderboards(ctx) == 4
        # the jackpot was just created, no idle hour has passed
        assert await jackpot_time_increment(ctx) == 0
        async with session_factory() as db:
            event = (await db.execute(select(PointsEvent))).scalar_one()
            assert event.status == STATUS_PROCESSED
            jackpot = await db.get(PointsJackpot, 1)
            assert jackpot.current_amount == 1001
