"""Side-effect outbox: step isolation, failure recording and retries."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from naffles.db.models import LeaderboardEntry, PointsEvent, PointsJackpot
from naffles.points import events
from naffles.points.events import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSED,
    process_event,
    process_pending_events,
)
from naffles.points.service import award_points


class TestProcessEvent:
    @pytest.mark.asyncio
    async def test_failed_step_keeps_award_and_other_steps(
        self, db_session, redis_client, user, fixed_rng, monkeypatch,
    ):
        """A failing step is recorded without undoing the award or the other steps."""

        async def _boom(*args, **kwargs):
            msg = "achievement store unavailable"
            raise RuntimeError(msg)

        monkeypatch.setattr(events, "check_achievements", _boom)
        result = await award_points(
            db_session, redis_client, user.id, "gaming_blackjack", rng=fixed_rng(0.99), process_inline=True,
        )

        assert result["points_awarded"] == 5
        assert result["new_balance"] == 5
        outcome = result["events"]
        assert outcome["status"] == STATUS_FAILED
        assert outcome["errors"] == ["achievements: achievement store unavailable"]
        assert outcome["jackpot_increment"] == 2

        event = await db_session.get(PointsEvent, result["event_id"])
        assert event.status == STATUS_FAILED
        assert event.attempts == 1
        assert "achievement store unavailable" in event.last_error
        assert set(event.payload["completed_steps"]) == {"jackpot_increment", "leaderboards", "jackpot_win"}

        # the leaderboard step still ran
        entries = (await db_session.execute(select(LeaderboardEntry))).scalars().all()
        assert entries

    @pytest.mark.asyncio
    async def test_retry_only_reruns_failed_steps(
        self, db_session, redis_client, user, fixed_rng, monkeypatch,
    ):
        """A retry runs only the steps that failed before."""

        async def _boom(*args, **kwargs):
            msg = "temporary"
            raise RuntimeError(msg)

        original = events.check_achievements
        monkeypatch.setattr(events, "check_achievements", _boom)
        result = await award_points(
            db_session, redis_client, user.id, "raffle_creation", rng=fixed_rng(0.99), process_inline=True,
        )
        jackpot = await db_session.get(PointsJackpot, 1)
        assert jackpot.current_amount == 1010

        monkeypatch.setattr(events, "check_achievements", original)
        handled = await process_pending_events(db_session, redis_client)
        assert handled == 1

        event = await db_session.get(PointsEvent, result["event_id"])
        assert event.status == STATUS_PROCESSED
        assert event.attempts == 2
        assert event.last_error is None
        assert event.processed_at is not None
        # the jackpot was not grown a second time
        await db_session.refresh(jackpot)
        assert jackpot.current_amount == 1010

    @pytest.mark.asyncio
    async def test_reprocessing_a_processed_event_is_a_noop(self, db_session, redis_client, user, fixed_rng):
        """Processing a finished event again changes nothing."""
        result = await award_points(
            db_session, redis_client, user.id, "raffle_creation", rng=fixed_rng(0.99), process_inline=True,
        )
        event = await db_session.get(PointsEvent, result["event_id"])
        again = await process_event(db_session, redis_client, event)
        assert again["status"] == STATUS_PROCESSED
        assert "jackpot_increment" not in again
        jackpot = await db_session.get(PointsJackpot, 1)
        assert jackpot.current_amount == 1010

    @pytest.mark.asyncio
    async def test_inline_failure_leaves_event_for_worker(self, db_session, redis_client, user, monkeypatch):
        """An award still succeeds when inline processing itself blows up."""

        async def _boom(*args, **kwargs):
            msg = "connection reset"
            raise ConnectionError(msg)

        original = events.process_event
        monkeypatch.setattr(events, "process_event", _boom)
        result = await award_points(db_session, redis_client, user.id, "gaming_blackjack", process_inline=True)
        assert result["points_awarded"] == 5
        assert result["events"] is None

        monkeypatch.setattr(events, "process_event", original)
        event = await db_session.get(PointsEvent, result["event_id"])
        assert event.status == STATUS_PENDING
        assert await process_pending_events(db_session, redis_client) == 1
        await db_session.refresh(event)
        assert event.status == STATUS_PROCESSED


class TestProcessPending:
    @pytest.mark.asyncio
    async def test_worker_drains_pending_events(self, db_session, redis_client, make_user):
        """The worker pass handles pending events in batches."""
        users = [await make_user() for _ in range(3)]
        for u in users:
            await award_points(db_session, redis_client, u.id, "raffle_ticket_purchase", process_inline=False)

        pending = (await db_session.execute(
            select(PointsEvent).where(PointsEvent.status == STATUS_PENDING)
        )).scalars().all()
        assert len(pending) == 3

        handled = await process_pending_events(db_session, redis_client, limit=2)
        assert handled == 2
        handled = await process_pending_events(db_session, redis_client)
        assert handled == 1
        assert await process_pending_events(db_session, redis_client) == 0

        jackpot = await db_session.get(PointsJackpot, 1)
        assert jackpot.current_amount == 1003

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, db_session, redis_client, user, monkeypatch):
        """Events stop being retried after max_attempts."""
        async def _boom(*args, **kwargs):
            msg = "permanent"
            raise RuntimeError(msg)

        monkeypatch.setattr(events, "update_leaderboards_for_award", _boom)
        await award_points(db_session, redis_client, user.id, "daily_login", process_inline=False)

        for _ in range(3):
            assert await process_pending_events(db_session, redis_client, max_attempts=3) == 1
        assert await process_pending_events(db_session, redis_client, max_attempts=3) == 0

        event = (await db_session.execute(select(PointsEvent))).scalar_one()
        assert event.status == STATUS_FAILED
        assert event.attempts == 3
