"""Leaderboard entries, ranking and rebuilds."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from naffles.exceptions import InvalidLeaderboardError
from naffles.points import ledger
from naffles.points.activities import TX_EARNED
from naffles.points.leaderboard_service import (
    compute_change,
    get_leaderboard,
    get_leaderboard_stats,
    get_user_position,
    get_user_rank,
    rebuild_points_leaderboards,
    recalculate_ranks,
    update_leaderboards_for_award,
    update_user_entry,
)

NOW = datetime(2026, 7, 8, 18, 0, tzinfo=timezone.utc)


async def _earn(db, user_id: int, amount: int, activity: str = "raffle_creation", metadata=None) -> None:
    await ledger.credit(db, user_id, amount, tx_type=TX_EARNED, activity=activity)
    await update_leaderboards_for_award(db, user_id, activity, amount, metadata, now=NOW)


class TestChange:
    @pytest.mark.parametrize(
        ("rank", "previous", "expected"),
        [(1, None, "new"), (1, 3, "up"), (4, 2, "down"), (2, 2, "same")],
    )
    def test_compute_change(self, rank, previous, expected):
        """Rank changes read as new, up, down or same."""
        assert compute_change(rank, previous) == expected


class TestEntries:
    @pytest.mark.asyncio
    async def test_windowed_periods_accumulate(self, db_session, user):
        """Daily, weekly and monthly entries accumulate."""
        await update_user_entry(db_session, user.id, "points", "daily", 10, now=NOW)
        entry = await update_user_entry(db_session, user.id, "points", "daily", 15, now=NOW)
        assert entry.value == 25
        assert entry.username == user.username

    @pytest.mark.asyncio
    async def test_all_time_overwrites(self, db_session, user):
        """All-time points entries are overwritten."""
        await update_user_entry(db_session, user.id, "points", "all_time", 10, now=NOW)
        entry = await update_user_entry(db_session, user.id, "points", "all_time", 40, now=NOW)
        assert entry.value == 40

    @pytest.mark.asyncio
    async def test_invalid_board(self, db_session, user):
        """Unknown categories and periods are rejected."""
        with pytest.raises(InvalidLeaderboardError):
            await update_user_entry(db_session, user.id, "karma", "daily", 1, now=NOW)
        with pytest.raises(InvalidLeaderboardError):
            await get_leaderboard(db_session, "points", "hourly")


class TestAwardUpdates:
    @pytest.mark.asyncio
    async def test_award_ranks_all_time_board(self, db_session, make_user):
        """Awards re-rank the all-time points board."""
        alice = await make_user(username="alice")
        bob = await make_user(username="bob")
        await _earn(db_session, alice.id, 50)
        await _earn(db_session, bob.id, 80)

        board = await get_leaderboard(db_session, "points", "all_time", now=NOW)
        assert [(e["username"], e["rank"], e["value"]) for e in board["entries"]] == [
            ("bob", 1, 80),
            ("alice", 2, 50),
        ]
        assert board["total"] == 2
        assert await get_user_rank(db_session, alice.id, now=NOW) == 2

    @pytest.mark.asyncio
    async def test_game_boards(self, db_session, user):
        """Games feed the wins and volume boards."""
        await _earn(db_session, user.id, 5, "gaming_blackjack", {"won": True, "bet_amount": 20, "win_amount": 40})
        await _earn(db_session, user.id, 5, "gaming_blackjack", {"won": False, "bet_amount": 10})

        wins = await get_leaderboard(db_session, "gaming_wins", "weekly", now=NOW)
        volume = await get_leaderboard(db_session, "gaming_volume", "monthly", now=NOW)
        assert wins["entries"][0]["value"] == 1
        assert volume["entries"][0]["value"] == 30

    @pytest.mark.asyncio
    async def test_raffle_and_referral_boards(self, db_session, user):
        """Raffle creation and referrals feed their boards."""
        await _earn(db_session, user.id, 50, "raffle_creation")
        await _earn(db_session, user.id, 25, "referral_bonus")
        created = await get_leaderboard(db_session, "raffle_created", "all_time", now=NOW)
        referrals = await get_leaderboard(db_session, "referrals", "daily", now=NOW)
        assert created["entries"][0]["value"] == 1
        assert referrals["entries"][0]["value"] == 1


class TestRanking:
    @pytest.mark.asyncio
    async def test_rank_movement(self, db_session, make_user):
        """Re-ranking records the previous rank and direction."""
        alice = await make_user(username="alice")
        bob = await make_user(username="bob")
        await update_user_entry(db_session, alice.id, "points", "weekly", 100, now=NOW)
        await update_user_entry(db_session, bob.id, "points", "weekly", 50, now=NOW)
        await recalculate_ranks(db_session, "points", "weekly", now=NOW)

        await update_user_entry(db_session, bob.id, "points", "weekly", 100, now=NOW)
        await recalculate_ranks(db_session, "points", "weekly", now=NOW)

        board = await get_leaderboard(db_session, "points", "weekly", now=NOW)
        top, second = board["entries"]
        assert (top["username"], top["rank"], top["previous_rank"], top["change"]) == ("bob", 1, 2, "up")
        assert (second["username"], second["change"]) == ("alice", "down")

    @pytest.mark.asyncio
    async def test_user_position_with_neighbours(self, db_session, make_user):
        """A position comes with two neighbours on each side."""
        users = [await make_user(username=f"player{i}") for i in range(6)]
        for i, u in enumerate(users):
            await update_user_entry(db_session, u.id, "points", "monthly", 100 - i * 10, now=NOW)
        await recalculate_ranks(db_session, "points", "monthly", now=NOW)

        position = await get_user_position(db_session, users[3].id, "points", "monthly", now=NOW)
        assert position["user_entry"]["rank"] == 4
        assert [e["rank"] for e in position["surrounding"]] == [2, 3, 4, 5, 6]
        assert [e["is_current_user"] for e in position["surrounding"]] == [False, False, True, False, False]

    @pytest.mark.asyncio
    async def test_position_missing(self, db_session, user):
        """Users without an entry have no position."""
        assert await get_user_position(db_session, user.id, "points", "daily", now=NOW) is None

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, db_session):
        """Out-of-range limits are clamped."""
        board = await get_leaderboard(db_session, "points", "daily", limit=0, now=NOW)
        assert board["entries"] == []
        assert board["total"] == 0


class TestRebuild:
    @pytest.mark.asyncio
    async def test_rebuild_from_ledger(self, db_session, make_user):
        """Boards can be rebuilt from balances and transactions."""
        alice = await make_user(username="alice")
        bob = await make_user(username="bob")
        await ledger.credit(db_session, alice.id, 30, tx_type=TX_EARNED, activity="raffle_creation")
        await ledger.credit(db_session, bob.id, 70, tx_type=TX_EARNED, activity="raffle_creation")

        counts = await rebuild_points_leaderboards(db_session)
        assert counts["all_time"] == 2

        board = await get_leaderboard(db_session, "points", "all_time")
        assert [e["username"] for e in board["entries"]] == ["bob", "alice"]
        daily = await get_leaderboard(db_session, "points", "daily")
        assert daily["entries"][0]["value"] == 70

        stats = await get_leaderboard_stats(db_session)
        assert stats["total_entries"] == 8
