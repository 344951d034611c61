"""Global points service: award, deduct, reverse and reporting."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from naffles.db.models import PointsEvent, PointsJackpot, PointsTransaction
from naffles.exceptions import InsufficientBalanceError, UnknownActivityError, UserNotFoundError
from naffles.points import service
from naffles.points.events import STATUS_PENDING, STATUS_PROCESSED
from naffles.points.partner_tokens import create_partner_token
from naffles.points.seed import seed_default_achievements


class TestAwardPoints:
    """award_points without side effects."""

    @pytest.mark.asyncio
    async def test_blackjack_awards_five(self, db_session, redis_client, user):
        """A blackjack game earns five reversible points."""
        result = await service.award_points(db_session, redis_client, user.id, "gaming_blackjack", process_inline=False)
        assert result["points_awarded"] == 5
        assert result["new_balance"] == 5
        assert result["multiplier"] == 1.0
        assert result["events"] is None

        tx = await db_session.get(PointsTransaction, result["transaction_id"])
        assert tx.type == "earned"
        assert tx.description == "Played Blackjack"
        assert tx.is_reversible is True

    @pytest.mark.asyncio
    async def test_two_hundred_games_reach_silver(self, db_session, redis_client, user):
        """A thousand points reach silver."""
        for _ in range(200):
            await service.award_points(db_session, redis_client, user.id, "gaming_blackjack", process_inline=False)
        info = await service.get_user_points_info(db_session, user.id)
        assert info["balance"] == 1000
        assert info["total_earned"] == 1000
        assert info["tier"] == "silver"
        assert info["next_tier"] == "gold"

    @pytest.mark.asyncio
    async def test_unknown_activity(self, db_session, redis_client, user):
        """Unknown activities are rejected."""
        with pytest.raises(UnknownActivityError):
            await service.award_points(db_session, redis_client, user.id, "teleportation")
        result = await db_session.execute(select(PointsTransaction))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, redis_client):
        """Unknown users are rejected."""
        with pytest.raises(UserNotFoundError):
            await service.award_points(db_session, redis_client, 4242, "gaming_blackjack")

    @pytest.mark.asyncio
    async def test_additional_multiplier_floors(self, db_session, redis_client, user):
        """Multiplied points are floored."""
        result = await service.award_points(
            db_session, redis_client, user.id, "gaming_coin_toss",
            {"additional_multiplier": 1.5}, process_inline=False,
        )
        # floor(3 * 1.5)
        assert result["points_awarded"] == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, 0])
    async def test_unset_additional_multiplier_means_one(self, db_session, redis_client, user, value):
        """A null or zero multiplier leaves the base points alone."""
        result = await service.award_points(
            db_session, redis_client, user.id, "gaming_blackjack",
            {"additional_multiplier": value}, process_inline=False,
        )
        assert result["points_awarded"] == 5
        assert result["multiplier"] == 1.0

    @pytest.mark.asyncio
    async def test_partner_token_multiplier(self, db_session, redis_client, user):
        """Holding a partner token multiplies enabled activities."""
        await create_partner_token(
            db_session,
            name="Partner",
            symbol="PTR",
            contract_address="0xABCDEF0000000000000000000000000000000001",
            chain_id="1",
            multiplier=2.0,
            bonus_activities={"raffleCreation": True},
        )
        await db_session.commit()

        result = await service.award_points(
            db_session, redis_client, user.id, "raffle_creation",
            {"token_contract": "0xabcdef0000000000000000000000000000000001", "chain_id": "1"},
            process_inline=False,
        )
        assert result["points_awarded"] == 100
        assert result["multiplier"] == 2.0

    @pytest.mark.asyncio
    async def test_partner_token_ignored_for_disabled_bucket(self, db_session, redis_client, user):
        """Partner tokens skip buckets they do not enable."""
        await create_partner_token(
            db_session,
            name="Partner",
            symbol="PTR",
            contract_address="0xabcdef0000000000000000000000000000000002",
            chain_id="1",
            multiplier=2.0,
            bonus_activities={"staking": False},
        )
        await db_session.commit()
        result = await service.award_points(
            db_session, redis_client, user.id, "token_staking",
            {"token_contract": "0xabcdef0000000000000000000000000000000002", "chain_id": "1"},
            process_inline=False,
        )
        assert result["points_awarded"] == 10

    @pytest.mark.asyncio
    async def test_award_stages_outbox_event(self, db_session, redis_client, user):
        """Awards stage a pending outbox event."""
        result = await service.award_points(db_session, redis_client, user.id, "raffle_creation", process_inline=False)
        event = await db_session.get(PointsEvent, result["event_id"])
        assert event.status == STATUS_PENDING
        assert event.payload["activity"] == "raffle_creation"
        assert event.payload["points"] == 50
        assert event.payload["transaction_id"] == result["transaction_id"]


class TestAwardSideEffects:
    """award_points with inline side-effect processing."""

    @pytest.mark.asyncio
    async def test_inline_processing(self, db_session, redis_client, user, fixed_rng):
        """Inline processing grows the jackpot and reports the steps."""
        result = await service.award_points(
            db_session, redis_client, user.id, "raffle_creation", rng=fixed_rng(0.99), process_inline=True,
        )
        events = result["events"]
        assert events["status"] == STATUS_PROCESSED
        assert events["jackpot_increment"] == 10
        assert events["jackpot_win"] is None
        assert events["errors"] == []

        jackpot = await db_session.get(PointsJackpot, 1)
        assert jackpot.current_amount == 1010

    @pytest.mark.asyncio
    async def test_first_game_unlocks_achievement(self, db_session, redis_client, user, fixed_rng):
        """The first game unlocks First Game and ranks the player."""
        await seed_default_achievements(db_session)
        await db_session.commit()

        result = await service.award_points(
            db_session, redis_client, user.id, "gaming_blackjack", rng=fixed_rng(0.99), process_inline=True,
        )
        unlocked = [a["achievement"] for a in result["events"]["achievements"]]
        assert unlocked == ["First Game"]

        info = await service.get_user_points_info(db_session, user.id)
        # 5 for the game, 50 for the achievement
        assert info["balance"] == 55
        assert info["achievements"][0]["name"] == "First Game"
        assert info["rank"] == 1


class TestDeductPoints:
    @pytest.mark.asyncio
    async def test_spend(self, db_session, redis_client, user):
        """Spending books a non-reversible spent transaction."""
        await service.award_points(db_session, redis_client, user.id, "raffle_creation", process_inline=False)
        result = await service.deduct_points(db_session, user.id, 20, reason="Bought a ticket")
        assert result["points_deducted"] == 20
        assert result["new_balance"] == 30
        tx = await db_session.get(PointsTransaction, result["transaction_id"])
        assert tx.type == "spent"
        assert tx.is_reversible is False

    @pytest.mark.asyncio
    async def test_admin_deduct(self, db_session, redis_client, user, admin_user):
        """Admin deductions are reversible and attributed."""
        await service.award_points(db_session, redis_client, user.id, "raffle_creation", process_inline=False)
        result = await service.deduct_points(db_session, user.id, 10, reason="Abuse", admin_id=admin_user.id)
        tx = await db_session.get(PointsTransaction, result["transaction_id"])
        assert tx.type == "admin_deduct"
        assert tx.admin_id == admin_user.id
        assert tx.is_reversible is True

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, db_session, user):
        """Spending without points fails."""
        with pytest.raises(InsufficientBalanceError):
            await service.deduct_points(db_session, user.id, 1)

    @pytest.mark.asyncio
    async def test_deduct_exact_balance(self, db_session, redis_client, user):
        """Spending the whole balance leaves zero."""
        await service.award_points(db_session, redis_client, user.id, "raffle_creation", process_inline=False)
        result = await service.deduct_points(db_session, user.id, 50)
        assert result["new_balance"] == 0
        info = await service.get_user_points_info(db_session, user.id)
        assert (info["balance"], info["total_spent"]) == (0, 50)

    @pytest.mark.asyncio
    async def test_overdraw_leaves_state_unchanged(self, db_session, redis_client, user):
        """A refused spend leaves balance, totals and history unchanged."""
        await service.award_points(db_session, redis_client, user.id, "raffle_creation", process_inline=False)
        with pytest.raises(InsufficientBalanceError):
            await service.deduct_points(db_session, user.id, 51)

        info = await service.get_user_points_info(db_session, user.id)
        assert (info["balance"], info["total_spent"]) == (50, 0)
        txs = (await db_session.execute(
            select(PointsTransaction).where(PointsTransaction.user_id == user.id)
        )).scalars().all()
        assert [tx.amount for tx in txs] == [50]


class TestAdminAndReversal:
    @pytest.mark.asyncio
    async def test_admin_award(self, db_session, user, admin_user):
        """Admin awards are attributed admin_award transactions."""
        result = await service.admin_award_points(db_session, user.id, 250, "Contest prize", admin_user.id)
        assert result["new_balance"] == 250
        tx = await db_session.get(PointsTransaction, result["transaction_id"])
        assert tx.type == "admin_award"
        assert tx.description == "Contest prize"

    @pytest.mark.asyncio
    async def test_reverse_award(self, db_session, redis_client, user, admin_user):
        """Reversing an award takes the points back."""
        award = await service.award_points(db_session, redis_client, user.id, "raffle_creation", process_inline=False)
        result = await service.reverse_points_transaction(
            db_session, award["transaction_id"], admin_user.id, "Raffle cancelled",
        )
        assert result["original_transaction_id"] == award["transaction_id"]
        assert result["amount"] == -50
        assert result["new_balance"] == 0


class TestReporting:
    @pytest.mark.asyncio
    async def test_points_info_for_new_user(self, db_session, user):
        """A new user reports an empty bronze balance."""
        info = await service.get_user_points_info(db_session, user.id)
        assert info["balance"] == 0
        assert info["tier"] == "bronze"
        assert info["points_to_next_tier"] == 1000
        assert info["rank"] is None
        assert info["recent_transactions"] == []
        assert info["achievements"] == []

    @pytest.mark.asyncio
    async def test_recent_transactions_capped_at_ten(self, db_session, redis_client, user):
        """Points info lists at most ten recent transactions."""
        for _ in range(12):
            await service.award_points(db_session, redis_client, user.id, "daily_login", process_inline=False)
        info = await service.get_user_points_info(db_session, user.id)
        assert len(info["recent_transactions"]) == 10

    @pytest.mark.asyncio
    async def test_history_as_dicts(self, db_session, redis_client, user):
        """History entries come back as plain dicts."""
        await service.award_points(db_session, redis_client, user.id, "daily_login", process_inline=False)
        history = await service.get_transaction_history(db_session, user.id, limit=5)
        assert history["transactions"][0]["activity"] == "daily_login"
        assert history["pagination"]["total"] == 1
