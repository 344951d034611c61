"""Points jackpot: a shared pool that grows with platform activity.

The jackpot is a single row (id = 1). Every read-modify-write locks it with
``SELECT ... FOR UPDATE`` so concurrent increments and wins serialize.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.config import get_settings
from naffles.db.models import Community, PointsJackpot
from naffles.points.activities import TX_JACKPOT, describe_activity, is_gaming_activity
from naffles.points.ledger import credit
from naffles.points.period_utils import local_date
from naffles.redis_client import CHANNEL_JACKPOT_WON, broadcast

logger = logging.getLogger(__name__)

JACKPOT_ID = 1
DEFAULT_INCREMENT = 1


async def get_or_create_jackpot(db: AsyncSession, *, for_update: bool = False) -> PointsJackpot:
    """Fetch the jackpot singleton, creating it from settings on first use."""
    stmt = select(PointsJackpot).where(PointsJackpot.id == JACKPOT_ID)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    jackpot = result.scalar_one_or_none()
    if jackpot is not None:
        return jackpot

    settings = get_settings()
    now = datetime.now(timezone.utc)
    jackpot = PointsJackpot(
        id=JACKPOT_ID,
        current_amount=settings.jackpot_base_amount,
        base_amount=settings.jackpot_base_amount,
        is_active=True,
        last_win_amount=0,
        total_winners=0,
        total_amount_won=0,
        raffle_creation_increment=10,
        ticket_purchase_increment=1,
        game_play_increment=2,
        time_based_increment=settings.jackpot_time_based_increment,
        last_time_increment=now,
        min_points_required=settings.jackpot_min_points_required,
        win_probability=settings.jackpot_win_probability,
        cooldown_seconds=settings.jackpot_cooldown_seconds,
        max_wins_per_day=settings.jackpot_max_wins_per_day,
        stats_date=local_date(now, settings.local_timezone).isoformat(),
        wins_today=0,
        increments_today=0,
        amount_added_today=0,
    )
    try:
        async with db.begin_nested():
            db.add(jackpot)
    except IntegrityError:
        result = await db.execute(stmt)
        return result.scalar_one()
    return jackpot


def _roll_daily_stats(jackpot: PointsJackpot, now: datetime) -> None:
    """Reset daily counters when the local calendar day has changed."""
    today = local_date(now, get_settings().local_timezone).isoformat()
    if jackpot.stats_date != today:
        jackpot.stats_date = today
        jackpot.wins_today = 0
        jackpot.increments_today = 0
        jackpot.amount_added_today = 0


def increment_for_activity(jackpot: PointsJackpot, activity: str) -> int:
    if activity == "raffle_creation":
        return jackpot.raffle_creation_increment
    if activity == "raffle_ticket_purchase":
        return jackpot.ticket_purchase_increment
    if is_gaming_activity(activity):
        return jackpot.game_play_increment
    return DEFAULT_INCREMENT


async def increment_jackpot(db: AsyncSession, activity: str, *, now: datetime | None = None) -> int:
    """Grow the jackpot for a qualifying activity. Returns the amount added."""
    if now is None:
        now = datetime.now(timezone.utc)
    jackpot = await get_or_create_jackpot(db, for_update=True)
    amount = increment_for_activity(jackpot, activity)

    jackpot.current_amount += amount
    _roll_daily_stats(jackpot, now)
    jackpot.increments_today += 1
    jackpot.amount_added_today += amount
    jackpot.updated_at = now
    await db.flush()
    return amount


async def apply_time_based_increment(db: AsyncSession, *, now: datetime | None = None) -> int:
    """Add ``time_based_increment`` for every whole hour since the last one."""
    if now is None:
        now = datetime.now(timezone.utc)
    jackpot = await get_or_create_jackpot(db, for_update=True)
    hours = int((now - jackpot.last_time_increment).total_seconds() // 3600)
    if hours < 1:
        return 0

    amount = jackpot.time_based_increment * hours
    jackpot.current_amount += amount
    jackpot.last_time_increment = now
    _roll_daily_stats(jackpot, now)
    jackpot.amount_added_today += amount
    jackpot.updated_at = now
    await db.flush()
    logger.info("Jackpot grew by %d after %d idle hours", amount, hours)
    return amount


def can_user_win(jackpot: PointsJackpot, user_id: int, user_balance: int, now: datetime | None = None) -> bool:
    """Eligibility gate evaluated before the random draw."""
    if now is None:
        now = datetime.now(timezone.utc)
    if not jackpot.is_active:
        return False
    if user_balance < jackpot.min_points_required:
        return False
    if jackpot.wins_today >= jackpot.max_wins_per_day:
        return False
    if jackpot.last_winner_id == user_id and jackpot.last_win_date is not None:
        elapsed = (now - jackpot.last_win_date).total_seconds()
        if elapsed < jackpot.cooldown_seconds:
            return False
    return True


def process_win(jackpot: PointsJackpot, user_id: int, now: datetime) -> int:
    """Record a win on the jackpot row and reset the pool. Returns the payout."""
    win_amount = jackpot.current_amount
    jackpot.last_winner_id = user_id
    jackpot.last_win_amount = win_amount
    jackpot.last_win_date = now
    jackpot.total_winners += 1
    jackpot.total_amount_won += win_amount
    jackpot.current_amount = jackpot.base_amount
    _roll_daily_stats(jackpot, now)
    jackpot.wins_today += 1
    jackpot.updated_at = now
    return win_amount


async def check_jackpot_win(
    db: AsyncSession,
    redis: object,
    user_id: int,
    user_balance: int,
    *,
    community: Community | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Roll for the jackpot. Returns win details, or None if no win.

    A win is ``rng.random() <= win_probability`` among eligible users. The
    payout is credited as a non-reversible ``jackpot`` transaction in the
    scope that triggered the roll.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    jackpot = await get_or_create_jackpot(db, for_update=True)
    _roll_daily_stats(jackpot, now)

    if not can_user_win(jackpot, user_id, user_balance, now):
        return None

    draw = (rng or random).random()
    if draw > jackpot.win_probability:
        return None

    win_amount = process_win(jackpot, user_id, now)
    balance, tx = await credit(
        db,
        user_id,
        win_amount,
        tx_type=TX_JACKPOT,
        activity="jackpot_win",
        community=community,
        metadata={"jackpot_amount": win_amount, "win_probability": jackpot.win_probability},
        description=f"Jackpot win: {win_amount} points!",
        is_reversible=False,
    )
    logger.info("User %s won the jackpot: %d points", user_id, win_amount)

    await broadcast(redis, CHANNEL_JACKPOT_WON, {
        "user_id": user_id,
        "amount": win_amount,
        "title": describe_activity("jackpot_win"),
        "won_at": now.isoformat(),
    })

    return {
        "won": True,
        "amount": win_amount,
        "transaction_id": tx.id,
        "new_balance": balance.balance,
    }


async def get_jackpot_info(db: AsyncSession, *, now: datetime | None = None) -> dict[str, Any]:
    """Public jackpot snapshot, after applying any pending hourly growth."""
    await apply_time_based_increment(db, now=now)
    jackpot = await get_or_create_jackpot(db)
    return {
        "current_amount": jackpot.current_amount,
        "last_winner_id": jackpot.last_winner_id,
        "last_win_amount": jackpot.last_win_amount,
        "last_win_date": jackpot.last_win_date,
        "total_winners": jackpot.total_winners,
        "total_amount_won": jackpot.total_amount_won,
        "win_probability": jackpot.win_probability,
        "min_points_required": jackpot.min_points_required,
        "is_active": jackpot.is_active,
    }
